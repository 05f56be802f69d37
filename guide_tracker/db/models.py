"""SQLAlchemy ORM models for the restaurant fact store."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RestaurantDB(Base):
    """
    Database model for restaurants.

    Keyed by the canonical guide URL. Rows are created on first sighting
    and updated in place; the crawler never deletes them.
    """

    __tablename__ = "restaurants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    url: Mapped[str] = mapped_column(String(500), nullable=False, unique=True, index=True)

    # Descriptive fields
    name: Mapped[str] = mapped_column(String(255), default="", index=True)
    address: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[str] = mapped_column(String(255), default="", index=True)
    cuisine: Mapped[str] = mapped_column(String(255), default="")
    phone_number: Mapped[str] = mapped_column(String(32), default="")
    # NULL rather than "" so the unique index only applies to real URLs
    website_url: Mapped[str | None] = mapped_column(String(500), nullable=True, unique=True)
    facilities_and_services: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Geo, kept as decimal strings
    latitude: Mapped[str] = mapped_column(String(32), default="0.0")
    longitude: Mapped[str] = mapped_column(String(32), default="0.0")

    in_guide: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    awards: Mapped[list["RestaurantAwardDB"]] = relationship(
        "RestaurantAwardDB",
        back_populates="restaurant",
        cascade="all, delete-orphan",
        order_by="RestaurantAwardDB.year",
    )

    def __repr__(self) -> str:
        return f"<RestaurantDB(id={self.id}, url='{self.url}', in_guide={self.in_guide})>"


class RestaurantAwardDB(Base):
    """
    Database model for yearly awards.

    At most one row per (restaurant, year). ``wayback_url`` is empty for
    awards observed on the live site and holds the archive reference for
    backfilled ones.
    """

    __tablename__ = "restaurant_awards"
    __table_args__ = (UniqueConstraint("restaurant_id", "year", name="uq_restaurant_awards_restaurant_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    restaurant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    distinction: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    price: Mapped[str] = mapped_column(String(32), default="")
    green_star: Mapped[bool] = mapped_column(Boolean, default=False)
    wayback_url: Mapped[str] = mapped_column(String(1000), default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now, onupdate=_utc_now)

    restaurant: Mapped["RestaurantDB"] = relationship("RestaurantDB", back_populates="awards")

    def __repr__(self) -> str:
        return f"<RestaurantAwardDB(restaurant_id={self.restaurant_id}, year={self.year}, distinction='{self.distinction}')>"
