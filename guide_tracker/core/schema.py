"""Pydantic v2 models for restaurants, awards and extracted facts.

These models are the in-memory domain layer:
- RestaurantFact (normalized bundle extracted from one page or dataset row)
- Restaurant, Award (stored entities, as returned by the repositories)
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from guide_tracker.core.enums import Distinction, Provenance


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class RestaurantFact(BaseModel):
    """
    Normalized restaurant and award fields extracted from a single source.

    A fact is what the extractors produce and what the merge policy consumes.
    Empty strings mean "not found"; a year of 0 means the award year could
    not be determined and no award may be written for this fact.
    """

    url: str
    name: str = ""
    address: str = ""
    location: str = ""
    latitude: str = ""
    longitude: str = ""
    cuisine: str = ""
    phone_number: str = ""
    website_url: str = ""
    facilities_and_services: str = ""
    description: str = ""
    image_url: str = ""

    distinction: Distinction | None = None
    price: str = ""
    green_star: bool = False
    year: int = 0

    provenance: Provenance = Provenance.SCRAPE
    wayback_url: str = ""
    in_guide: bool | None = None

    extraction_errors: list[str] = Field(default_factory=list)

    @field_validator("url")
    @classmethod
    def url_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("url cannot be empty")
        return v.strip()

    @property
    def has_award(self) -> bool:
        """Check whether the fact carries a usable award."""
        return self.year > 0 and self.distinction is not None

    def missing_fields(self, required: tuple[str, ...]) -> list[str]:
        """Return the names of required fields that are empty."""
        return [name for name in required if not getattr(self, name)]


class Award(BaseModel):
    """One distinction for one restaurant in one guide year."""

    id: int | None = None
    restaurant_id: int
    year: int
    distinction: str
    price: str = ""
    green_star: bool = False
    wayback_url: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def provenance(self) -> Provenance:
        """Awards without an archive reference came from live data."""
        return Provenance.BACKFILL if self.wayback_url else Provenance.SCRAPE


class Restaurant(BaseModel):
    """A restaurant as stored in the fact store."""

    id: int | None = None
    url: str
    name: str = ""
    address: str = ""
    location: str = ""
    latitude: str = "0.0"
    longitude: str = "0.0"
    cuisine: str = ""
    phone_number: str = ""
    website_url: str | None = None
    facilities_and_services: str = ""
    description: str = ""
    image_url: str | None = None
    in_guide: bool = True
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    awards: list[Award] = Field(default_factory=list)
