"""Repository classes for restaurant and award database operations."""

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from guide_tracker.core.enums import Provenance
from guide_tracker.core.schema import Award, Restaurant, RestaurantFact
from guide_tracker.db.engine import StoreError, create_db_engine, create_session_factory, init_db
from guide_tracker.db.models import RestaurantAwardDB, RestaurantDB
from guide_tracker.ingestion.merge import MergeDecision, MergeOutcome, decide

logger = logging.getLogger(__name__)

# Restaurant columns a later live sighting may overwrite
UPDATABLE_FIELDS = (
    "name",
    "address",
    "location",
    "latitude",
    "longitude",
    "cuisine",
    "phone_number",
    "facilities_and_services",
    "description",
)


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class RestaurantRepository:
    """Repository for Restaurant operations."""

    def __init__(self, session: Session):
        self.session = session

    def _get_db(self, restaurant_id: int) -> RestaurantDB:
        db_item = self.session.get(RestaurantDB, restaurant_id)
        if db_item is None:
            raise ValueError(f"Restaurant with id {restaurant_id} not found")
        return db_item

    def get_by_url(self, url: str) -> Restaurant | None:
        """Get a restaurant by its canonical guide URL."""
        stmt = select(RestaurantDB).where(RestaurantDB.url == url)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def get_by_website_url(self, website_url: str) -> Restaurant | None:
        """Get a restaurant by its own website URL."""
        if not website_url:
            return None
        stmt = select(RestaurantDB).where(RestaurantDB.website_url == website_url)
        db_item = self.session.execute(stmt).scalar_one_or_none()
        return self._to_domain(db_item) if db_item else None

    def find_existing(self, website_url: str, url: str) -> Restaurant | None:
        """Look a restaurant up by website URL first, then by guide URL."""
        restaurant = self.get_by_website_url(website_url)
        if restaurant is None and url:
            restaurant = self.get_by_url(url)
        return restaurant

    def _claim_website_url(self, website_url: str, restaurant_id: int | None) -> str | None:
        """Return the website URL if no other restaurant already owns it."""
        if not website_url:
            return None
        owner = self.get_by_website_url(website_url)
        if owner is not None and owner.id != restaurant_id:
            logger.warning(
                f"Website URL {website_url} already belongs to {owner.url}, not assigning it again"
            )
            return None
        return website_url

    def create_from_fact(self, fact: RestaurantFact, in_guide: bool) -> Restaurant:
        """Create a new restaurant row from a fact."""
        db_item = RestaurantDB(
            url=fact.url,
            name=fact.name,
            address=fact.address,
            location=fact.location,
            latitude=fact.latitude or "0.0",
            longitude=fact.longitude or "0.0",
            cuisine=fact.cuisine,
            phone_number=fact.phone_number,
            website_url=self._claim_website_url(fact.website_url, None),
            facilities_and_services=fact.facilities_and_services,
            description=fact.description,
            image_url=fact.image_url or None,
            in_guide=in_guide,
        )
        self.session.add(db_item)
        self.session.flush()
        return self._to_domain(db_item)

    def update_from_fact(self, restaurant_id: int, fact: RestaurantFact) -> bool:
        """
        Refresh a restaurant from a live fact.

        Only non-empty fields overwrite stored values, so a page with a
        missing block does not erase what an earlier crawl found.

        Returns:
            True if any column changed
        """
        db_item = self._get_db(restaurant_id)
        changed = False

        for name in UPDATABLE_FIELDS:
            value = getattr(fact, name)
            if value and getattr(db_item, name) != value:
                setattr(db_item, name, value)
                changed = True

        if fact.website_url and db_item.website_url != fact.website_url:
            claimed = self._claim_website_url(fact.website_url, restaurant_id)
            if claimed:
                db_item.website_url = claimed
                changed = True

        if fact.image_url and db_item.image_url != fact.image_url:
            db_item.image_url = fact.image_url
            changed = True

        if changed:
            db_item.updated_at = _utc_now()
            self.session.flush()
        return changed

    def set_in_guide(self, restaurant_id: int, in_guide: bool) -> bool:
        """Set the in-guide flag; returns True if it changed."""
        db_item = self._get_db(restaurant_id)
        if db_item.in_guide == in_guide:
            return False
        db_item.in_guide = in_guide
        db_item.updated_at = _utc_now()
        self.session.flush()
        return True

    def mark_out_of_guide_except(self, present: set[str]) -> list[str]:
        """
        Flag every in-guide restaurant whose guide URL and website URL are
        both missing from ``present`` as no longer in the guide.

        Returns:
            Guide URLs of the restaurants that were flipped
        """
        stmt = select(RestaurantDB).where(RestaurantDB.in_guide.is_(True))
        removed: list[str] = []
        for db_item in self.session.execute(stmt).scalars():
            if db_item.url in present or (db_item.website_url and db_item.website_url in present):
                continue
            removed.append(db_item.url)

        if removed:
            self.session.execute(
                update(RestaurantDB)
                .where(RestaurantDB.url.in_(removed))
                .values(in_guide=False, updated_at=_utc_now())
            )
            self.session.flush()
        return removed

    def list_with_url(self) -> list[Restaurant]:
        """List every restaurant that has a guide URL."""
        stmt = select(RestaurantDB).where(RestaurantDB.url != "").order_by(RestaurantDB.id)
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars()]

    def count(self, in_guide: bool | None = None) -> int:
        """Get total count of restaurants, optionally filtered by in-guide status."""
        stmt = select(func.count()).select_from(RestaurantDB)
        if in_guide is not None:
            stmt = stmt.where(RestaurantDB.in_guide.is_(in_guide))
        return self.session.execute(stmt).scalar() or 0

    def _to_domain(self, db_item: RestaurantDB, with_awards: bool = False) -> Restaurant:
        """Convert DB model to domain model."""
        return Restaurant(
            id=db_item.id,
            url=db_item.url,
            name=db_item.name,
            address=db_item.address,
            location=db_item.location,
            latitude=db_item.latitude,
            longitude=db_item.longitude,
            cuisine=db_item.cuisine,
            phone_number=db_item.phone_number,
            website_url=db_item.website_url,
            facilities_and_services=db_item.facilities_and_services,
            description=db_item.description,
            image_url=db_item.image_url,
            in_guide=db_item.in_guide,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
            awards=[AwardRepository.to_domain(a) for a in db_item.awards] if with_awards else [],
        )


class AwardRepository:
    """Repository for yearly award operations."""

    def __init__(self, session: Session):
        self.session = session

    def _get_db(self, restaurant_id: int, year: int) -> RestaurantAwardDB | None:
        stmt = select(RestaurantAwardDB).where(
            RestaurantAwardDB.restaurant_id == restaurant_id,
            RestaurantAwardDB.year == year,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self, restaurant_id: int, year: int) -> Award | None:
        """Get the award for a (restaurant, year) slot."""
        db_item = self._get_db(restaurant_id, year)
        return self.to_domain(db_item) if db_item else None

    def list_for_restaurant(self, restaurant_id: int) -> list[Award]:
        """List a restaurant's awards, oldest year first."""
        stmt = (
            select(RestaurantAwardDB)
            .where(RestaurantAwardDB.restaurant_id == restaurant_id)
            .order_by(RestaurantAwardDB.year)
        )
        return [self.to_domain(a) for a in self.session.execute(stmt).scalars()]

    def count(self) -> int:
        """Get total count of awards."""
        stmt = select(func.count()).select_from(RestaurantAwardDB)
        return self.session.execute(stmt).scalar() or 0

    def save_award(self, restaurant_id: int, fact: RestaurantFact) -> MergeDecision:
        """
        Merge a fact into the (restaurant, fact.year) slot.

        The merge policy decides between create, update and the rejection
        cases; this method only carries out the decision.
        """
        db_item = self._get_db(restaurant_id, fact.year) if fact.year > 0 else None
        existing = self.to_domain(db_item) if db_item else None
        decision = decide(existing, fact)

        if decision == MergeDecision.REJECT_INVALID_YEAR:
            logger.warning(f"Skipping award for {fact.url}: invalid year {fact.year}")
        elif decision == MergeDecision.REJECT_NO_DISTINCTION:
            logger.warning(f"Skipping award for {fact.url} ({fact.year}): no distinction")
        elif decision == MergeDecision.REJECT_STALE:
            logger.debug(f"Keeping live award for {fact.url} ({fact.year}) over archive data")
        elif decision == MergeDecision.CREATE:
            self.session.add(
                RestaurantAwardDB(
                    restaurant_id=restaurant_id,
                    year=fact.year,
                    distinction=fact.distinction.value,
                    price=fact.price,
                    green_star=fact.green_star,
                    wayback_url=fact.wayback_url,
                )
            )
            self.session.flush()
        elif decision == MergeDecision.UPDATE:
            db_item.distinction = fact.distinction.value
            db_item.price = fact.price
            db_item.green_star = fact.green_star
            db_item.wayback_url = fact.wayback_url
            db_item.updated_at = _utc_now()
            self.session.flush()

        return decision

    @staticmethod
    def to_domain(db_item: RestaurantAwardDB) -> Award:
        """Convert DB model to domain model."""
        return Award(
            id=db_item.id,
            restaurant_id=db_item.restaurant_id,
            year=db_item.year,
            distinction=db_item.distinction,
            price=db_item.price,
            green_star=db_item.green_star,
            wayback_url=db_item.wayback_url,
            created_at=db_item.created_at,
            updated_at=db_item.updated_at,
        )


class FactStore:
    """
    Shared handle on the fact store used by all crawl workers.

    Every write is one short transaction covering a single restaurant and
    its award; nothing spans more than one detail page.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, db_path: Path | str | None = None) -> "FactStore":
        """
        Open (and create if needed) the store at ``db_path``.

        Raises:
            StoreError: If the database cannot be opened
        """
        try:
            engine = create_db_engine(db_path)
        except OSError as e:
            raise StoreError(f"Cannot open fact store: {e}") from e
        return cls(create_session_factory(init_db(engine)))

    @contextmanager
    def transaction(self) -> Generator[Session, None, None]:
        """Run a block in a single committed-or-rolled-back transaction."""
        with self._write_lock:
            session = self.session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def apply_fact(
        self,
        fact: RestaurantFact,
        *,
        update_restaurant: bool = True,
        match_website_url: bool = False,
    ) -> MergeOutcome:
        """
        Upsert the fact's restaurant, then merge its award.

        New restaurants take ``fact.in_guide`` when set, otherwise live facts
        create in-guide restaurants and archive facts create out-of-guide
        ones. Existing restaurants are refreshed only from live facts, and
        their in-guide flag changes only when the fact sets one explicitly.
        With ``match_website_url`` an existing restaurant is looked up by
        website URL before guide URL, as dataset rows do.
        """
        with self.transaction() as session:
            restaurants = RestaurantRepository(session)
            awards = AwardRepository(session)
            outcome = MergeOutcome(decision=MergeDecision.UNCHANGED, year=fact.year)

            if match_website_url:
                restaurant = restaurants.find_existing(fact.website_url, fact.url)
            else:
                restaurant = restaurants.get_by_url(fact.url)
            if restaurant is None:
                in_guide = fact.in_guide if fact.in_guide is not None else fact.provenance == Provenance.SCRAPE
                restaurant = restaurants.create_from_fact(fact, in_guide=in_guide)
                outcome.restaurant_created = True
            else:
                if update_restaurant and fact.provenance == Provenance.SCRAPE:
                    outcome.restaurant_updated = restaurants.update_from_fact(restaurant.id, fact)
                if fact.in_guide is not None:
                    outcome.restaurant_updated |= restaurants.set_in_guide(restaurant.id, fact.in_guide)

            outcome.restaurant_id = restaurant.id
            outcome.decision = awards.save_award(restaurant.id, fact)
            return outcome

    def mark_out_of_guide_except(self, present: set[str]) -> list[str]:
        """Flag in-guide restaurants absent from ``present`` as out of the guide."""
        with self.transaction() as session:
            return RestaurantRepository(session).mark_out_of_guide_except(present)

    def get_restaurant(self, url: str) -> Restaurant | None:
        """Load a restaurant and its award timeline."""
        with self.session_factory() as session:
            db_item = session.execute(select(RestaurantDB).where(RestaurantDB.url == url)).scalar_one_or_none()
            if db_item is None:
                return None
            return RestaurantRepository(session)._to_domain(db_item, with_awards=True)

    def list_restaurants(self) -> list[Restaurant]:
        """List all restaurants that have a guide URL."""
        with self.session_factory() as session:
            return RestaurantRepository(session).list_with_url()

    def counts(self) -> dict[str, int]:
        """Row counts for reports."""
        with self.session_factory() as session:
            restaurants = RestaurantRepository(session)
            return {
                "restaurants": restaurants.count(),
                "in_guide": restaurants.count(in_guide=True),
                "awards": AwardRepository(session).count(),
            }
