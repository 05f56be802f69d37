"""Database initialization and persistence layer."""

from guide_tracker.db.engine import (
    StoreError,
    create_db_engine,
    create_session_factory,
    get_database_url,
    init_db,
    run_migrations,
)
from guide_tracker.db.models import (
    Base,
    RestaurantAwardDB,
    RestaurantDB,
)
from guide_tracker.db.repositories import (
    AwardRepository,
    FactStore,
    RestaurantRepository,
)

__all__ = [
    # Engine
    "StoreError",
    "create_db_engine",
    "create_session_factory",
    "get_database_url",
    "init_db",
    "run_migrations",
    # Models
    "Base",
    "RestaurantDB",
    "RestaurantAwardDB",
    # Repositories
    "RestaurantRepository",
    "AwardRepository",
    "FactStore",
]
