"""Backend package for the creature hunt core."""

from .cache import CatalogCache, InMemoryCatalogCache, SqliteCatalogCache, create_cache
from .captures import CaptureStore, InMemoryCaptureStore, PostgresCaptureStore, create_capture_store, trainer_rank
from .catalog import CatalogListing, CatalogRepository, HttpCatalogSource
from .config import CreatureHuntSettings, configure_logging, load_settings
from .engine import CaptureOutcome, CaptureResult, EncounterEngine, EncounterState
from .feed import FeedCounterService, FeedStore, InMemoryFeedStore, PostgresFeedStore, create_feed_store
from .timers import AsyncioTimerScheduler, TimerHandle

__all__ = [
    "AsyncioTimerScheduler",
    "CaptureOutcome",
    "CaptureResult",
    "CaptureStore",
    "CatalogCache",
    "CatalogListing",
    "CatalogRepository",
    "configure_logging",
    "create_cache",
    "create_capture_store",
    "create_feed_store",
    "CreatureHuntSettings",
    "EncounterEngine",
    "EncounterState",
    "FeedCounterService",
    "FeedStore",
    "HttpCatalogSource",
    "InMemoryCaptureStore",
    "InMemoryCatalogCache",
    "InMemoryFeedStore",
    "load_settings",
    "PostgresCaptureStore",
    "PostgresFeedStore",
    "SqliteCatalogCache",
    "TimerHandle",
    "trainer_rank",
]
