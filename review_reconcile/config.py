# ==============================================
# Configuration Management
# ==============================================
#
# PURPOSE:
#   Load and validate all configuration from environment
#   variables / .env file. Provides typed config objects
#   to the migration driver, the census reporter and the CLI.
#
# CLASSES:
# --------
# - MongoConfig (dataclass)
#     uri: str | None        (default None, overrides host/port when set)
#     host: str              (default "localhost")
#     port: int              (default 27017)
#     user: str | None       (default None)
#     password: str | None   (default None)
#     database: str          (default "app")
#     collection: str        (default "reviews")
#     use_transactions: bool (default True)
#
# - MigrationConfig (dataclass)
#     batch_size: int         (default 400, hard cap 400)
#     page_size: int          (default 1000, hard cap 1000)
#     progress_interval: int  (default 200)
#
# - CensusConfig (dataclass)
#     limit: int                       (default 2000, hard cap 20000)
#     examples_per_label: int          (default 5)
#     legacy_purge_threshold_pct: int  (default 20)
#     replay_window: int               (default 1000)
#
# - AppConfig (dataclass)
#     mongo, migration, census, log_level
#
# FUNCTIONS:
# ----------
# - get_config() -> AppConfig
#     Load .env using python-dotenv, construct AppConfig.
#     Returns the same singleton on repeated calls.
#
# - clamp_int(raw, minimum, maximum, default) -> int
#     Parse a CLI/env value and clamp it into [minimum, maximum].
#
# USAGE:
# ------
#   from review_reconcile.config import get_config
#   config = get_config()
#   print(config.mongo.collection)
#   print(config.migration.batch_size)
#
# ==============================================

import os
from dataclasses import dataclass, field
from typing import Any, Optional
from pathlib import Path

from dotenv import load_dotenv


# Atomic write-group limit of the store, kept below its 500 operation ceiling
MAX_WRITE_GROUP_SIZE = 400
MAX_PAGE_SIZE = 1000
MAX_CENSUS_LIMIT = 20000

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class MongoConfig:
    """MongoDB connection and target collection."""
    uri: Optional[str] = None
    host: str = "localhost"
    port: int = 27017
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "app"
    collection: str = "reviews"
    use_transactions: bool = True


@dataclass
class MigrationConfig:
    """Defaults for the normalize run."""
    batch_size: int = MAX_WRITE_GROUP_SIZE
    page_size: int = MAX_PAGE_SIZE
    progress_interval: int = 200


@dataclass
class CensusConfig:
    """Defaults for the read-only census."""
    limit: int = 2000
    examples_per_label: int = 5
    legacy_purge_threshold_pct: int = 20
    replay_window: int = 1000


@dataclass
class AppConfig:
    """Main application configuration."""
    mongo: MongoConfig = field(default_factory=MongoConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    census: CensusConfig = field(default_factory=CensusConfig)
    log_level: str = "INFO"


# Singleton instance
_config_instance: Optional[AppConfig] = None


def clamp_int(raw: Any, minimum: int, maximum: int, default: int) -> int:
    """
    Parse an integer setting and clamp it into [minimum, maximum].

    Non-numeric and zero values fall back to ``default`` before clamping,
    so ``--batch abc`` behaves like no flag at all.
    """
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = default
    if value == 0:
        value = default
    return max(minimum, min(maximum, value))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_config() -> AppConfig:
    """
    Load configuration from environment variables / .env file.
    Returns the same singleton instance on repeated calls.

    Returns:
        AppConfig: Application configuration
    """
    global _config_instance

    if _config_instance is not None:
        return _config_instance

    # Load .env file from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(dotenv_path=env_path)

    mongo_config = MongoConfig(
        uri=os.getenv("MONGO_URI") or None,
        host=os.getenv("MONGO_HOST", "localhost"),
        port=int(os.getenv("MONGO_PORT", "27017")),
        user=os.getenv("MONGO_USER") or None,
        password=os.getenv("MONGO_PASSWORD") or None,
        database=os.getenv("MONGO_DATABASE", "app"),
        collection=os.getenv("MONGO_COLLECTION", "reviews"),
        use_transactions=_env_bool("MONGO_USE_TRANSACTIONS", True)
    )

    migration_config = MigrationConfig(
        batch_size=clamp_int(os.getenv("MIGRATION_BATCH_SIZE"), 1, MAX_WRITE_GROUP_SIZE, MAX_WRITE_GROUP_SIZE),
        page_size=clamp_int(os.getenv("MIGRATION_PAGE_SIZE"), 1, MAX_PAGE_SIZE, MAX_PAGE_SIZE),
        progress_interval=clamp_int(os.getenv("MIGRATION_PROGRESS_INTERVAL"), 1, 1_000_000, 200)
    )

    census_config = CensusConfig(
        limit=clamp_int(os.getenv("CENSUS_LIMIT"), 1, MAX_CENSUS_LIMIT, 2000),
        examples_per_label=clamp_int(os.getenv("CENSUS_EXAMPLES_PER_LABEL"), 1, 100, 5),
        legacy_purge_threshold_pct=clamp_int(os.getenv("CENSUS_PURGE_THRESHOLD_PCT"), 1, 100, 20),
        replay_window=clamp_int(os.getenv("CENSUS_REPLAY_WINDOW"), 1, 10000, 1000)
    )

    _config_instance = AppConfig(
        mongo=mongo_config,
        migration=migration_config,
        census=census_config,
        log_level=os.getenv("LOG_LEVEL", "INFO")
    )

    return _config_instance


def reset_config() -> None:
    """Drop the cached singleton so the next get_config() re-reads the environment."""
    global _config_instance
    _config_instance = None
