"""Runtime configuration and logging setup.

Settings are read from the environment (and a local .env file, if present).
Nothing here opens a database connection; callers build engines from
`Settings.database_url` explicitly.
"""

import logging
import os

import logfire
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

load_dotenv()

# Rows written per staging / prediction round-trip
DEFAULT_CHUNK_SIZE = 1000

# Training rows loaded into memory per estimator invocation
DEFAULT_TRAINING_LIMIT = 50_000

# Predictions at or below this confidence are not persisted
DEFAULT_MIN_CONFIDENCE = 30.0


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Pipeline settings. Field descriptions name the backing env var."""

    database_url: str = Field(
        default="sqlite:///rollsync.db",
        description="DATABASE_URL: SQLAlchemy URL of the authoritative store",
    )
    default_state: str = Field(
        default="TX",
        min_length=2,
        max_length=2,
        description="ROLLSYNC_DEFAULT_STATE: state assumed when the feed omits one",
    )
    feed_delimiter: str = Field(
        default=",",
        min_length=1,
        max_length=1,
        description="ROLLSYNC_FEED_DELIMITER: column delimiter of the feed",
    )
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        gt=0,
        description="ROLLSYNC_CHUNK_SIZE: rows per bulk write",
    )
    training_limit: int = Field(
        default=DEFAULT_TRAINING_LIMIT,
        gt=0,
        description="ROLLSYNC_TRAINING_LIMIT: max training samples for the estimator",
    )
    min_confidence: float = Field(
        default=DEFAULT_MIN_CONFIDENCE,
        ge=0,
        le=100,
        description="ROLLSYNC_MIN_CONFIDENCE: predictions must score above this",
    )
    include_inactive_owners: bool = Field(
        default=False,
        description="ROLLSYNC_INCLUDE_INACTIVE_OWNERS: count inactive rows in portfolios",
    )
    logfire_token: str | None = Field(
        default=None,
        description="LOGFIRE_TOKEN: enables Logfire export when set",
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        values: dict = {
            "database_url": os.getenv("DATABASE_URL"),
            "default_state": os.getenv("ROLLSYNC_DEFAULT_STATE"),
            "feed_delimiter": os.getenv("ROLLSYNC_FEED_DELIMITER"),
            "chunk_size": os.getenv("ROLLSYNC_CHUNK_SIZE"),
            "training_limit": os.getenv("ROLLSYNC_TRAINING_LIMIT"),
            "min_confidence": os.getenv("ROLLSYNC_MIN_CONFIDENCE"),
            "logfire_token": os.getenv("LOGFIRE_TOKEN"),
        }
        values = {k: v for k, v in values.items() if v not in (None, "")}
        values["include_inactive_owners"] = _env_bool("ROLLSYNC_INCLUDE_INACTIVE_OWNERS")
        return cls(**values)


def configure_logging(
    settings: Settings,
    engine: Engine | None = None,
    level: int = logging.INFO,
) -> None:
    """Set up stdlib logging, plus Logfire export when a token is configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    # Configure Logfire for observability (optional - only if token is set)
    if settings.logfire_token:
        logfire.configure(token=settings.logfire_token)
        handlers.append(logfire.LogfireLoggingHandler())
        if engine is not None:
            logfire.instrument_sqlalchemy(engine=engine)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )
