# File: src/lotkeeper/config.py
"""
Runtime configuration read from environment variables
"""

from dataclasses import dataclass
from typing import Optional
import os


STORE_BACKENDS = ("memory", "json", "sql", "mongo")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings; build with Settings.from_env()"""
    store_backend: str = "memory"
    data_file: str = "parking_data.json"
    database_url: str = "sqlite:///./lotkeeper.db"
    mongodb_uri: Optional[str] = None
    mongodb_db_name: str = "admin"
    redis_url: Optional[str] = None
    event_channel: str = "lotkeeper.events"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def __post_init__(self):
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(
                f"Store backend must be one of {', '.join(STORE_BACKENDS)}, got: {self.store_backend}"
            )

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            store_backend=os.getenv("LOTKEEPER_STORE", "memory").strip().lower(),
            data_file=os.getenv("LOTKEEPER_DATA_FILE", "parking_data.json"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./lotkeeper.db"),
            mongodb_uri=os.getenv("MONGODB_URI") or None,
            mongodb_db_name=os.getenv("MONGODB_DB_NAME", "admin"),
            redis_url=os.getenv("REDIS_URL") or None,
            event_channel=os.getenv("LOTKEEPER_EVENT_CHANNEL", "lotkeeper.events"),
            log_level=os.getenv("LOTKEEPER_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOTKEEPER_LOG_FILE") or None,
        )
