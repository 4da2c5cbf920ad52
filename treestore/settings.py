# treestore/settings.py
"""
Application settings.
"""

import os
from dataclasses import dataclass
from typing import Optional

# Load .env file
from dotenv import load_dotenv
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Benchmark configuration."""

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./var/treestore.db")

    # Snapshot strategy: ticks between version shards
    snapshot_threshold: int = int(os.getenv("SNAPSHOT_THRESHOLD", "5000"))

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_flag("LOG_JSON", "true")
    log_file: Optional[str] = os.getenv("LOG_FILE") or None

    # Replay results
    results_file: str = os.getenv("RESULTS_FILE", "./var/test_results.json")

    # Workload generator defaults
    initial_inserts: int = int(os.getenv("INITIAL_INSERTS", "50"))
    update_num: int = int(os.getenv("UPDATE_NUM", "100"))
    reads_per_update: int = int(os.getenv("READS_PER_UPDATE", "10"))


# Global settings instance
settings = Settings()
