from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
DB_PATH = Path(os.getenv("PALAVRAS_DB_PATH") or PROJECT_ROOT / "palavras.db")
LOG_LEVEL = os.getenv("PALAVRAS_LOG_LEVEL", "INFO").strip().upper()
LOG_FILE = os.getenv("PALAVRAS_LOG_FILE") or None
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
CORS_ORIGINS = [
    origin.strip() for origin in os.getenv("PALAVRAS_CORS_ORIGINS", "*").split(",") if origin.strip()
]
MAX_WRITE_ATTEMPTS = max(1, int(os.getenv("PALAVRAS_MAX_WRITE_ATTEMPTS", "3")))


@dataclass(frozen=True)
class SchedulerConfig:
    default_ease: float = 2.5
    default_interval: float = 0.0
    min_ease: float = 1.3
    max_ease: float = 3.0
    easy_ease_bonus: float = 0.15
    medium_ease_penalty: float = 0.15
    medium_interval_factor: float = 0.8
    min_easy_interval: float = 1.0
    min_medium_interval: float = 0.5
    hard_interval: float = 0.1
    hard_ease: float = 1.8
    mastered_min_interval: float = 7.0
    mastered_min_ease: float = 2.6
    needs_review_max_ease: float = 2.0


DEFAULT_SCHEDULER_CONFIG = SchedulerConfig()


@dataclass(frozen=True)
class CatalogLimits:
    default_page_size: int = 20
    max_page_size: int = 100


def ensure_dirs() -> None:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    if LOG_FILE:
        Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
