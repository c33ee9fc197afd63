from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

from palavras.config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from palavras.errors import ValidationError

UTC = timezone.utc
OUTCOMES = ("easy", "medium", "hard")
MASTERED = "mastered"
NEEDS_REVIEW = "needsReview"


@dataclass
class WordProgress:
    word_id: str
    ease: float = DEFAULT_SCHEDULER_CONFIG.default_ease
    interval: float = DEFAULT_SCHEDULER_CONFIG.default_interval
    review_count: int = 0
    last_reviewed: str | None = None
    next_review: str | None = None

    def to_document(self) -> dict:
        return {
            "wordId": self.word_id,
            "ease": self.ease,
            "interval": self.interval,
            "reviewCount": self.review_count,
            "lastReviewed": self.last_reviewed,
            "nextReview": self.next_review,
        }


def default_progress(word_id: object, config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG) -> WordProgress:
    return WordProgress(
        word_id=str(word_id),
        ease=config.default_ease,
        interval=config.default_interval,
    )


def progress_from_document(
    word_id: object,
    doc: dict | None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> WordProgress:
    """Normalize a stored entry of any schema generation to WordProgress."""
    if not doc:
        return default_progress(word_id, config)
    return WordProgress(
        word_id=str(word_id),
        ease=_float_or(doc.get("ease"), config.default_ease),
        interval=_float_or(doc.get("interval"), config.default_interval),
        review_count=max(0, int(doc.get("reviewCount") or 0)),
        last_reviewed=_iso_or_none(doc.get("lastReviewed")),
        next_review=_iso_or_none(doc.get("nextReview")),
    )


def normalize_outcome(outcome: object) -> str:
    value = str(outcome or "").strip().lower()
    if value not in OUTCOMES:
        raise ValidationError(f"invalid outcome {outcome!r}; expected one of {', '.join(OUTCOMES)}")
    return value


def next_interval_and_ease(
    ease: float | None,
    interval: float | None,
    outcome: str,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> tuple[float, float]:
    """Return (new_ease, new_interval) for one review outcome."""
    outcome = normalize_outcome(outcome)
    ease = config.default_ease if ease is None else float(ease)
    interval = config.default_interval if interval is None else float(interval)
    # A zero interval (never reviewed) counts as one day for the multiplication.
    base = interval or 1.0

    if outcome == "easy":
        new_interval = max(config.min_easy_interval, base * ease)
        new_ease = _clamp_ease(ease + config.easy_ease_bonus, config)
    elif outcome == "medium":
        new_interval = max(config.min_medium_interval, base * config.medium_interval_factor)
        new_ease = _clamp_ease(ease - config.medium_ease_penalty, config)
    else:
        # Fixed reset: previous ease and interval are discarded.
        new_interval = config.hard_interval
        new_ease = config.hard_ease
    return new_ease, new_interval


def next_progress(
    previous: WordProgress,
    outcome: str,
    now: datetime | None = None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> WordProgress:
    now = now or datetime.now(UTC)
    new_ease, new_interval = next_interval_and_ease(previous.ease, previous.interval, outcome, config)
    return replace(
        previous,
        ease=new_ease,
        interval=new_interval,
        review_count=previous.review_count + 1,
        last_reviewed=now.isoformat(),
        next_review=(now + timedelta(days=new_interval)).isoformat(),
    )


def classify(progress: WordProgress, config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG) -> str | None:
    """Legacy mastery bucket for a progress entry, or None for neither."""
    if progress.interval >= config.mastered_min_interval and progress.ease > config.mastered_min_ease:
        return MASTERED
    if progress.ease < config.needs_review_max_ease or progress.interval < config.mastered_min_interval:
        return NEEDS_REVIEW
    return None


def is_due(progress: WordProgress, now: datetime | None = None) -> bool:
    if progress.next_review is None:
        return False
    due_at = parse_dt(progress.next_review)
    if due_at is None:
        return False
    return due_at <= (now or datetime.now(UTC))


def parse_dt(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _clamp_ease(value: float, config: SchedulerConfig) -> float:
    return max(config.min_ease, min(config.max_ease, value))


def _float_or(value: object, default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _iso_or_none(value: object) -> str | None:
    # Valid timestamp strings are kept as written so stored entries read back unchanged.
    parsed = parse_dt(value)
    if parsed is None:
        return None
    if isinstance(value, str):
        return value.strip()
    return parsed.isoformat()
