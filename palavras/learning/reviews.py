from __future__ import annotations

import logging
from datetime import datetime, timezone

from palavras.config import DEFAULT_SCHEDULER_CONFIG, MAX_WRITE_ATTEMPTS, SchedulerConfig
from palavras.errors import ConcurrentUpdateError, NotFoundError, ValidationError
from palavras.progress.reconciler import (
    MigrationReport,
    flashcard_entry,
    get_progress_entry,
    mastery_status,
    migrate_legacy_progress,
    reviewed_word_ids,
    set_progress_entry,
)
from palavras.scheduler.srs import classify, is_due, next_progress, normalize_outcome, parse_dt
from palavras.storage.db import Database

UTC = timezone.utc

logger = logging.getLogger(__name__)


def submit_review(
    db: Database,
    *,
    user_id: int,
    word_id: int,
    outcome: str,
    now: datetime | None = None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
    max_attempts: int = MAX_WRITE_ATTEMPTS,
) -> dict:
    """Record one review event and return the word's new canonical progress.

    The user's progress document is read, updated in memory and written back
    with a version check. A lost race leaves the store untouched, so the whole
    read-modify-write is run again, at most ``max_attempts`` times.
    """
    if user_id is None or word_id is None:
        raise ValidationError("user_id and word_id are required")
    outcome = normalize_outcome(outcome)
    if not db.word_exists(word_id):
        raise NotFoundError("word not found")

    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        state, version = db.load_progress(user_id)
        previous = get_progress_entry(state, word_id, config)
        updated = next_progress(previous, outcome, now=now, config=config)
        set_progress_entry(state, word_id, updated, config)
        try:
            db.save_progress(user_id, state, expected_version=version)
        except ConcurrentUpdateError:
            if attempt == attempts:
                raise
            logger.warning(
                "Progress of user %s changed during review of word %s, retrying (%d/%d)",
                user_id,
                word_id,
                attempt,
                attempts,
            )
            continue
        logger.info(
            "Review recorded user=%s word=%s outcome=%s ease=%.2f interval=%.2f",
            user_id,
            word_id,
            outcome,
            updated.ease,
            updated.interval,
        )
        return {"progress": updated.to_document(), "status": classify(updated, config)}


def list_words_with_progress(
    db: Database,
    *,
    user_id: int,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> list[dict]:
    state, _version = db.load_progress(user_id)
    items: list[dict] = []
    for word in db.list_all_words():
        entry = get_progress_entry(state, word["id"], config)
        items.append(_merge(word, entry.to_document(), mastery_status(state, word["id"])))
    return items


def list_flashcards(
    db: Database,
    *,
    user_id: int,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> list[dict]:
    state, _version = db.load_progress(user_id)
    word_ids = reviewed_word_ids(state)
    words = {str(word["id"]): word for word in db.find_words_by_ids(word_ids)}
    items: list[dict] = []
    for key in word_ids:
        word = words.get(key)
        if word is None:
            continue
        entry = flashcard_entry(state, key, config)
        items.append(_merge(word, entry.to_document(), mastery_status(state, key)))
    return items


def list_due_words(
    db: Database,
    *,
    user_id: int,
    limit: int = 20,
    now: datetime | None = None,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> list[dict]:
    now = now or datetime.now(UTC)
    state, _version = db.load_progress(user_id)
    due = [
        entry
        for entry in (get_progress_entry(state, key, config) for key in reviewed_word_ids(state))
        if is_due(entry, now)
    ]
    due.sort(key=lambda entry: parse_dt(entry.next_review))
    words = {str(word["id"]): word for word in db.find_words_by_ids([entry.word_id for entry in due])}
    items: list[dict] = []
    for entry in due:
        word = words.get(entry.word_id)
        if word is None:
            continue
        items.append(_merge(word, entry.to_document(), mastery_status(state, entry.word_id)))
        if len(items) >= limit:
            break
    return items


def migrate_user_progress(
    db: Database,
    *,
    user_id: int,
    dry_run: bool = False,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> MigrationReport:
    state, version = db.load_progress(user_id)
    report = migrate_legacy_progress(state, config)
    if not dry_run:
        db.save_progress(user_id, state, expected_version=version)
    logger.info(
        "Legacy progress migration user=%s absorbed=%d legacy_only=%d dry_run=%s",
        user_id,
        len(report.absorbed),
        len(report.legacy_only),
        dry_run,
    )
    return report


def progress_summary(state: dict) -> dict:
    words = state.get("words") or {}
    mastered = list(words.get("mastered") or [])
    needs_review = list(words.get("needsReview") or [])
    return {
        "learningPath": state.get("learningPath"),
        "mastered": mastered,
        "needsReview": needs_review,
        "masteredCount": len(mastered),
        "needsReviewCount": len(needs_review),
        "reviewedCount": len(state.get("wordProgress") or {}),
    }


def _merge(word: dict, progress: dict, status: str | None) -> dict:
    merged = {**word, **{k: v for k, v in progress.items() if k != "wordId"}}
    merged["status"] = status
    return merged
