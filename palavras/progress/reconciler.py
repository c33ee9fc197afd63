"""Keeps the three stored shapes of a user's word progress in agreement.

A progress document may carry any mix of:

* ``words.mastered`` / ``words.needsReview``: bare id lists, no scheduling data,
* ``wordProgress``: word id -> entry map, the canonical shape,
* ``wordsHistory``: list of entries carrying their own ``wordId``.

Reads prefer the map, then the last history entry for the word, then a fresh
default. Writes go to the map, upsert the history entry and re-derive the
mastered / needs-review membership, all on the same in-memory document so the
store can persist it as one unit.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from palavras.config import DEFAULT_SCHEDULER_CONFIG, SchedulerConfig
from palavras.scheduler.srs import (
    MASTERED,
    NEEDS_REVIEW,
    WordProgress,
    classify,
    default_progress,
    progress_from_document,
)

LEGACY_MASTERED_INTERVAL = 7.0
LEGACY_NEEDS_REVIEW_INTERVAL = 1.0


@dataclass
class MigrationReport:
    absorbed: list[str] = field(default_factory=list)
    legacy_only: list[str] = field(default_factory=list)
    resynced: int = 0

    def as_dict(self) -> dict:
        return {
            "absorbed": len(self.absorbed),
            "absorbed_ids": list(self.absorbed),
            "legacy_only_ids": list(self.legacy_only),
            "resynced": self.resynced,
        }


def empty_state() -> dict:
    return {
        "learningPath": {"currentStage": "stage-1", "completedStages": []},
        "words": {"mastered": [], "needsReview": []},
        "wordProgress": {},
        "wordsHistory": [],
        "tests": [],
    }


def normalize_state(state: dict | None) -> dict:
    """Fill in any missing containers so older documents can be read and written."""
    normalized = dict(state or {})
    defaults = empty_state()
    for key, value in defaults.items():
        if not isinstance(normalized.get(key), type(value)):
            normalized[key] = value
    words = dict(normalized["words"])
    words["mastered"] = [str(item) for item in words.get("mastered") or []]
    words["needsReview"] = [str(item) for item in words.get("needsReview") or []]
    normalized["words"] = words
    normalized["wordProgress"] = {str(k): v for k, v in normalized["wordProgress"].items()}
    normalized["wordsHistory"] = [
        entry for entry in normalized["wordsHistory"] if isinstance(entry, dict) and entry.get("wordId") is not None
    ]
    return normalized


def get_progress_entry(
    state: dict,
    word_id: object,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> WordProgress:
    key = str(word_id)
    entry = (state.get("wordProgress") or {}).get(key)
    if entry:
        return progress_from_document(key, entry, config)
    history = _latest_history_entry(state, key)
    if history is not None:
        return progress_from_document(key, history, config)
    return default_progress(key, config)


def set_progress_entry(
    state: dict,
    word_id: object,
    entry: WordProgress,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> None:
    key = str(word_id)
    doc = {**entry.to_document(), "wordId": key}

    state.setdefault("wordProgress", {})[key] = doc

    history = state.setdefault("wordsHistory", [])
    index = _latest_history_index(history, key)
    if index is None:
        history.append(dict(doc))
    else:
        history[index] = dict(doc)

    _sync_legacy_sets(state, key, classify(entry, config))


def mastery_status(state: dict, word_id: object) -> str | None:
    """Bucket a word sits in according to the legacy id lists."""
    key = str(word_id)
    words = state.get("words") or {}
    if key in (words.get("mastered") or []):
        return MASTERED
    if key in (words.get("needsReview") or []):
        return NEEDS_REVIEW
    return None


def reviewed_word_ids(state: dict) -> list[str]:
    """Ids known to any of the three shapes, in first-seen order."""
    words = state.get("words") or {}
    seen: dict[str, None] = {}
    for key in (
        *(words.get("mastered") or []),
        *(words.get("needsReview") or []),
        *(state.get("wordProgress") or {}).keys(),
        *(str(entry.get("wordId")) for entry in state.get("wordsHistory") or []),
    ):
        seen.setdefault(str(key), None)
    return list(seen)


def flashcard_entry(
    state: dict,
    word_id: object,
    config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG,
) -> WordProgress:
    """Progress for the flashcard listing.

    Words present only in the legacy id lists get synthetic stats: one review,
    and a one-week or one-day interval depending on the list.
    """
    entry = get_progress_entry(state, word_id, config)
    if entry.review_count > 0:
        return entry
    status = mastery_status(state, word_id)
    if status is None:
        return entry
    entry.review_count = 1
    entry.interval = LEGACY_MASTERED_INTERVAL if status == MASTERED else LEGACY_NEEDS_REVIEW_INTERVAL
    return entry


def migrate_legacy_progress(state: dict, config: SchedulerConfig = DEFAULT_SCHEDULER_CONFIG) -> MigrationReport:
    """Fold history-only entries into the canonical map and re-derive the id lists.

    Ids that only appear in the legacy lists carry no scheduling data and are
    reported, not rewritten.
    """
    report = MigrationReport()
    progress_map = state.setdefault("wordProgress", {})

    for entry in state.get("wordsHistory") or []:
        key = str(entry.get("wordId"))
        if progress_map.get(key) or key in report.absorbed:
            continue
        report.absorbed.append(key)

    for key in report.absorbed:
        progress_map[key] = {**get_progress_entry(state, key, config).to_document(), "wordId": key}

    for key in list(progress_map):
        entry = progress_from_document(key, progress_map[key], config)
        set_progress_entry(state, key, entry, config)
        report.resynced += 1

    words = state.get("words") or {}
    for key in (*(words.get("mastered") or []), *(words.get("needsReview") or [])):
        if key not in progress_map and key not in report.legacy_only:
            report.legacy_only.append(key)
    return report


def _sync_legacy_sets(state: dict, key: str, status: str | None) -> None:
    words = state.setdefault("words", {})
    for bucket in (MASTERED, NEEDS_REVIEW):
        members = [item for item in words.get(bucket) or [] if str(item) != key]
        if bucket == status:
            members.append(key)
        words[bucket] = members


def _latest_history_index(history: list[dict], key: str) -> int | None:
    for index in range(len(history) - 1, -1, -1):
        if str(history[index].get("wordId")) == key:
            return index
    return None


def _latest_history_entry(state: dict, key: str) -> dict | None:
    history = state.get("wordsHistory") or []
    index = _latest_history_index(history, key)
    return history[index] if index is not None else None
