from __future__ import annotations

import copy
from datetime import datetime, timezone

import pytest

from palavras.progress.reconciler import (
    empty_state,
    flashcard_entry,
    get_progress_entry,
    mastery_status,
    migrate_legacy_progress,
    normalize_state,
    reviewed_word_ids,
    set_progress_entry,
)
from palavras.scheduler.srs import MASTERED, NEEDS_REVIEW, WordProgress, classify, next_progress

UTC = timezone.utc
NOW = datetime(2026, 2, 12, 8, 0, tzinfo=UTC)


def _entry(word_id="w1", **overrides):
    values = {
        "ease": 2.7,
        "interval": 9.0,
        "review_count": 4,
        "last_reviewed": NOW.isoformat(),
        "next_review": datetime(2026, 2, 21, 8, 0, tzinfo=UTC).isoformat(),
    }
    values.update(overrides)
    return WordProgress(word_id=word_id, **values)


def _history_entry(word_id, **overrides):
    doc = _entry(word_id).to_document()
    doc.update(overrides)
    return doc


def test_unreviewed_word_reads_default_entry():
    entry = get_progress_entry(empty_state(), "w1")

    assert (entry.ease, entry.interval, entry.review_count) == (2.5, 0, 0)
    assert entry.last_reviewed is None
    assert entry.next_review is None


def test_read_is_idempotent_and_does_not_mutate():
    state = empty_state()
    state["wordsHistory"].append(_history_entry("w1"))
    before = copy.deepcopy(state)

    assert get_progress_entry(state, "w1") == get_progress_entry(state, "w1")
    assert state == before


def test_canonical_map_wins_over_history():
    state = empty_state()
    state["wordsHistory"].append(_history_entry("w1", ease=1.5))
    set_progress_entry(state, "w1", _entry(ease=2.9))
    state["wordsHistory"].append(_history_entry("w1", ease=1.4))

    assert get_progress_entry(state, "w1").ease == 2.9


def test_latest_history_entry_is_used_when_map_lacks_key():
    state = empty_state()
    state["wordsHistory"].extend(
        [
            _history_entry("w1", ease=1.5, reviewCount=1),
            _history_entry("w2", ease=2.2),
            _history_entry("w1", ease=2.1, reviewCount=2),
        ]
    )

    entry = get_progress_entry(state, "w1")

    assert entry.ease == 2.1
    assert entry.review_count == 2


def test_history_entry_missing_fields_is_normalized():
    state = empty_state()
    state["wordsHistory"].append({"wordId": "w1", "reviewCount": 3})

    entry = get_progress_entry(state, "w1")

    assert (entry.ease, entry.interval, entry.review_count) == (2.5, 0, 3)
    assert entry.next_review is None


def test_set_then_get_round_trips():
    state = empty_state()
    entry = _entry()

    set_progress_entry(state, "w1", entry)

    assert get_progress_entry(state, "w1") == entry


def test_write_upserts_history_instead_of_appending():
    state = empty_state()
    state["wordsHistory"].append(_history_entry("w1", ease=1.5))

    set_progress_entry(state, "w1", _entry(ease=2.2))
    set_progress_entry(state, "w1", _entry(ease=2.4))
    set_progress_entry(state, "w2", _entry("w2"))

    history = state["wordsHistory"]
    assert [item["wordId"] for item in history] == ["w1", "w2"]
    assert history[0]["ease"] == 2.4


@pytest.mark.parametrize(
    ("entry", "expected"),
    [
        (_entry(ease=2.8, interval=10), MASTERED),
        (_entry(ease=1.8, interval=0.1), NEEDS_REVIEW),
        (_entry(ease=2.3, interval=10), None),
    ],
)
def test_all_three_shapes_agree_after_write(entry, expected):
    state = empty_state()
    state["words"]["mastered"].append("w1")
    state["words"]["needsReview"].append("w1")

    set_progress_entry(state, "w1", entry)

    from_map = classify(get_progress_entry(state, "w1"))
    history_doc = state["wordsHistory"][-1]
    from_history = classify(
        WordProgress(word_id="w1", ease=history_doc["ease"], interval=history_doc["interval"])
    )
    assert mastery_status(state, "w1") == expected
    assert from_map == expected
    assert from_history == expected
    memberships = [bucket for bucket in ("mastered", "needsReview") if "w1" in state["words"][bucket]]
    assert len(memberships) <= 1


def test_moving_between_buckets_keeps_other_words():
    state = empty_state()
    state["words"]["mastered"] = ["w9"]
    state["words"]["needsReview"] = ["w8"]

    set_progress_entry(state, "w1", _entry(ease=2.8, interval=10))
    set_progress_entry(state, "w1", next_progress(get_progress_entry(state, "w1"), "hard", now=NOW))

    assert state["words"]["mastered"] == ["w9"]
    assert state["words"]["needsReview"] == ["w8", "w1"]


def test_integer_word_ids_share_keys_with_strings():
    state = empty_state()
    set_progress_entry(state, 5, _entry("5"))

    assert get_progress_entry(state, "5").review_count == 4
    assert "5" in state["wordProgress"]


def test_normalize_state_accepts_oldest_document_shape():
    legacy = {
        "learningPath": {"currentStage": "stage-2", "completedStages": ["stage-1"]},
        "words": {"mastered": [1, 2], "needsReview": [3]},
        "tests": [{"testId": "t1", "score": 80}],
    }

    state = normalize_state(legacy)

    assert state["words"]["mastered"] == ["1", "2"]
    assert state["wordProgress"] == {}
    assert state["wordsHistory"] == []
    assert state["learningPath"]["currentStage"] == "stage-2"
    assert state["tests"] == [{"testId": "t1", "score": 80}]


def test_reviewed_word_ids_unions_every_shape():
    state = empty_state()
    state["words"]["mastered"] = ["a"]
    state["words"]["needsReview"] = ["b", "a"]
    state["wordsHistory"].append(_history_entry("c"))
    set_progress_entry(state, "d", _entry("d", ease=2.3, interval=10))

    assert reviewed_word_ids(state) == ["a", "b", "d", "c"]


def test_flashcard_entry_fills_legacy_only_words():
    state = empty_state()
    state["words"]["mastered"] = ["m"]
    state["words"]["needsReview"] = ["n"]

    mastered = flashcard_entry(state, "m")
    needs_review = flashcard_entry(state, "n")
    unknown = flashcard_entry(state, "x")

    assert (mastered.review_count, mastered.interval, mastered.ease) == (1, 7.0, 2.5)
    assert (needs_review.review_count, needs_review.interval) == (1, 1.0)
    assert unknown.review_count == 0


def test_migration_absorbs_history_and_reports_legacy_only_ids():
    state = empty_state()
    state["words"]["mastered"] = ["legacy", "w1"]
    state["wordsHistory"].extend(
        [
            _history_entry("w1", ease=1.9, interval=0.1, reviewCount=1),
            _history_entry("w1", ease=2.8, interval=12, reviewCount=5),
            _history_entry("w2", ease=2.0, interval=2),
        ]
    )
    set_progress_entry(state, "w3", _entry("w3", ease=2.3, interval=10))
    state["words"]["needsReview"].append("w3")

    report = migrate_legacy_progress(state)

    assert report.absorbed == ["w1", "w2"]
    assert report.legacy_only == ["legacy"]
    assert report.resynced == 3
    assert state["wordProgress"]["w1"]["reviewCount"] == 5
    assert mastery_status(state, "w1") == MASTERED
    assert mastery_status(state, "w2") == NEEDS_REVIEW
    assert mastery_status(state, "w3") is None
    assert "legacy" in state["words"]["mastered"]


def test_migration_is_repeatable():
    state = empty_state()
    state["wordsHistory"].append(_history_entry("w1"))
    migrate_legacy_progress(state)
    snapshot = copy.deepcopy(state)

    report = migrate_legacy_progress(state)

    assert report.absorbed == []
    assert state == snapshot


def test_migration_prefers_history_over_empty_map_entry():
    state = empty_state()
    state["wordProgress"]["w1"] = {}
    state["wordsHistory"].append(_history_entry("w1", ease=2.8, interval=14, reviewCount=6))
    before = get_progress_entry(state, "w1")

    report = migrate_legacy_progress(state)

    after = get_progress_entry(state, "w1")
    assert (before.ease, before.interval, before.review_count) == (2.8, 14, 6)
    assert after == before
    assert report.absorbed == ["w1"]
    assert state["wordsHistory"][-1]["reviewCount"] == 6
    assert mastery_status(state, "w1") == MASTERED


@pytest.mark.parametrize(
    ("last_reviewed", "next_review"),
    [
        ("2026-02-12T08:00:00Z", "2026-02-21T08:00:00Z"),
        ("2026-02-12T08:00:00", "2026-02-21T08:00:00"),
        ("2026-02-12T08:00:00+01:00", "2026-02-21T08:00:00+01:00"),
    ],
)
def test_round_trip_keeps_timestamps_as_written(last_reviewed, next_review):
    state = empty_state()
    entry = _entry(last_reviewed=last_reviewed, next_review=next_review)

    set_progress_entry(state, "w1", entry)

    assert get_progress_entry(state, "w1") == entry
