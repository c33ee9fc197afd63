from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

from palavras.config import DB_PATH, CatalogLimits
from palavras.errors import (
    ConcurrentUpdateError,
    DuplicateUserError,
    DuplicateWordError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from palavras.progress.reconciler import empty_state, normalize_state

UTC = timezone.utc
SORT_COLUMNS = {
    "portuguese": "portuguese",
    "english": "english",
    "group": "group_name",
    "difficulty": "difficulty",
    "createdAt": "created_at",
}
UNGROUPED = "Ungrouped"
ALL_GROUPS = "All"
WORD_FIELDS = {
    "portuguese": "portuguese",
    "english": "english",
    "group": "group_name",
    "partOfSpeech": "part_of_speech",
    "gender": "gender",
    "difficulty": "difficulty",
    "examples": "examples",
    "imageUrl": "image_url",
}

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        # LIKE and NOCASE only fold ASCII; accented letters need Python's folding.
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self.connect() as conn:
            conn.executescript(schema_path.read_text(encoding="utf-8"))

    # users

    def create_user(self, *, email: str, name: str, progress: dict | None = None) -> dict:
        normalized_email = str(email or "").strip().lower()
        display_name = " ".join(str(name or "").split())
        if not normalized_email or not display_name:
            raise ValidationError("email and name are required")
        state = normalize_state(progress) if progress is not None else empty_state()
        with self.connect() as conn:
            try:
                cur = conn.execute(
                    "INSERT INTO users (email, name, progress) VALUES (?, ?, ?)",
                    (normalized_email, display_name, _json_dumps(state)),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateUserError("User already exists") from exc
            user_id = int(cur.lastrowid)
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> dict | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _decode_user(row) if row else None

    def list_user_ids(self) -> list[int]:
        with self.connect() as conn:
            rows = conn.execute("SELECT id FROM users ORDER BY id ASC").fetchall()
        return [int(row["id"]) for row in rows]

    def load_progress(self, user_id: int) -> tuple[dict, int]:
        """Return the user's progress document and its version token."""
        with self.connect() as conn:
            row = conn.execute(
                "SELECT progress, progress_version FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError("user not found")
        return normalize_state(_json_loads_dict(row["progress"])), int(row["progress_version"])

    def save_progress(self, user_id: int, state: dict, *, expected_version: int) -> int:
        """Persist the whole progress document if nobody wrote it since it was loaded."""
        with self.connect() as conn:
            cur = conn.execute(
                """
                UPDATE users
                SET progress = ?,
                    progress_version = progress_version + 1,
                    last_active_at = ?
                WHERE id = ? AND progress_version = ?
                """,
                (_json_dumps(state), _iso_now(), user_id, expected_version),
            )
            if cur.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone()
                if exists is None:
                    raise NotFoundError("user not found")
                raise ConcurrentUpdateError(
                    f"progress of user {user_id} changed since version {expected_version}"
                )
        return expected_version + 1

    # words

    def create_word(
        self,
        *,
        portuguese: str,
        english: str,
        group: str | None = None,
        part_of_speech: str | None = None,
        gender: str | None = None,
        difficulty: str | None = None,
        examples: Sequence[str] | None = None,
        image_url: str | None = None,
    ) -> dict:
        normalized_pt = str(portuguese or "").strip()
        normalized_en = str(english or "").strip()
        if not normalized_pt or not normalized_en:
            raise ValidationError("Portuguese and English translations are required")
        with self.connect() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO words
                    (portuguese, portuguese_key, english, group_name, part_of_speech, gender, difficulty, examples, image_url)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        normalized_pt,
                        _casefold(normalized_pt),
                        normalized_en,
                        _clean_optional(group),
                        _clean_optional(part_of_speech),
                        _clean_optional(gender),
                        _clean_optional(difficulty) or "beginner",
                        _json_dumps(_sanitize_str_list(examples)),
                        _clean_optional(image_url),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateWordError("Word already exists") from exc
            word_id = int(cur.lastrowid)
        return self.get_word(word_id)

    def get_word(self, word_id: int) -> dict | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
        return _decode_word(row) if row else None

    def word_exists(self, word_id: int) -> bool:
        with self.connect() as conn:
            row = conn.execute("SELECT 1 FROM words WHERE id = ?", (word_id,)).fetchone()
        return row is not None

    def update_word(self, word_id: int, changes: dict) -> dict:
        assignments: list[str] = []
        params: list[object] = []
        for key, column in WORD_FIELDS.items():
            if key not in changes or changes[key] is None:
                continue
            value = changes[key]
            if key in {"portuguese", "english"}:
                value = str(value).strip()
                if not value:
                    raise ValidationError(f"{key} cannot be empty")
            elif key == "examples":
                value = _json_dumps(_sanitize_str_list(value))
            else:
                value = _clean_optional(value)
            assignments.append(f"{column} = ?")
            params.append(value)
            if key == "portuguese":
                assignments.append("portuguese_key = ?")
                params.append(_casefold(value))

        with self.connect() as conn:
            if conn.execute("SELECT 1 FROM words WHERE id = ?", (word_id,)).fetchone() is None:
                raise NotFoundError("Word not found")
            if assignments:
                try:
                    conn.execute(
                        f"UPDATE words SET {', '.join(assignments)}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                        (*params, word_id),
                    )
                except sqlite3.IntegrityError as exc:
                    raise DuplicateWordError("Another word with this Portuguese text already exists") from exc
            row = conn.execute("SELECT * FROM words WHERE id = ?", (word_id,)).fetchone()
        return _decode_word(row)

    def list_words(
        self,
        *,
        search: str | None = None,
        group: str | None = None,
        sort: str = "portuguese",
        order: str = "asc",
        page: int = 1,
        limit: int = CatalogLimits.default_page_size,
    ) -> tuple[list[dict], int]:
        where, params = _word_filters(search=search, group=group)
        column = SORT_COLUMNS.get(sort, "portuguese")
        direction = "DESC" if str(order).lower() == "desc" else "ASC"
        limit = max(1, min(int(limit), CatalogLimits.max_page_size))
        offset = (max(1, int(page)) - 1) * limit
        with self.connect() as conn:
            total_row = conn.execute(f"SELECT COUNT(*) AS cnt FROM words {where}", tuple(params)).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM words {where}
                ORDER BY {column} COLLATE NOCASE {direction}, id ASC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            ).fetchall()
        return [_decode_word(row) for row in rows], int(total_row["cnt"] if total_row else 0)

    def list_all_words(self) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM words ORDER BY portuguese COLLATE NOCASE ASC, id ASC").fetchall()
        return [_decode_word(row) for row in rows]

    def find_words_by_ids(self, word_ids: Sequence[object]) -> list[dict]:
        ids = [int(item) for item in word_ids if str(item).isdigit()]
        if not ids:
            return []
        placeholders = ",".join(["?"] * len(ids))
        with self.connect() as conn:
            rows = conn.execute(f"SELECT * FROM words WHERE id IN ({placeholders})", tuple(ids)).fetchall()
        return [_decode_word(row) for row in rows]

    def list_groups(self) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT COALESCE(NULLIF(group_name, ''), ?) AS name, COUNT(*) AS count
                FROM words
                GROUP BY name
                ORDER BY name COLLATE NOCASE ASC
                """,
                (UNGROUPED,),
            ).fetchall()
        return [{"name": row["name"], "count": int(row["count"])} for row in rows]


def _word_filters(*, search: str | None, group: str | None) -> tuple[str, list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    term = (search or "").strip()
    if term:
        folded = _casefold(term)
        pattern = "%" + folded.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        clauses.append("(casefold(portuguese) LIKE ? ESCAPE '\\' OR casefold(english) LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    if group and group != ALL_GROUPS:
        if group == UNGROUPED:
            clauses.append("(group_name IS NULL OR group_name = '')")
        else:
            clauses.append("group_name = ?")
            params.append(group)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def _json_dumps(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _json_loads(value: str | None) -> list:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []


def _json_loads_dict(value: str | None) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable progress document")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _sanitize_str_list(values: Sequence[str] | None, *, limit: int = 10) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned: list[str] = []
    seen: set[str] = set()
    for value in values:
        text = " ".join(str(value).split()).strip()
        if not text:
            continue
        lowered = text.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        cleaned.append(text)
        if len(cleaned) >= limit:
            break
    return cleaned


def _casefold(value: str | None) -> str | None:
    return value.casefold() if value is not None else None


def _clean_optional(value: object) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


def _decode_word(row: sqlite3.Row) -> dict:
    return {
        "id": int(row["id"]),
        "portuguese": row["portuguese"],
        "english": row["english"],
        "group": row["group_name"],
        "partOfSpeech": row["part_of_speech"],
        "gender": row["gender"],
        "difficulty": row["difficulty"],
        "examples": _json_loads(row["examples"]),
        "imageUrl": row["image_url"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def _decode_user(row: sqlite3.Row) -> dict:
    return {
        "id": int(row["id"]),
        "email": row["email"],
        "name": row["name"],
        "progress": normalize_state(_json_loads_dict(row["progress"])),
        "progressVersion": int(row["progress_version"]),
        "lastActiveAt": row["last_active_at"],
        "createdAt": row["created_at"],
    }


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()
