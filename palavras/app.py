from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from palavras.api.schemas import (
    MigrationRequest,
    ReviewRequest,
    UserCreateRequest,
    WordCreateRequest,
    WordUpdateRequest,
)
from palavras.config import CORS_ORIGINS, CatalogLimits, ensure_dirs
from palavras.errors import (
    ConcurrentUpdateError,
    NotFoundError,
    PalavrasError,
    PersistenceError,
    ValidationError,
)
from palavras.learning.reviews import (
    list_due_words,
    list_flashcards,
    list_words_with_progress,
    migrate_user_progress,
    progress_summary,
    submit_review,
)
from palavras.logging_config import setup_logging
from palavras.storage.db import Database

logger = logging.getLogger(__name__)

db = Database()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    ensure_dirs()
    db.initialize()
    logger.info("Database ready at %s", db.db_path)
    yield


app = FastAPI(title="Palavras", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/api/review")
def review(req: ReviewRequest) -> dict:
    try:
        result = submit_review(db, user_id=req.user_id, word_id=req.word_id, outcome=req.outcome)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, **result}


@app.get("/api/progress/words")
def words_with_progress(user_id: int = Query(...)) -> dict:
    try:
        items = list_words_with_progress(db, user_id=user_id)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "items": items, "total": len(items)}


@app.get("/api/progress/due")
def due_words(user_id: int = Query(...), limit: int = Query(default=20, ge=1, le=200)) -> dict:
    try:
        items = list_due_words(db, user_id=user_id, limit=limit)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "items": items}


@app.get("/api/flashcards")
def flashcards(user_id: int = Query(...)) -> list[dict]:
    try:
        return list_flashcards(db, user_id=user_id)
    except PalavrasError as exc:
        raise _http_error(exc) from exc


@app.post("/api/users", status_code=201)
def create_user(req: UserCreateRequest) -> dict:
    try:
        user = db.create_user(email=req.email, name=req.name)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "user": _public_user(user)}


@app.get("/api/users/{user_id}")
def get_user(user_id: int) -> dict:
    try:
        user = db.get_user(user_id)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    if user is None:
        raise HTTPException(status_code=404, detail="user not found")
    return {"ok": True, "user": _public_user(user)}


@app.post("/api/users/{user_id}/progress/migrate")
def migrate_progress(user_id: int, req: MigrationRequest | None = None) -> dict:
    dry_run = bool(req.dry_run) if req else False
    try:
        report = migrate_user_progress(db, user_id=user_id, dry_run=dry_run)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "dry_run": dry_run, **report.as_dict()}


@app.get("/api/words")
def words(
    search: str | None = Query(default=None),
    group: str | None = Query(default=None),
    sort: str = Query(default="portuguese"),
    order: str = Query(default="asc"),
    page: int = Query(default=1),
    limit: int = Query(default=CatalogLimits.default_page_size),
) -> dict:
    page = max(1, page)
    limit = max(1, min(limit, CatalogLimits.max_page_size))
    try:
        items, total = db.list_words(search=search, group=group, sort=sort, order=order, page=page, limit=limit)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    pages = math.ceil(total / limit)
    return {
        "words": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": pages,
            "hasMore": page < pages,
        },
        "filters": {"search": search or None, "group": group or None},
    }


@app.post("/api/words", status_code=201)
def create_word(req: WordCreateRequest) -> dict:
    try:
        return db.create_word(
            portuguese=req.portuguese,
            english=req.english,
            group=req.group,
            part_of_speech=req.partOfSpeech,
            gender=req.gender,
            difficulty=req.difficulty,
            examples=req.examples,
            image_url=req.imageUrl,
        )
    except PalavrasError as exc:
        raise _http_error(exc) from exc


@app.get("/api/words/{word_id}")
def get_word(word_id: int) -> dict:
    try:
        word = db.get_word(word_id)
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    if word is None:
        raise HTTPException(status_code=404, detail="Word not found")
    return word


@app.put("/api/words/{word_id}")
def update_word(word_id: int, req: WordUpdateRequest) -> dict:
    try:
        return db.update_word(word_id, req.model_dump(exclude_unset=True))
    except PalavrasError as exc:
        raise _http_error(exc) from exc


@app.get("/api/groups")
def groups() -> dict:
    try:
        items = db.list_groups()
    except PalavrasError as exc:
        raise _http_error(exc) from exc
    return {"ok": True, "groups": items}


def _http_error(exc: PalavrasError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConcurrentUpdateError):
        logger.warning("Giving up after concurrent progress updates: %s", exc)
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PersistenceError):
        logger.error("Persistence failure: %s", exc, exc_info=exc)
        return HTTPException(status_code=500, detail="storage unavailable")
    logger.error("Unhandled application error: %s", exc, exc_info=exc)
    return HTTPException(status_code=500, detail="internal error")


def _public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user["name"],
        "createdAt": user["createdAt"],
        "lastActiveAt": user["lastActiveAt"],
        "progress": progress_summary(user["progress"]),
    }
