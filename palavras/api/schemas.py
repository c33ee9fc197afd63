from __future__ import annotations

from pydantic import BaseModel, Field


class ReviewRequest(BaseModel):
    user_id: int
    word_id: int
    outcome: str


class UserCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=254)
    name: str = Field(min_length=1, max_length=120)


class WordCreateRequest(BaseModel):
    portuguese: str
    english: str
    group: str | None = None
    partOfSpeech: str | None = None
    gender: str | None = None
    difficulty: str | None = None
    examples: list[str] = Field(default_factory=list)
    imageUrl: str | None = None


class WordUpdateRequest(BaseModel):
    portuguese: str | None = None
    english: str | None = None
    group: str | None = None
    partOfSpeech: str | None = None
    gender: str | None = None
    difficulty: str | None = None
    examples: list[str] | None = None
    imageUrl: str | None = None


class MigrationRequest(BaseModel):
    dry_run: bool = False
