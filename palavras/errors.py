from __future__ import annotations


class PalavrasError(Exception):
    """Base class for errors raised by the progress core and its store."""


class ValidationError(PalavrasError, ValueError):
    pass


class DuplicateWordError(ValidationError):
    pass


class DuplicateUserError(ValidationError):
    pass


class NotFoundError(PalavrasError, LookupError):
    pass


class PersistenceError(PalavrasError):
    pass


class ConcurrentUpdateError(PersistenceError):
    """The user's progress document changed between read and write."""
