"""Error taxonomy shared by the wizard, the data service and the API."""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

VALIDATION_ERROR = 'VALIDATION_ERROR'
API_ERROR = 'API_ERROR'
STORAGE_ERROR = 'STORAGE_ERROR'
NOT_FOUND = 'NOT_FOUND'
FILE_TOO_LARGE = 'FILE_TOO_LARGE'
TOO_MANY_FILES = 'TOO_MANY_FILES'
STEP_LOCKED = 'STEP_LOCKED'
UNKNOWN_ERROR = 'UNKNOWN_ERROR'

ERROR_CODES = (
    VALIDATION_ERROR,
    API_ERROR,
    STORAGE_ERROR,
    NOT_FOUND,
    FILE_TOO_LARGE,
    TOO_MANY_FILES,
    STEP_LOCKED,
    UNKNOWN_ERROR,
)

_PREFIXES = {
    VALIDATION_ERROR: 'Validation Error',
    STEP_LOCKED: 'Validation Error',
    API_ERROR: 'API Error',
    STORAGE_ERROR: 'Storage Error',
    NOT_FOUND: 'Not Found',
    FILE_TOO_LARGE: 'File is too large',
    TOO_MANY_FILES: 'Too many files',
}


class HiraError(Exception):
    """Base error carrying a code, a user-facing message and its context."""

    code = UNKNOWN_ERROR

    def __init__(self, message: str, *, details: Optional[dict] = None,
                 context: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.context = context
        if code is not None:
            self.code = code

    def with_context(self, context: str) -> 'HiraError':
        self.context = context
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            'code': self.code,
            'message': format_error_message(self),
            'context': self.context,
        }


class ValidationError(HiraError):
    code = VALIDATION_ERROR


class StepTransitionError(ValidationError):
    code = STEP_LOCKED

    def __init__(self, message: str, *, current_step: int, requested_step: int, **kwargs):
        super().__init__(message, **kwargs)
        self.current_step = current_step
        self.requested_step = requested_step


class MatrixLookupError(ValidationError):
    """Raised in strict mode when a matrix has no entry for the given inputs."""


class FileLimitError(ValidationError):
    code = FILE_TOO_LARGE


class BackendError(HiraError):
    code = API_ERROR


class StorageError(HiraError):
    code = STORAGE_ERROR


class NotFoundError(HiraError):
    code = NOT_FOUND


class UnknownError(HiraError):
    code = UNKNOWN_ERROR


def handle_error(error: BaseException, context: str = 'unknown') -> HiraError:
    """Normalise any exception into a ``HiraError`` tagged with ``context``."""
    logger.error('Error in %s: %s', context, error)

    if isinstance(error, HiraError):
        if error.context is None:
            error.context = context
        return error

    if isinstance(error, SQLAlchemyError):
        wrapped = BackendError('Database operation failed',
                               details={'original_error': str(error)}, context=context)
    elif isinstance(error, OSError):
        wrapped = StorageError('File operation failed',
                               details={'original_error': str(error)}, context=context)
    else:
        wrapped = UnknownError(str(error) or 'An unexpected error occurred',
                               details={'original_error': repr(error)}, context=context)
    wrapped.__cause__ = error
    return wrapped


def format_error_message(error: HiraError) -> str:
    prefix = _PREFIXES.get(error.code)
    message = error.message or 'An unexpected error occurred'
    if prefix is None:
        return message
    return f'{prefix}: {message}'


def is_error_type(error: BaseException, code: str) -> bool:
    return getattr(error, 'code', None) == code
