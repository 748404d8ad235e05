"""
Standard error codes for gitsocial operations.

Every public operation returns a Result; failures carry one of the codes
below. Codes are grouped into categories that tell the caller what to do:
configuration errors need setup, validation and not-found errors are
terminal, transient errors can be skipped and retried later.
"""
import functools
import logging
from typing import Any, Callable, Optional

from .domain.result import Result

logger = logging.getLogger(__name__)

# Categories
CONFIGURATION = "configuration"
VALIDATION = "validation"
NOT_FOUND = "not_found"
TRANSIENT = "transient"
INTERNAL = "internal"

# Configuration errors: caller must initialize before retrying
NOT_INITIALIZED = "NOT_INITIALIZED"
NO_ORIGIN = "NO_ORIGIN"
INVALID_STORAGE_BASE = "INVALID_STORAGE_BASE"

# Validation errors: caller input is wrong
INVALID_LIST_NAME = "INVALID_LIST_NAME"
INVALID_LIST_ID = "INVALID_LIST_ID"
LIST_EXISTS = "LIST_EXISTS"
REPOSITORY_EXISTS = "REPOSITORY_EXISTS"
INVALID_SOURCE = "INVALID_SOURCE"
NOT_FOLLOWED = "NOT_FOLLOWED"
MISSING_BRANCH = "MISSING_BRANCH"
INVALID_SCOPE = "INVALID_SCOPE"
INVALID_URL = "INVALID_URL"

# Not-found errors: terminal for the operation
LIST_NOT_FOUND = "LIST_NOT_FOUND"
REPOSITORY_NOT_FOUND = "REPOSITORY_NOT_FOUND"
SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"

# Transient infrastructure errors: skip and continue at the fan-out level
LOCK_FILE_ERROR = "LOCK_FILE_ERROR"
FETCH_ERROR = "FETCH_ERROR"
TIMEOUT = "TIMEOUT"
BRANCH_DETECTION_FAILED = "BRANCH_DETECTION_FAILED"
INIT_ERROR = "INIT_ERROR"
REMOTE_ERROR = "REMOTE_ERROR"
GIT_ERROR = "GIT_ERROR"

# Internal errors
READ_ERROR = "READ_ERROR"
WRITE_ERROR = "WRITE_ERROR"
DELETE_ERROR = "DELETE_ERROR"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

ERROR_CATEGORIES = {
    NOT_INITIALIZED: CONFIGURATION,
    NO_ORIGIN: CONFIGURATION,
    INVALID_STORAGE_BASE: CONFIGURATION,
    INVALID_LIST_NAME: VALIDATION,
    INVALID_LIST_ID: VALIDATION,
    LIST_EXISTS: VALIDATION,
    REPOSITORY_EXISTS: VALIDATION,
    INVALID_SOURCE: VALIDATION,
    NOT_FOLLOWED: VALIDATION,
    MISSING_BRANCH: VALIDATION,
    INVALID_SCOPE: VALIDATION,
    INVALID_URL: VALIDATION,
    LIST_NOT_FOUND: NOT_FOUND,
    REPOSITORY_NOT_FOUND: NOT_FOUND,
    SOURCE_NOT_FOUND: NOT_FOUND,
    LOCK_FILE_ERROR: TRANSIENT,
    FETCH_ERROR: TRANSIENT,
    TIMEOUT: TRANSIENT,
    BRANCH_DETECTION_FAILED: TRANSIENT,
    INIT_ERROR: TRANSIENT,
    REMOTE_ERROR: TRANSIENT,
    GIT_ERROR: TRANSIENT,
}


def category_for(code: Optional[str]) -> str:
    """
    Get the category of an error code.

    Unknown codes are internal errors.
    """
    if code is None:
        return INTERNAL
    return ERROR_CATEGORIES.get(code, INTERNAL)


def is_transient(code: Optional[str]) -> bool:
    return category_for(code) == TRANSIENT


class GitSocialError(Exception):
    """
    Exception that operations can raise internally to fail with a code.

    Converted to a failed Result by result_boundary; never escapes a
    public operation.
    """
    def __init__(self, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_result(self) -> Result:
        return Result.fail(self.code, self.message, self.details)


class ValidationError(GitSocialError):
    """Raised when caller input is invalid."""


class NotFoundError(GitSocialError):
    """Raised when the addressed entity does not exist."""


def result_boundary(code: str, message: str) -> Callable:
    """
    Decorator that makes a method safe to call across the public boundary.

    GitSocialError becomes a failed Result with its own code. Any other
    exception is logged with its traceback and becomes a failed Result
    with the given code.

    Args:
        code: Error code for unexpected exceptions
        message: Error message for unexpected exceptions
    """
    def decorator(func):

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except GitSocialError as e:
                logger.debug(f"{func.__qualname__} failed: {e.code}: {e.message}")
                return e.to_result()
            except Exception as e:
                logger.exception(f"{func.__qualname__} raised unexpectedly")
                return Result.fail(code, message, str(e))

        return wrapper
    return decorator
