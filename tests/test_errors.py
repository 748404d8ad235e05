"""
Tests for gitsocial error codes and the result boundary.
"""

import pytest

from gitsocial import errors
from gitsocial.domain.result import Result
from gitsocial.errors import GitSocialError, NotFoundError, ValidationError, result_boundary


class TestCategories:
    """Tests for code categories."""

    @pytest.mark.parametrize("code,category", [
        (errors.NO_ORIGIN, errors.CONFIGURATION),
        (errors.INVALID_LIST_NAME, errors.VALIDATION),
        (errors.LIST_NOT_FOUND, errors.NOT_FOUND),
        (errors.LOCK_FILE_ERROR, errors.TRANSIENT),
        (errors.WRITE_ERROR, errors.INTERNAL),
        ("SOMETHING_NEW", errors.INTERNAL),
        (None, errors.INTERNAL),
    ])
    def test_category_for(self, code, category):
        assert errors.category_for(code) == category

    def test_is_transient(self):
        assert errors.is_transient(errors.TIMEOUT)
        assert not errors.is_transient(errors.LIST_EXISTS)


class TestResultBoundary:
    """Tests for the result_boundary decorator."""

    def test_passes_results_through(self):
        @result_boundary(errors.READ_ERROR, "Failed")
        def ok():
            return Result.ok(42)

        assert ok().data == 42

    def test_gitsocial_error_keeps_its_code(self):
        @result_boundary(errors.READ_ERROR, "Failed")
        def invalid():
            raise ValidationError(errors.INVALID_LIST_NAME, "bad name", {'name': 'x y'})

        result = invalid()
        assert result.code == errors.INVALID_LIST_NAME
        assert result.error.details == {'name': 'x y'}

    def test_unexpected_exception_uses_boundary_code(self, caplog):
        @result_boundary(errors.WRITE_ERROR, "Failed to write")
        def broken():
            raise RuntimeError("disk full")

        result = broken()

        assert result.code == errors.WRITE_ERROR
        assert result.error.message == "Failed to write"
        assert result.error.details == "disk full"
        assert "raised unexpectedly" in caplog.text

    def test_subclasses(self):
        assert issubclass(NotFoundError, GitSocialError)
        assert NotFoundError(errors.LIST_NOT_FOUND, "gone").to_result().code == errors.LIST_NOT_FOUND
