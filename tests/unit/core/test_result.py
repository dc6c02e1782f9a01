"""Tests for the Result type used for expected failures."""

import pytest

from aurasense.core.errors import NotFound
from aurasense.core.result import Result


class TestResult:
    def test_result_ok_creates_successful_result(self) -> None:
        result: Result[str, Exception] = Result.ok("success")
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == "success"

    def test_result_error_creates_failed_result(self) -> None:
        result: Result[str, ValueError] = Result.err(ValueError("test error"))
        assert not result.is_ok()
        assert result.is_err()
        assert result.unwrap_or("default") == "default"

    def test_unwrap_raises_on_error_result(self) -> None:
        result: Result[str, NotFound] = Result.err(NotFound(7, "general"))

        with pytest.raises(NotFound, match='id "7"'):
            result.unwrap()

    def test_empty_list_is_a_valid_ok_value(self) -> None:
        result: Result[list[int], Exception] = Result.ok([])
        assert result.is_ok()
        assert result.unwrap_or([1]) == []

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(ValueError):
            Result.ok(1).unwrap_err()

    def test_needs_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=ValueError("both"))
