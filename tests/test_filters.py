"""Tests for jq response filtering."""

import pytest

from termpost.errors import FilterError
from termpost.filters import apply, apply_to_text

USERS = '[{"id": 1, "name": "Ada"}, {"id": 2, "name": "Linus"}]'


class TestApply:
    def test_single_result(self) -> None:
        assert apply(".a", {"a": 1}) == 1

    def test_multiple_results_become_a_list(self) -> None:
        assert apply(".[]", [1, 2]) == [1, 2]

    def test_no_results(self) -> None:
        assert apply("empty", {"a": 1}) is None

    def test_empty_query(self) -> None:
        with pytest.raises(FilterError, match="Empty filter"):
            apply("  ", {})

    def test_malformed_query(self) -> None:
        with pytest.raises(FilterError, match="Parse error"):
            apply(".[", {})

    def test_runtime_error(self) -> None:
        with pytest.raises(FilterError, match="Filter execution error"):
            apply(".a.b", {"a": 1})


class TestApplyToText:
    def test_pretty_prints_result(self) -> None:
        assert apply_to_text(USERS, ".[0]") == '{\n  "id": 1,\n  "name": "Ada"\n}'

    def test_results_are_separated(self) -> None:
        assert apply_to_text(USERS, ".[].name") == '"Ada"\n---\n"Linus"'

    def test_no_results_is_null(self) -> None:
        assert apply_to_text(USERS, ".[] | select(.id > 5)") == "null"

    def test_non_json_body(self) -> None:
        with pytest.raises(FilterError, match="Invalid JSON"):
            apply_to_text("<html></html>", ".")
