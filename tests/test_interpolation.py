"""Tests for {{variable}} interpolation."""

from termpost.interpolation import interpolate, template_variables, unresolved_variables


class TestInterpolate:
    def test_plain_text_is_unchanged(self) -> None:
        for text in ["", "http://example.com/users", "{ not a token }", "a } b { c"]:
            assert interpolate(text, {"a": "x"}) == text

    def test_single_token(self) -> None:
        assert interpolate("{{a}}", {"a": "x"}) == "x"

    def test_missing_variable_is_left_literal(self) -> None:
        assert interpolate("{{missing}}", {}) == "{{missing}}"
        assert interpolate("{{base_url}}/ping", None) == "{{base_url}}/ping"

    def test_whitespace_inside_braces_is_trimmed(self) -> None:
        assert interpolate("{{ host }}:{{port }}", {"host": "localhost", "port": "80"}) == "localhost:80"

    def test_missing_token_keeps_original_spacing(self) -> None:
        assert interpolate("{{ nope }}", {}) == "{{ nope }}"

    def test_multiple_tokens_and_repeats(self) -> None:
        result = interpolate("{{a}}-{{b}}-{{a}}", {"a": "1", "b": "2"})
        assert result == "1-2-1"

    def test_unmatched_opening_braces_pass_through(self) -> None:
        assert interpolate("{{a", {"a": "x"}) == "{{a"
        assert interpolate("{{a}} and {{b", {"a": "x"}) == "x and {{b"

    def test_substituted_values_are_not_rescanned(self) -> None:
        variables = {"a": "{{b}}", "b": "nope", "loop": "{{loop}}"}
        assert interpolate("{{a}}", variables) == "{{b}}"
        assert interpolate("{{loop}}", variables) == "{{loop}}"

    def test_json_body(self) -> None:
        body = '{"name": "{{user}}", "nested": {"id": 1}}'
        assert interpolate(body, {"user": "ada"}) == '{"name": "ada", "nested": {"id": 1}}'


class TestVariableDiscovery:
    def test_template_variables_in_order(self) -> None:
        assert template_variables("{{b}}/{{ a }}/{{b}}") == ["b", "a"]

    def test_unresolved_variables(self) -> None:
        assert unresolved_variables("{{base_url}}/{{id}}", {"id": "1"}) == ["base_url"]
        assert unresolved_variables("http://x", None) == []
