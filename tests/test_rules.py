"""Tests for filter/replace rules and the path classifier."""

import pytest

from nginx_log_exporter.errors import RenderError, RuleCompileError
from nginx_log_exporter.rules import (
    FilterRule,
    Outcome,
    PathClassifier,
    ReplaceRule,
    first_match,
)


class TestFilterRule:
    def test_partial_match(self):
        rule = FilterRule("api")
        assert rule.matches("GET", "/v1/api/users")

    def test_anchored_pattern(self):
        rule = FilterRule("^/api/")
        assert rule.matches("GET", "/api/users")
        assert not rule.matches("GET", "/v1/api/users")

    def test_empty_methods_match_any(self):
        rule = FilterRule("^/")
        for method in ("GET", "POST", "DELETE", ""):
            assert rule.matches(method, "/x")

    def test_method_allow_list(self):
        rule = FilterRule("^/upload", methods=["POST", "PUT"])
        assert rule.matches("POST", "/upload")
        assert rule.matches("PUT", "/upload")
        assert not rule.matches("GET", "/upload")

    def test_method_and_path_both_required(self):
        rule = FilterRule("^/upload", methods=["POST"])
        assert not rule.matches("POST", "/download")

    def test_invalid_regex(self):
        with pytest.raises(RuleCompileError):
            FilterRule("/api/(unclosed")


class TestReplaceRuleRegex:
    def test_literal_replacement(self):
        rule = ReplaceRule(r"/\d+", "/:id")
        assert not rule.uses_template
        assert rule.apply("/users/42/posts/7") == "/users/:id/posts/:id"

    def test_numbered_backreference(self):
        rule = ReplaceRule(r"^/(\w+)/\d+$", r"/\1/:id")
        assert rule.apply("/orders/99") == "/orders/:id"

    def test_named_backreference(self):
        rule = ReplaceRule(r"^/(?P<kind>\w+)/\d+$", r"/\g<kind>/:id")
        assert rule.apply("/orders/99") == "/orders/:id"

    def test_bad_group_reference_fails_at_apply(self):
        rule = ReplaceRule(r"^/(\w+)$", r"/\2")
        with pytest.raises(RenderError):
            rule.apply("/orders")


class TestReplaceRuleTemplate:
    def test_detects_template(self):
        rule = ReplaceRule(r"^/users/(?P<id>\d+)$", "/users/{{ id }}/x")
        assert rule.uses_template

    def test_renders_named_groups(self):
        rule = ReplaceRule(r"^/(?P<kind>\w+)/(?P<id>\d+)$", "/{{ kind }}/:id")
        assert rule.apply("/orders/99") == "/orders/:id"

    def test_unmatched_optional_group_is_empty(self):
        rule = ReplaceRule(r"^/(?P<kind>\w+)(?P<rest>/.*)?$", "/{{ kind }}[{{ rest }}]")
        assert rule.apply("/orders") == "/orders[]"

    def test_undefined_name_is_render_error(self):
        rule = ReplaceRule(r"^/(?P<kind>\w+)$", "/{{ missing }}")
        with pytest.raises(RenderError):
            rule.apply("/orders")

    def test_invalid_template_syntax(self):
        with pytest.raises(RuleCompileError):
            ReplaceRule(r"^/(?P<kind>\w+)$", "/{{ kind ")

    @pytest.mark.parametrize("with_", ["/{{.kind}}", "/{{ .kind }}", "/{{- .kind -}}"])
    def test_dotted_field_points_to_jinja_syntax(self, with_):
        with pytest.raises(RuleCompileError, match=r"'\{\{ kind \}\}'"):
            ReplaceRule(r"^/(?P<kind>\w+)$", with_)

    def test_template_and_regex_are_equivalent(self):
        pattern = r"^/api/(?P<version>v\d)/(?P<resource>\w+)/\d+$"
        regex = ReplaceRule(pattern, r"/api/\g<version>/\g<resource>")
        template = ReplaceRule(pattern, "/api/{{ version }}/{{ resource }}")
        for path in ("/api/v1/users/1", "/api/v2/orders/12345"):
            assert regex.apply(path) == template.apply(path)


class TestFirstMatch:
    def test_first_declared_wins(self):
        rules = [FilterRule("^/api/"), FilterRule("^/api/users$")]
        assert first_match("GET", "/api/users", rules) is rules[0]

    def test_skips_non_matching(self):
        rules = [FilterRule("^/static/"), FilterRule("^/api/")]
        assert first_match("GET", "/api/users", rules) is rules[1]

    def test_no_match(self):
        assert first_match("GET", "/x", [FilterRule("^/api/")]) is None

    def test_empty_rules(self):
        assert first_match("GET", "/x", []) is None


class TestPathClassifier:
    def test_no_rules_keeps_path(self):
        result = PathClassifier().classify("GET", "/anything")
        assert result.outcome is Outcome.KEEP
        assert result.path == "/anything"

    def test_exclude_drops(self):
        classifier = PathClassifier(exclude=(FilterRule("^/health"),))
        assert classifier.classify("GET", "/health").outcome is Outcome.DROP
        assert classifier.classify("GET", "/api").kept

    def test_include_drops_non_matching(self):
        classifier = PathClassifier(include=(FilterRule("^/api/"),))
        assert classifier.classify("GET", "/static/app.js").outcome is Outcome.DROP
        assert classifier.classify("GET", "/api/x").kept

    def test_exclude_takes_precedence_over_include(self):
        classifier = PathClassifier(
            exclude=(FilterRule("^/api/internal"),),
            include=(FilterRule("^/api/"),),
        )
        assert classifier.classify("GET", "/api/internal/stats").outcome is Outcome.DROP
        assert classifier.classify("GET", "/api/public").kept

    def test_exclude_respects_methods(self):
        classifier = PathClassifier(exclude=(FilterRule("^/api/", methods=["OPTIONS"]),))
        assert classifier.classify("OPTIONS", "/api/x").outcome is Outcome.DROP
        assert classifier.classify("GET", "/api/x").kept

    def test_first_replace_wins(self):
        classifier = PathClassifier(replace=(
            ReplaceRule(r"^/users/\d+", "/users/:id"),
            ReplaceRule(r"^/users/\d+/posts$", "/second"),
        ))
        result = classifier.classify("GET", "/users/5/posts")
        assert result.path == "/users/:id/posts"
        assert classifier.classify("GET", "/users/5").path == "/users/:id"

    def test_later_replace_used_when_earlier_skips_method(self):
        classifier = PathClassifier(replace=(
            ReplaceRule(r"^/items/\d+$", "/items/:write", methods=["POST"]),
            ReplaceRule(r"^/items/\d+$", "/items/:read"),
        ))
        assert classifier.classify("GET", "/items/3").path == "/items/:read"
        assert classifier.classify("POST", "/items/3").path == "/items/:write"

    def test_replace_applies_after_include(self):
        classifier = PathClassifier(
            include=(FilterRule("^/api/"),),
            replace=(ReplaceRule(r"\d+", ":n"),),
        )
        assert classifier.classify("GET", "/api/7").path == "/api/:n"

    def test_no_matching_replace_keeps_path(self):
        classifier = PathClassifier(replace=(ReplaceRule(r"^/users/\d+$", "/users/:id"),))
        assert classifier.classify("GET", "/about").path == "/about"

    def test_render_failure_is_keep_error(self):
        classifier = PathClassifier(replace=(ReplaceRule(r"^/(?P<a>\w+)$", "{{ b }}"),))
        result = classifier.classify("GET", "/x")
        assert result.outcome is Outcome.KEEP_ERROR
        assert result.path is None
        assert result.reason
