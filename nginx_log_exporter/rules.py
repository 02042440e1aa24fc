"""Path filter/replace rules and the exclude -> include -> replace classifier.

Every rule list is evaluated in declaration order and the first matching
rule wins. Patterns use ``re.search`` semantics, so a pattern only anchors
to the start or end of the path when it says so itself.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from jinja2 import Environment, StrictUndefined, TemplateError

from nginx_log_exporter.errors import RenderError, RuleCompileError

logger = logging.getLogger(__name__)

TEMPLATE_MARKER = "{{"
_DOTTED_FIELD_RE = re.compile(r"\{\{-?\s*\.(\w*)")

_template_env = Environment(undefined=StrictUndefined, autoescape=False)


class FilterRule:
    """A compiled path regex plus an optional HTTP method allow-list."""

    def __init__(self, path: str, methods: list[str] | tuple[str, ...] = ()):
        try:
            self._path_re = re.compile(path)
        except re.error as e:
            raise RuleCompileError(f"invalid path pattern '{path}': {e}") from e
        self._methods = frozenset(methods)

    @property
    def pattern(self) -> str:
        return self._path_re.pattern

    @property
    def methods(self) -> frozenset[str]:
        return self._methods

    def matches(self, method: str, path: str) -> bool:
        if not self._path_re.search(path):
            return False
        return not self._methods or method in self._methods

    def __repr__(self):
        return f"{type(self).__name__}({self.pattern!r}, methods={sorted(self._methods)})"


class ReplaceRule(FilterRule):
    """A filter rule that rewrites the matched path.

    ``with_`` containing ``{{`` is compiled as a Jinja2 template rendered
    with the named groups of the path pattern; anything else is a plain
    ``re.sub`` replacement string and may use backreferences.
    """

    def __init__(self, path: str, with_: str, methods: list[str] | tuple[str, ...] = ()):
        super().__init__(path, methods)
        self.with_ = with_
        self._template = None
        if self.uses_template:
            dotted = _DOTTED_FIELD_RE.search(with_)
            if dotted:
                name = dotted.group(1) or "name"
                raise RuleCompileError(
                    f"invalid replace template '{with_}': use '{{{{ {name} }}}}' to reference a named group"
                )
            try:
                self._template = _template_env.from_string(with_)
            except TemplateError as e:
                raise RuleCompileError(f"invalid replace template '{with_}': {e}") from e

    @property
    def uses_template(self) -> bool:
        return TEMPLATE_MARKER in self.with_

    def apply(self, path: str) -> str:
        if self._template is None:
            try:
                return self._path_re.sub(self.with_, path)
            except re.error as e:
                raise RenderError(f"replace path ({path}) with ({self.with_}): {e}") from e
        return self._render(path)

    def _render(self, path: str) -> str:
        m = self._path_re.search(path)
        if m is None:
            raise RenderError(f"path '{path}' does not match '{self.pattern}'")
        params = m.groupdict(default="")
        logger.debug("template params: %s", params)
        try:
            return self._template.render(params)
        except TemplateError as e:
            raise RenderError(f"replace path ({path}) with template ({self.with_}): {e}") from e


def first_match(method: str, path: str, rules):
    """Return the first rule matching method/path, or None."""
    for rule in rules:
        if rule.matches(method, path):
            return rule
    return None


class Outcome(Enum):
    KEEP = "keep"
    DROP = "drop"
    KEEP_ERROR = "keep_error"


@dataclass(frozen=True)
class Classification:
    outcome: Outcome
    path: str | None = None
    reason: str | None = None

    @property
    def kept(self) -> bool:
        return self.outcome is Outcome.KEEP


DROP = Classification(Outcome.DROP)


@dataclass(frozen=True)
class PathClassifier:
    """Read-only rule set shared by all monitors of one application."""

    exclude: tuple[FilterRule, ...] = ()
    include: tuple[FilterRule, ...] = ()
    replace: tuple[ReplaceRule, ...] = ()

    def classify(self, method: str, path: str, log: logging.Logger = logger) -> Classification:
        if self.exclude:
            rule = first_match(method, path, self.exclude)
            if rule is not None:
                log.debug("found matching exclude rule: %r", rule)
                return DROP
            log.debug("no matching exclude rule found")

        if self.include:
            rule = first_match(method, path, self.include)
            if rule is None:
                log.debug("no matching include rule found")
                return DROP
            log.debug("found matching include rule: %r", rule)

        if self.replace:
            rule = first_match(method, path, self.replace)
            if rule is None:
                log.debug("no matching replace rule found")
            else:
                log.debug("found matching replace rule: %r -> %s", rule, rule.with_)
                try:
                    path = rule.apply(path)
                except RenderError as e:
                    return Classification(Outcome.KEEP_ERROR, reason=str(e))

        return Classification(Outcome.KEEP, path=path)
