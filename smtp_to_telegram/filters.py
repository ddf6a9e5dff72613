# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Filter rules that reject incoming email before it reaches Telegram.

Rules are declared in a YAML file::

    filter_rules:
      - name: block-dating-spam
        match: all            # "all" (default) or "any"
        conditions:
          - field: from
            pattern: '@ecinetworks\\.com$'
          - field: subject
            pattern: 'get(ting)? to know'

Each condition tests one message field (``from``, ``to``, ``subject``,
``body``, ``html`` or ``body_or_html``) against a regular expression.
Patterns always match case-insensitively.  Rules are evaluated in file
order and the first matching rule rejects the message.

``FilterEngine`` owns the active rule set.  A (re)load compiles the whole
file before swapping it in, so a broken file never leaves the relay with
a partially loaded or empty rule set.
"""

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path

import yaml

from smtp_to_telegram.config import ConfigError


logger = logging.getLogger(__name__)

#: Top-level key holding the list of rules.
RULES_KEY = "filter_rules"

MATCH_ALL = "all"
MATCH_ANY = "any"

FIELD_FROM = "from"
FIELD_TO = "to"
FIELD_SUBJECT = "subject"
FIELD_BODY = "body"
FIELD_HTML = "html"
FIELD_BODY_OR_HTML = "body_or_html"

VALID_FIELDS = frozenset(
    {
        FIELD_FROM,
        FIELD_TO,
        FIELD_SUBJECT,
        FIELD_BODY,
        FIELD_HTML,
        FIELD_BODY_OR_HTML,
    }
)


class FilterConfigError(ConfigError):
    """Raised when a filter rules file cannot be loaded."""


@dataclass(frozen=True)
class MessageFields:
    """The message values filter conditions are evaluated against."""

    from_addr: str
    to: str
    subject: str
    body: str
    html: str


@dataclass(frozen=True)
class FilterCondition:
    """A single field/pattern test.

    Attributes:
        field: Message field name, one of ``VALID_FIELDS``.
        pattern: Pattern source as written in the rules file.
        regex: Compiled, case-insensitive pattern.
    """

    field: str
    pattern: str
    regex: re.Pattern[str]

    def matches(self, fields: MessageFields) -> bool:
        """Return True if the pattern is found in the condition's field."""
        if self.field == FIELD_BODY_OR_HTML:
            return bool(
                self.regex.search(fields.body)
                or self.regex.search(fields.html)
            )
        value = getattr(fields, _FIELD_ATTRS[self.field])
        return self.regex.search(value) is not None


# Rule field name -> MessageFields attribute.
_FIELD_ATTRS = {
    FIELD_FROM: "from_addr",
    FIELD_TO: "to",
    FIELD_SUBJECT: "subject",
    FIELD_BODY: "body",
    FIELD_HTML: "html",
}


@dataclass(frozen=True)
class FilterRule:
    """A named predicate over message fields.

    Attributes:
        name: Identifier used in logs and in the SMTP rejection message.
        match: ``"all"`` (every condition must match) or ``"any"`` (one
            condition is enough).
        conditions: Conditions in file order.
    """

    name: str
    match: str
    conditions: tuple[FilterCondition, ...]

    def matches(self, fields: MessageFields) -> bool:
        """Return True if the rule rejects a message with these fields.

        A rule without conditions never matches.
        """
        if not self.conditions:
            return False
        if self.match == MATCH_ANY:
            return any(c.matches(fields) for c in self.conditions)
        return all(c.matches(fields) for c in self.conditions)


@dataclass(frozen=True)
class FilterRuleSet:
    """Ordered, immutable collection of compiled rules."""

    rules: tuple[FilterRule, ...] = ()

    def __len__(self) -> int:
        return len(self.rules)

    def evaluate(
        self,
        from_addr: str,
        to: str,
        subject: str,
        body: str,
        html: str,
    ) -> tuple[bool, str]:
        """Evaluate rules in order; the first matching rule wins.

        Returns:
            ``(True, rule_name)`` for the first matching rule, or
            ``(False, "")`` if no rule matches.
        """
        fields = MessageFields(
            from_addr=from_addr, to=to, subject=subject, body=body, html=html
        )
        for rule in self.rules:
            if rule.matches(fields):
                return True, rule.name
        return False, ""


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a rule pattern case-insensitively.

    Raises:
        re.error: If the pattern is not a valid regular expression.
    """
    return re.compile(pattern, re.IGNORECASE)


def parse_filter_rules(data: str | bytes) -> FilterRuleSet:
    """Parse and compile a filter rules YAML document.

    Args:
        data: YAML text with a top-level ``filter_rules`` list.

    Returns:
        Compiled rule set.  A document without rules yields an empty set.

    Raises:
        FilterConfigError: If the YAML is malformed, a rule uses an
            unknown match type or field, or a pattern does not compile.
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise FilterConfigError(f"failed to parse config file: {e}") from e

    if raw is None:
        return FilterRuleSet()
    if not isinstance(raw, dict):
        raise FilterConfigError("filter config must be a YAML mapping")

    raw_rules = raw.get(RULES_KEY) or []
    if not isinstance(raw_rules, list):
        raise FilterConfigError(f"'{RULES_KEY}' must be a list")

    rules: list[FilterRule] = []
    for index, raw_rule in enumerate(raw_rules):
        if not isinstance(raw_rule, dict):
            raise FilterConfigError(
                f"filter rule #{index + 1} must be a YAML mapping"
            )
        rules.append(_parse_rule(raw_rule, index))

    return FilterRuleSet(rules=tuple(rules))


def _parse_rule(raw: dict, index: int) -> FilterRule:
    name = str(raw.get("name") or f"rule-{index + 1}")

    match = raw.get("match") or MATCH_ALL
    if match not in (MATCH_ALL, MATCH_ANY):
        raise FilterConfigError(
            f"rule '{name}': invalid match type '{match}' "
            f"(must be '{MATCH_ALL}' or '{MATCH_ANY}')"
        )

    raw_conditions = raw.get("conditions") or []
    if not isinstance(raw_conditions, list):
        raise FilterConfigError(f"rule '{name}': 'conditions' must be a list")

    conditions: list[FilterCondition] = []
    for raw_condition in raw_conditions:
        if not isinstance(raw_condition, dict):
            raise FilterConfigError(
                f"rule '{name}': each condition must be a YAML mapping"
            )
        field_name = str(raw_condition.get("field", ""))
        if field_name not in VALID_FIELDS:
            raise FilterConfigError(
                f"rule '{name}': invalid field '{field_name}' "
                f"(must be one of {', '.join(sorted(VALID_FIELDS))})"
            )
        pattern = str(raw_condition.get("pattern", ""))
        try:
            regex = compile_pattern(pattern)
        except re.error as e:
            raise FilterConfigError(
                f"rule '{name}': invalid regex pattern '{pattern}': {e}"
            ) from e
        conditions.append(
            FilterCondition(field=field_name, pattern=pattern, regex=regex)
        )

    return FilterRule(name=name, match=match, conditions=tuple(conditions))


def load_filter_rules(path: Path | str | None) -> FilterRuleSet | None:
    """Load filter rules from a YAML file.

    Args:
        path: Rules file.  None or empty disables filtering.

    Returns:
        Compiled rule set, or None when no file is configured.

    Raises:
        FilterConfigError: If the file cannot be read or is invalid.
    """
    if not path:
        return None

    try:
        data = Path(path).read_text()
    except OSError as e:
        raise FilterConfigError(
            f"failed to read config file {path}: {e}"
        ) from e

    rule_set = parse_filter_rules(data)
    logger.info("Loaded %d filter rule(s) from %s", len(rule_set), path)
    return rule_set


class FilterEngine:
    """Holder of the active rule set, swapped atomically on reload.

    Evaluation reads the current reference once and never takes the lock;
    a rule set is immutable once published.
    """

    def __init__(self, rule_set: FilterRuleSet | None = None) -> None:
        self._rule_set = rule_set
        self._reload_lock = threading.Lock()

    @property
    def rule_set(self) -> FilterRuleSet | None:
        """The currently active rule set (None means no filtering)."""
        return self._rule_set

    def load(self, path: Path | str | None) -> None:
        """Load rules from ``path`` and make them active.

        The previous rule set stays active if loading fails.

        Raises:
            FilterConfigError: If the file cannot be read or is invalid.
        """
        with self._reload_lock:
            rule_set = load_filter_rules(path)
            self._rule_set = rule_set

    def evaluate(
        self,
        from_addr: str,
        to: str,
        subject: str,
        body: str,
        html: str,
    ) -> tuple[bool, str]:
        """Evaluate the active rule set; see ``FilterRuleSet.evaluate``."""
        rule_set = self._rule_set
        if rule_set is None:
            return False, ""
        return rule_set.evaluate(from_addr, to, subject, body, html)
