"""
Labeled-field extraction for line-oriented LLM replies.

Both the summarizer and the tagger ask the model for replies such as

    TOPIC: work stress
    EMOTION: stressed
    SUMMARY: User is overwhelmed by a deadline.

The generator is not schema-constrained, so every field is pulled out by its
own line-anchored pattern and falls back to its own default when missing.
A reply that matches none of the fields is reported as such so callers can
refuse to store it.
"""

import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

_LABEL_LINE_RE = re.compile(r"^[A-Z][A-Z_ ]*:")


class LabeledField:
    """One `LABEL: value` line, with its own value pattern, converter and default."""

    def __init__(
        self,
        name: str,
        label: str,
        default: Any,
        value_pattern: str = r"(.+?)",
        convert: Optional[Callable[[str], Any]] = None,
    ):
        self.name = name
        self.label = label
        self.default = default
        self.convert = convert
        self._label_regex = re.compile(
            rf"^[ \t]*{re.escape(label)}[ \t]*:(.*)$",
            re.IGNORECASE | re.MULTILINE,
        )
        self._value_regex = re.compile(rf"[ \t]*{value_pattern}[ \t]*")

    def _raw_value(self, text: str) -> Optional[str]:
        match = self._label_regex.search(text)
        if not match:
            return None
        same_line = match.group(1).strip()
        if same_line:
            return same_line
        # "SUMMARY:\n<value>": take the next non-empty line unless it is another label
        for line in text[match.end():].splitlines():
            candidate = line.strip()
            if not candidate:
                continue
            if _LABEL_LINE_RE.match(candidate):
                return None
            return candidate
        return None

    def extract(self, text: str) -> Optional[Any]:
        """Return the converted value, or None when the field is absent or empty."""
        candidate = self._raw_value(text or "")
        if candidate is None:
            return None
        match = self._value_regex.fullmatch(candidate)
        if not match:
            return None
        raw = match.group(1).strip()
        if not raw:
            return None
        value = self.convert(raw) if self.convert else raw
        if value is None or value == "":
            return None
        return value


class ParsedFields:
    def __init__(self, values: Dict[str, Any], matched: Set[str]):
        self.values = values
        self.matched = matched

    @property
    def any_matched(self) -> bool:
        return bool(self.matched)

    def __getitem__(self, name: str) -> Any:
        return self.values[name]


def parse_fields(text: str, fields: Iterable[LabeledField]) -> ParsedFields:
    values: Dict[str, Any] = {}
    matched: Set[str] = set()
    for field in fields:
        value = field.extract(text)
        if value is None:
            values[field.name] = field.default
        else:
            values[field.name] = value
            matched.add(field.name)
    return ParsedFields(values, matched)


def strip_brackets(value: str) -> str:
    return re.sub(r"[\[\]]", "", value or "").strip()


def normalize_label(value: str) -> str:
    # "[Stressed]" -> "stressed"
    return strip_brackets(value).strip(" .").lower()


def split_bracket_list(value: str) -> List[str]:
    """`[work, Health, ]` -> ['work', 'health'] (order and duplicates kept)."""
    items = strip_brackets(value).split(",")
    return [item.strip().lower() for item in items if item.strip()]


def parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def clamp(value: int, low: int, high: int) -> int:
    return min(high, max(low, value))
