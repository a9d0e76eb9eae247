"""Filter tokens: display strings parsed once at the boundary.

A presentation layer hands back the labels it showed ("Montréal (06)",
"CRV (HONDA) → HONDA CR-V (14 records)", "FOO (BAR) [uncurated: 3 records]").
parse_token() strips badges and splits the trailing parenthetical so that
nothing past the translator needs to know the label format.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from saaqengine.dimensions.labels import (
    REGULARIZED_BADGE_RE,
    UNCURATED_BADGE_RE,
    extract_code,
    strip_trailing_code,
)


class Badge(str, Enum):
    NONE = "none"
    REGULARIZED = "regularized"
    UNCURATED = "uncurated"


@dataclass(frozen=True)
class FilterToken:
    """One filter value as typed or selected.

    raw: the string as received.
    display_name: raw minus any badge ("CRV (HONDA)").
    name: display_name minus the trailing parenthetical ("CRV").
    code: the trailing parenthetical, if any ("HONDA", "06").
    """

    raw: str
    display_name: str
    name: str
    code: str | None
    badge: Badge = Badge.NONE

    @property
    def candidates(self) -> tuple[str, ...]:
        """Strings worth trying against a dimension, most specific first.

        Exact duplicates are folded, so the stripped raw string only shows up
        at the end when a badge made it differ from display_name.
        """
        seen: list[str] = []
        for value in (self.code, self.display_name, self.name, self.raw.strip()):
            if value and value not in seen:
                seen.append(value)
        return tuple(seen)


def parse_token(raw: str) -> FilterToken:
    text = raw.strip()
    badge = Badge.NONE

    stripped = UNCURATED_BADGE_RE.sub("", text)
    if stripped != text:
        badge = Badge.UNCURATED
        text = stripped.strip()

    stripped = REGULARIZED_BADGE_RE.sub("", text)
    if stripped != text:
        badge = Badge.REGULARIZED
        text = stripped.strip()

    code = extract_code(text)
    name = strip_trailing_code(text) if code is not None else text
    return FilterToken(raw=raw, display_name=text, name=name, code=code, badge=badge)


def parse_tokens(raw_values: list[str]) -> list[FilterToken]:
    return [parse_token(v) for v in raw_values if v and v.strip()]
