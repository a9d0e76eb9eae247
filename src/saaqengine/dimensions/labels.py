"""Display labels for dimension values.

Labels are what a presentation layer shows and what comes back in a
FilterSpec. query.tokens parses them with the patterns defined here, so the
two stay in lockstep.
"""

from __future__ import annotations

import re

REGULARIZED_ARROW = "→"
REGULARIZED_BADGE_RE = re.compile(r"\s+→\s+.*$")
UNCURATED_BADGE_RE = re.compile(r"\s*\[uncurated:\s*[\d,]+\s+records?\]\s*$")
TRAILING_CODE_RE = re.compile(r"\(([^)]+)\)\s*$")


def extract_code(display: str) -> str | None:
    """Return the trailing parenthetical of a label, stripped ("Laval (13)" -> "13")."""
    match = TRAILING_CODE_RE.search(display)
    if match is None:
        return None
    return match.group(1).strip()


def strip_trailing_code(display: str) -> str:
    return TRAILING_CODE_RE.sub("", display).strip()


def geographic_label(name: str, code: str, *, unlisted_when_unnamed: bool = False) -> str:
    """"name (code)"; municipalities with no registered name read "Unlisted (code)"."""
    if unlisted_when_unnamed and name == code:
        return f"Unlisted ({code})"
    return f"{name} ({code})"


def model_label(model: str, make: str) -> str:
    return f"{model} ({make})"


def regularized_model_suffix(canonical_make: str, canonical_model: str, record_count: int) -> str:
    return f" {REGULARIZED_ARROW} {canonical_make} {canonical_model} ({record_count:,} records)"


def regularized_make_suffix(canonical_make: str, record_count: int) -> str:
    return f" {REGULARIZED_ARROW} {canonical_make} ({record_count:,} records)"


def uncurated_suffix(record_count: int) -> str:
    return f" [uncurated: {record_count:,} records]"


def coded_label(code: str, description: str | None) -> str:
    """"Description (CODE)" for coded dimensions, or the bare code."""
    if description and description != code:
        return f"{description} ({code})"
    return code
