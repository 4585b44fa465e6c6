"""
Metric prefix derivation for plug names.

Turns a free-form device name (``"Living Room Plug"``, ``"shellyplugsg3-
a8032ab12345"``) into a lowercase, underscore-separated slug prefixed with
``shelly_``. Derivation never fails: an empty result falls back to the
device id, and then to a constant.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import re

PREFIX = "shelly"
FALLBACK_PREFIX = f"{PREFIX}_device"

# Acronym runs (not followed by a lowercase letter), capitalized or
# lowercase words, and digit runs. Everything else separates words.
_WORD_RE = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")


def snake_case(text: str) -> str:
    """Split *text* into words and join them lowercased with ``_``.

    >>> snake_case("Living Room Plug")
    'living_room_plug'
    >>> snake_case("shellyPlugS-3")
    'shelly_plug_s_3'
    """
    return "_".join(word.lower() for word in _WORD_RE.findall(text))


def metric_prefix(name: str | None, fallback: str) -> str:
    """Derive the ``shelly_<slug>`` prefix for a device.

    Args:
        name: Device-reported display name, or ``None``.
        fallback: Used when *name* yields no words (normally the device id).

    Returns:
        Normalized prefix; ``shelly_device`` if neither input has any
        alphanumeric content.
    """
    for candidate in (name, fallback):
        if candidate:
            slug = snake_case(candidate)
            if slug:
                return f"{PREFIX}_{slug}"
    return FALLBACK_PREFIX
