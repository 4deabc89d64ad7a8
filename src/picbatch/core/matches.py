"""Parsing of comma-separated match tags.

Each entry is trimmed and lowercased.  Empty entries (``"cat,,dog"`` or a
trailing comma) are handled according to the configured policy:

- ``keep``: stored verbatim as ``""``
- ``drop``: silently removed
- ``reject``: the whole list is refused with :class:`MissingField`
"""

from __future__ import annotations

from typing import Literal

from picbatch.core.errors import MissingField

EmptyTagPolicy = Literal["keep", "drop", "reject"]


def parse_matches(matches_text: str | None, policy: EmptyTagPolicy = "keep") -> list[str]:
    """Split a comma-separated tag string into normalized tags.

    Args:
        matches_text: Raw client input, e.g. ``"DOG, Pet ,cat"``.
        policy: Treatment of empty entries (see module docstring).

    Returns:
        Tags in submitted order, e.g. ``["dog", "pet", "cat"]``.

    Raises:
        MissingField: If the input is absent or blank, if ``reject`` finds an
            empty entry, or if ``drop`` leaves nothing behind.
    """
    if not matches_text or not matches_text.strip():
        raise MissingField("matches")

    tags = [part.strip().lower() for part in matches_text.split(",")]

    if policy == "keep":
        return tags

    if policy == "reject" and "" in tags:
        raise MissingField("matches", "Field `matches` contains an empty tag!")

    tags = [tag for tag in tags if tag]
    if not tags:
        raise MissingField("matches")
    return tags
