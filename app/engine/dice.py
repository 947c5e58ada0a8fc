"""
Dice engine.
Resolves a Legend-in-the-Mist style roll (2d6 + modifier) and builds the
human readable description shown in the chat/dice log.
The modifier is either trusted from the client or recomputed from the
selected tags (see `server_modifier`).
"""
from __future__ import annotations

import random
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

TAG_POSITIVE = "positive"
TAG_NEGATIVE = "negative"
TAG_BURN = "burn"
BURN_POWER = 3


def roll_d6(rng: Optional[random.Random] = None) -> int:
    """One uniform integer in [1, 6]."""
    return (rng or random).randint(1, 6)


def roll_2d6(modifier: int = 0, rng: Optional[random.Random] = None) -> Tuple[int, int, int]:
    """Return (d1, d2, total) where total = d1 + d2 + modifier."""
    first, second = roll_d6(rng), roll_d6(rng)
    return first, second, first + second + modifier


def _tag_label(tag: Dict[str, Any]) -> str:
    return str(tag.get("tag") or tag.get("name") or "")


def describe_roll(modifier: int, selected_tags: Iterable[Dict[str, Any]]) -> str:
    """
    "2d6+2 (sword, courage vs wounded)".
    Positive tags first, negative tags after "vs"; no parenthesis when no tag.
    """
    positive: List[str] = []
    negative: List[str] = []
    for tag in selected_tags:
        if not isinstance(tag, dict):
            continue
        if tag.get("effect") == TAG_POSITIVE:
            positive.append(_tag_label(tag))
        elif tag.get("effect") == TAG_NEGATIVE:
            negative.append(_tag_label(tag))

    description = "2d6"
    if modifier > 0:
        description += f"+{modifier}"
    elif modifier < 0:
        description += f"{modifier}"

    if positive or negative:
        description += f" ({', '.join(positive)}"
        if negative:
            description += f" vs {', '.join(negative)}"
        description += ")"
    return description


def _tag_power(tag: Dict[str, Any]) -> int:
    # les tags de statut pèsent leur valeur de piste
    data = tag.get("tagData") or {}
    if isinstance(data, dict) and data.get("isStatus"):
        try:
            track = int(data.get("trackValue") or 0)
        except (TypeError, ValueError):
            track = 0
        if track > 0:
            return track
    return 1


def server_modifier(
    selected_tags: Iterable[Dict[str, Any]],
    tag_exists: Callable[[str], bool],
) -> int:
    """
    Recompute the modifier from the selected tags.
    Only tags for which `tag_exists(name)` is true are counted:
    positive +power, negative -power, burn +3.
    """
    modifier = 0
    for tag in selected_tags:
        if not isinstance(tag, dict):
            continue
        name = _tag_label(tag)
        if not name or not tag_exists(name):
            continue
        effect = tag.get("effect")
        if effect == TAG_POSITIVE:
            modifier += _tag_power(tag)
        elif effect == TAG_NEGATIVE:
            modifier -= _tag_power(tag)
        elif effect == TAG_BURN:
            modifier += BURN_POWER
    return modifier
