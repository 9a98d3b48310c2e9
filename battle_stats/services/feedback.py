"""In-battle player feedback events as tagged variants."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class FeedbackKind(str, Enum):
    """Feedback types raised by the game client."""
    DAMAGE = "damage"
    KILL = "kill"
    RADIO_ASSIST = "radioAssist"
    TRACK_ASSIST = "trackAssist"
    TANKING = "tanking"
    RECEIVED_DAMAGE = "receivedDamage"
    TARGET_VISIBILITY = "targetVisibility"
    DETECTED = "detected"
    SPOTTED = "spotted"


@dataclass(frozen=True)
class DamageFeedback:
    damage: int
    kind: FeedbackKind = FeedbackKind.DAMAGE


@dataclass(frozen=True)
class KillFeedback:
    kind: FeedbackKind = FeedbackKind.KILL


@dataclass(frozen=True)
class ParticipationFeedback:
    """Assists, spotting, tanking and the like; scored by the server."""
    kind: FeedbackKind
    data: dict = field(default_factory=dict, hash=False, compare=False)


PlayerFeedback = Union[DamageFeedback, KillFeedback, ParticipationFeedback]


def parse_feedback(raw: Optional[dict]) -> Optional[PlayerFeedback]:
    """Turn a raw ``{"type", "data"}`` notification into a variant.

    Unknown types, missing data and damage without a numeric amount yield None.
    """
    if not raw or not raw.get("type"):
        return None
    try:
        kind = FeedbackKind(raw["type"])
    except ValueError:
        return None

    data = raw.get("data")
    if not data:
        return None

    if kind is FeedbackKind.DAMAGE:
        damage = data.get("damage") if isinstance(data, dict) else None
        if isinstance(damage, bool) or not isinstance(damage, (int, float)):
            return None
        return DamageFeedback(damage=int(damage))
    if kind is FeedbackKind.KILL:
        return KillFeedback()
    return ParticipationFeedback(kind=kind, data=data if isinstance(data, dict) else {})
