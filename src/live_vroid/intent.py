"""
Avatar vocabulary and intent parsing.

Fixed command vocabularies understood by the Godot avatar scene and a
keyword matcher that turns free text into an avatar command. Matching is
lexical and order-sensitive: the first entry that matches wins.
"""

from dataclasses import asdict, dataclass
from typing import Dict, List

# Available animations from Mixamo
ANIMATIONS = (
    "idle",
    "wave",
    "jump",
    "walk",
    "run",
    "dance",
    "sit",
    "stand",
    "nod",
    "shake_head",
    "laugh",
    "think",
    "point",
    "clap",
    "bow",
)

EMOTIONS = (
    "neutral",
    "happy",
    "sad",
    "angry",
    "surprised",
    "confused",
    "excited",
    "bored",
    "shy",
    "confident",
)

LOOK_TARGETS = ("user", "away", "down", "up", "left", "right")

DEFAULT_CLIP = "idle"
DEFAULT_EMOTION = "neutral"
DEFAULT_LOOK_AT = "user"

# Checked in order, first emotion with a matching keyword wins
EMOTION_KEYWORDS: Dict[str, List[str]] = {
    "happy": ["happy", "happily", "joy", "glad", "pleased", "delighted", "cheerful"],
    "sad": ["sad", "unhappy", "down", "depressed", "blue"],
    "angry": ["angry", "mad", "furious", "annoyed", "irritated"],
    "surprised": ["surprised", "shocked", "amazed", "astonished"],
    "confused": ["confused", "puzzled", "perplexed", "bewildered"],
    "excited": ["excited", "thrilled", "enthusiastic"],
    "shy": ["shy", "bashful", "timid", "nervous"],
    "confident": ["confident", "sure", "certain", "bold"],
}


@dataclass(frozen=True)
class AvatarCommand:
    """Normalized avatar command."""

    clip: str = DEFAULT_CLIP
    emotion: str = DEFAULT_EMOTION
    look_at: str = DEFAULT_LOOK_AT

    def to_params(self) -> Dict[str, str]:
        """Wire parameters for an ``avatar_control`` command."""
        return {"clip": self.clip, "emotion": self.emotion, "lookAt": self.look_at}

    def describe(self) -> str:
        return f"{self.clip} animation, {self.emotion} emotion, looking at {self.look_at}"

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


def validate_command(command: AvatarCommand) -> None:
    """Check a command against the vocabularies.

    Raises:
        ValueError: If clip, emotion or look target is unknown
    """
    if command.clip not in ANIMATIONS:
        raise ValueError(f"Unknown animation clip: {command.clip}")
    if command.emotion not in EMOTIONS:
        raise ValueError(f"Unknown emotion: {command.emotion}")
    if command.look_at not in LOOK_TARGETS:
        raise ValueError(f"Unknown look target: {command.look_at}")


def _match_clip(lower: str) -> str:
    for anim in ANIMATIONS:
        if anim in lower:
            return anim
    return DEFAULT_CLIP


def _match_emotion(lower: str) -> str:
    for emotion, keywords in EMOTION_KEYWORDS.items():
        if any(keyword in lower for keyword in keywords):
            return emotion
    return DEFAULT_EMOTION


def _match_look_at(lower: str) -> str:
    if "look away" in lower or "don't look" in lower:
        return "away"
    if "look down" in lower:
        return "down"
    if "look up" in lower:
        return "up"
    return DEFAULT_LOOK_AT


def parse_intent(text: str) -> AvatarCommand:
    """Parse natural language into an avatar command.

    Args:
        text: Free text describing an action, an emotion, or both

    Returns:
        AvatarCommand with defaults for anything not mentioned
    """
    lower = text.lower()
    return AvatarCommand(
        clip=_match_clip(lower),
        emotion=_match_emotion(lower),
        look_at=_match_look_at(lower),
    )
