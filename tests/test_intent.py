"""Tests for the keyword intent parser."""

import pytest

from live_vroid.intent import (
    ANIMATIONS,
    EMOTION_KEYWORDS,
    EMOTIONS,
    AvatarCommand,
    parse_intent,
    validate_command,
)


class TestParseIntent:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Wave happily at the user", AvatarCommand("wave", "happy", "user")),
            ("just standing around", AvatarCommand("stand", "neutral", "user")),
            ("don't look at me, I'm shy", AvatarCommand("idle", "shy", "away")),
            ("DANCE like you're THRILLED", AvatarCommand("dance", "excited", "user")),
            ("think, puzzled, and look away", AvatarCommand("think", "confused", "away")),
            ("Look up and clap", AvatarCommand("clap", "neutral", "up")),
        ],
    )
    def test_examples(self, text, expected):
        assert parse_intent(text) == expected

    def test_defaults_for_empty_text(self):
        assert parse_intent("") == AvatarCommand("idle", "neutral", "user")

    def test_first_clip_in_vocabulary_order_wins(self):
        # "jump" precedes "run" in the vocabulary regardless of position in the text
        assert parse_intent("run then jump").clip == "jump"

    def test_first_emotion_in_table_order_wins(self):
        # "happy" is checked before "angry"
        assert parse_intent("angry but glad").emotion == "happy"

    def test_substring_matching_is_lexical(self):
        # "sit" inside "visit", "down" maps to sad before gaze is considered
        command = parse_intent("visit the town, feeling down")
        assert command.clip == "sit"
        assert command.emotion == "sad"
        assert command.look_at == "user"

    def test_look_away_beats_look_down(self):
        assert parse_intent("look down, no, look away").look_at == "away"

    def test_look_down_beats_look_up(self):
        assert parse_intent("look up then look down").look_at == "down"

    def test_is_deterministic(self):
        text = "bow confidently and look up"
        assert parse_intent(text) == parse_intent(text)


class TestVocabulary:
    def test_keyword_table_only_names_known_emotions(self):
        assert set(EMOTION_KEYWORDS) <= set(EMOTIONS)

    def test_validate_accepts_vocabulary(self):
        validate_command(AvatarCommand(ANIMATIONS[-1], EMOTIONS[-1], "right"))

    @pytest.mark.parametrize(
        "command, match",
        [
            (AvatarCommand("moonwalk"), "animation clip"),
            (AvatarCommand("wave", "sleepy"), "emotion"),
            (AvatarCommand("wave", "happy", "behind"), "look target"),
        ],
    )
    def test_validate_rejects_unknown_values(self, command, match):
        with pytest.raises(ValueError, match=match):
            validate_command(command)

    def test_wire_params(self):
        assert AvatarCommand("nod", "happy", "left").to_params() == {
            "clip": "nod",
            "emotion": "happy",
            "lookAt": "left",
        }
