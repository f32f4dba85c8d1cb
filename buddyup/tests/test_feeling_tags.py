"""Tests for feeling tag parsing, including shapes older clients stored."""

import pytest
from pydantic import ValidationError

from buddyup.models.challenge import CompleteChallengeRequest, FeelingTags


def test_structured_shape():
    tags = FeelingTags.model_validate({"difficulty": "just_right", "mood": "happy"})
    assert tags.difficulty == "just_right"
    assert tags.mood == "happy"
    assert tags.legacy_tags == []


def test_feeling_key_maps_to_mood():
    tags = FeelingTags.model_validate({"difficulty": "easy", "feeling": "energized"})
    assert tags.mood == "energized"


def test_bare_list_is_lifted():
    tags = FeelingTags.model_validate(["Hard", "sleepy", "rainy day"])
    assert tags.difficulty == "hard"
    assert tags.mood == "sleepy"
    assert tags.legacy_tags == ["rainy day"]


def test_json_string_of_list():
    tags = FeelingTags.model_validate('["just right", "excited"]')
    assert tags.difficulty == "just_right"
    assert tags.mood == "excited"


def test_comma_separated_string():
    tags = FeelingTags.model_validate("impossible, bored, windy")
    assert tags.difficulty == "impossible"
    assert tags.mood == "bored"
    assert tags.legacy_tags == ["windy"]


def test_empty_inputs_are_empty():
    assert FeelingTags.model_validate("").is_empty()
    assert FeelingTags.model_validate([]).is_empty()
    assert FeelingTags.model_validate({"difficulty": "", "mood": ""}).is_empty()


def test_only_first_difficulty_is_structured():
    tags = FeelingTags.model_validate(["easy", "hard"])
    assert tags.difficulty == "easy"
    assert tags.legacy_tags == ["hard"]


def test_unknown_structured_value_rejected():
    with pytest.raises(ValidationError):
        FeelingTags.model_validate({"difficulty": "brutal"})


def test_request_accepts_legacy_list():
    request = CompleteChallengeRequest.model_validate({"feeling_tags": ["tired"]})
    assert request.feeling_tags.mood == "tired"
