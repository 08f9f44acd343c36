"""Tests for random string and device password generation."""

import re

import pytest

from apptokens.service.secure_random import (
    CHAR_ALPHANUMERIC,
    CHAR_HUMAN_READABLE,
    SecureRandom,
    generate_device_token,
)

DEVICE_TOKEN_PATTERN = re.compile(
    r"^[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}$"
)


class RecordingRandom(SecureRandom):
    def __init__(self):
        self.calls = []

    def generate(self, length, characters=CHAR_ALPHANUMERIC):
        self.calls.append((length, characters))
        return super().generate(length, characters)


class TestSecureRandom:
    def test_generate_respects_length(self):
        value = SecureRandom().generate(40)
        assert len(value) == 40

    def test_generate_stays_inside_alphabet(self):
        value = SecureRandom().generate(500, "ab")
        assert set(value) <= {"a", "b"}

    def test_generate_rejects_non_positive_length(self):
        with pytest.raises(ValueError):
            SecureRandom().generate(0)

    def test_generate_rejects_empty_alphabet(self):
        with pytest.raises(ValueError):
            SecureRandom().generate(5, "")

    def test_human_readable_alphabet_has_no_ambiguous_characters(self):
        for ambiguous in "0O1lI":
            assert ambiguous not in CHAR_HUMAN_READABLE


class TestDeviceToken:
    def test_format_is_five_groups_of_five(self):
        token = generate_device_token(SecureRandom())

        assert len(token) == 29
        assert DEVICE_TOKEN_PATTERN.match(token)
        groups = token.split("-")
        assert len(groups) == 5
        assert all(len(group) == 5 for group in groups)

    def test_characters_come_from_human_readable_alphabet(self):
        for _ in range(20):
            token = generate_device_token(SecureRandom())
            assert set(token.replace("-", "")) <= set(CHAR_HUMAN_READABLE)

    def test_each_group_is_drawn_from_the_generator(self):
        random = RecordingRandom()
        generate_device_token(random)

        assert random.calls == [(5, CHAR_HUMAN_READABLE)] * 5

    def test_tokens_are_not_repeated(self):
        tokens = {generate_device_token(SecureRandom()) for _ in range(50)}
        assert len(tokens) == 50
