"""Tests for key name resolution."""

import pytest

from hostactuator.infra.keys import KEY_SEQUENCES, key_sequence


class TestKeySequence:
    @pytest.mark.parametrize("key,expected", [
        ("Enter", "\r"),
        ("Tab", "\t"),
        ("Escape", "\x1b"),
        ("ArrowUp", "\x1b[A"),
        ("F5", "\x1b[15~"),
    ])
    def test_named_keys(self, key, expected):
        assert key_sequence(key) == expected

    def test_ctrl_letters(self):
        assert key_sequence("Ctrl+C") == "\x03"
        assert key_sequence("Ctrl+c") == "\x03"
        assert key_sequence("Ctrl+A") == "\x01"
        assert key_sequence("Ctrl+Z") == "\x1a"

    def test_unknown_sent_literally(self):
        assert key_sequence("q") == "q"
        assert key_sequence(":wq") == ":wq"

    def test_ctrl_non_letter_sent_literally(self):
        assert key_sequence("Ctrl+1") == "Ctrl+1"

    def test_function_keys_complete(self):
        for n in range(1, 13):
            assert f"F{n}" in KEY_SEQUENCES
