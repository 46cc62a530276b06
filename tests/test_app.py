"""Tests for the TUI key bindings."""

from diskdive.tui.app import DiskDiveApp


def _bound_keys() -> dict[str, str]:
    keys = {}
    for binding in DiskDiveApp.BINDINGS:
        for key in binding.key.split(","):
            keys[key] = binding.action
    return keys


class TestBindings:
    def test_letter_commands_accept_capitals(self):
        keys = _bound_keys()
        for key in ("t", "o", "f"):
            assert keys[key] == f"press('{key}')"
            assert keys[key.upper()] == keys[key]

    def test_navigation_aliases(self):
        keys = _bound_keys()
        assert keys["k"] == keys["up"]
        assert keys["j"] == keys["down"]
        assert keys["l"] == keys["right"] == keys["enter"]
        assert keys["backspace"] == keys["delete"]
