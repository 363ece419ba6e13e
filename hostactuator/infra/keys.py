"""Key name to terminal control sequence table."""

from __future__ import annotations

KEY_SEQUENCES: dict[str, str] = {
    "Enter": "\r",
    "Return": "\r",
    "Tab": "\t",
    "Space": " ",
    "Escape": "\x1b",
    "Backspace": "\x08",
    "Delete": "\x7f",
    "ArrowUp": "\x1b[A",
    "ArrowDown": "\x1b[B",
    "ArrowRight": "\x1b[C",
    "ArrowLeft": "\x1b[D",
    "Home": "\x1b[H",
    "End": "\x1b[F",
    "PageUp": "\x1b[5~",
    "PageDown": "\x1b[6~",
    "F1": "\x1bOP",
    "F2": "\x1bOQ",
    "F3": "\x1bOR",
    "F4": "\x1bOS",
    "F5": "\x1b[15~",
    "F6": "\x1b[17~",
    "F7": "\x1b[18~",
    "F8": "\x1b[19~",
    "F9": "\x1b[20~",
    "F10": "\x1b[21~",
    "F11": "\x1b[23~",
    "F12": "\x1b[24~",
}


def key_sequence(key: str) -> str:
    """Resolve a key name (or ``Ctrl+<letter>``) to the characters to send.

    Unknown names are sent literally.
    """
    if key.startswith("Ctrl+") and len(key) == 6:
        code = ord(key[5].lower()) - 96
        if 1 <= code <= 26:
            return chr(code)
    return KEY_SEQUENCES.get(key, key)
