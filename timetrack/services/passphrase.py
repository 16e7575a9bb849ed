"""Memorable ``adjective-noun-digit`` sync codes (``calm-robot-4``)."""

import secrets

ADJECTIVES = (
    "red", "blue", "green", "yellow", "purple", "orange", "pink", "brown",
    "big", "small", "tiny", "huge", "fast", "slow", "quick", "swift",
    "hot", "cold", "warm", "cool", "new", "old", "happy", "calm",
    "bright", "dark", "soft", "loud", "quiet", "super", "nice", "kind",
)  # fmt: skip

NOUNS = (
    "cat", "dog", "bird", "fish", "mouse", "rabbit", "turtle", "horse",
    "tree", "flower", "sun", "moon", "star", "cloud", "rock", "river",
    "car", "bike", "boat", "book", "desk", "phone", "clock", "key",
    "apple", "pizza", "cake", "coffee", "robot", "button", "app",
)  # fmt: skip


def generate_passphrase() -> str:
    adjective = secrets.choice(ADJECTIVES)
    noun = secrets.choice(NOUNS)
    digit = secrets.randbelow(10)
    return f"{adjective}-{noun}-{digit}"
