# keygen.py

import secrets
from typing import Optional

import config


def normalize_code(raw: Optional[str]) -> str:
    """Canonical form of a code typed by a user: trimmed and upper-cased."""
    return (raw or "").strip().upper()


class KeyGenerator:
    """Draws codes uniformly from ``alphabet ** length``.

    The generator never looks at which codes are taken; collision handling
    belongs to the registry.
    """

    def __init__(self, alphabet: str = config.KEY_CHARS, length: int = config.KEY_LENGTH, rng=None):
        if not alphabet:
            raise ValueError("alphabet must not be empty")
        if alphabet != alphabet.upper():
            raise ValueError(f"alphabet must be upper-case, keys are matched case-insensitively: {alphabet!r}")
        if len(set(alphabet)) != len(alphabet):
            raise ValueError(f"alphabet has repeated symbols: {alphabet!r}")
        if length < 1:
            raise ValueError("length must be >= 1")
        self.alphabet = alphabet
        self.length = length
        self._rng = rng or secrets.SystemRandom()

    @property
    def key_space(self) -> int:
        return len(self.alphabet) ** self.length

    def generate(self) -> str:
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.length))

    def __call__(self) -> str:
        return self.generate()
