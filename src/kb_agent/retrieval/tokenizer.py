"""Tokenizers used to enforce context token budgets."""

from __future__ import annotations

import re
from typing import Protocol

import tiktoken

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


class Tokenizer(Protocol):
    """Anything that can turn text into model tokens."""

    def encode(self, text: str) -> list[int]:
        """Return the token ids for `text`."""


class TiktokenTokenizer:
    """Tokenizer backed by tiktoken's encoding for a chat model."""

    def __init__(self, model: str = "gpt-4o") -> None:
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            self._encoding = tiktoken.get_encoding("cl100k_base")

    def encode(self, text: str) -> list[int]:
        return self._encoding.encode(text, disallowed_special=())


class RegexTokenizer:
    """Word/punctuation tokenizer for offline runs where no encoding can load."""

    def encode(self, text: str) -> list[int]:
        return [len(token) for token in _TOKEN_PATTERN.findall(text)]


def count_tokens(tokenizer: Tokenizer, text: str) -> int:
    return len(tokenizer.encode(text))
