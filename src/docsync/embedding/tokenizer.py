"""Tokenizer shared by the chunker and the embedding models."""

from __future__ import annotations

from typing import List, Protocol, Sequence

import tiktoken

DEFAULT_ENCODING = "cl100k_base"


class Tokenizer(Protocol):
    def encode(self, text: str) -> List[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenTokenizer:
    """Thin wrapper around a `tiktoken` encoding.

    ``cl100k_base`` is the vocabulary of the OpenAI embedding models, so chunk
    sizes measured here match what the provider bills for. Special-token text
    such as ``<|endoftext|>`` appearing in a document is encoded as plain text.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def encode(self, text: str) -> List[int]:
        return self.encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self.encoding.decode(list(tokens))

    def count(self, text: str) -> int:
        return len(self.encode(text))
