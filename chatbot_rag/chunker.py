"""
Token-aware recursive text splitter.

Text is split on the strongest separator available (paragraph, line,
sentence, whitespace), the pieces are merged greedily up to the chunk
size, and each new chunk starts with the tail of the previous one.
Sizes are counted in tokenizer tokens because embedding models limit
their input by tokens, not characters.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .errors import ChunkingConfigurationError

DEFAULT_CHUNK_SIZE = 100
DEFAULT_OVERLAP = 20

# Highest priority first. Each pattern matches the separator itself, which
# stays attached to the piece before it so nothing of the text is lost.
SEPARATORS: Sequence[str] = (
    r"\n\s*\n",
    r"\n",
    r"(?<=[.!?。！？])\s+",
    r"\s+",
)


class Tokenizer(Protocol):
    def encode(self, text: str) -> List[int]:
        ...

    def decode(self, tokens: Sequence[int]) -> str:
        ...


@dataclass
class _Atom:
    tokens: List[int]
    # True when no separator could bring the piece under the chunk size.
    oversized: bool = False


def _split_keep_separator(text: str, pattern: str) -> List[str]:
    pieces = []
    start = 0
    for match in re.finditer(pattern, text):
        end = match.end()
        if end > start:
            pieces.append(text[start:end])
            start = end
    if start < len(text):
        pieces.append(text[start:])
    return pieces


class TextChunker:
    """
    Splits documents into overlapping chunks of at most `chunk_size` tokens.

    Example:
        >>> chunker = TextChunker(tokenizer, chunk_size=100, overlap=20)
        >>> chunks = chunker.split(document_text)
    """

    def __init__(
        self,
        tokenizer: Tokenizer,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        separators: Optional[Sequence[str]] = None,
    ) -> None:
        """
        Args:
            tokenizer: Measures and cuts text (normally the embedding model's own)
            chunk_size: Maximum tokens per chunk
            overlap: Tokens copied from the end of one chunk to the start of the next
            separators: Regex separators, highest priority first

        Raises:
            ChunkingConfigurationError: chunk_size <= 0, overlap < 0 or overlap >= chunk_size
        """
        if chunk_size <= 0:
            raise ChunkingConfigurationError("chunk_size must be positive")
        if overlap < 0:
            raise ChunkingConfigurationError("overlap must be non-negative")
        if overlap >= chunk_size:
            raise ChunkingConfigurationError(
                f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
            )

        self.log = logging.getLogger("rag.chunker")
        self.tokenizer = tokenizer
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.separators = tuple(separators) if separators is not None else tuple(SEPARATORS)

    def split(self, text: str) -> List[str]:
        """Split `text` into ordered chunk strings; empty text gives []."""
        if not text:
            return []

        atoms = self._atomize(text, 0)
        chunks = [self.tokenizer.decode(tokens) for tokens in self._merge(atoms)]
        chunks = [chunk for chunk in chunks if chunk.strip()]

        self.log.debug("Split %d characters into %d chunks", len(text), len(chunks))
        return chunks

    # ------------------------------------------------------------------ #
    # Splitting
    # ------------------------------------------------------------------ #
    def _atomize(self, text: str, level: int) -> List[_Atom]:
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= self.chunk_size:
            return [_Atom(tokens)] if tokens else []

        # Try separators from `level` down until one actually splits the text.
        for depth in range(level, len(self.separators)):
            pieces = _split_keep_separator(text, self.separators[depth])
            if len(pieces) > 1:
                atoms: List[_Atom] = []
                for piece in pieces:
                    atoms.extend(self._atomize(piece, depth + 1))
                return atoms

        return [_Atom(tokens, oversized=True)]

    # ------------------------------------------------------------------ #
    # Merging
    # ------------------------------------------------------------------ #
    def _merge(self, atoms: List[_Atom]) -> List[List[int]]:
        chunks: List[List[int]] = []
        current: List[int] = []
        # Number of leading tokens in `current` that were copied from the
        # previous chunk; a chunk holding only those is never emitted.
        seeded = 0

        def close() -> None:
            nonlocal current, seeded
            chunks.append(current)
            tail = current[-self.overlap:] if self.overlap else []
            current = list(tail)
            seeded = len(current)

        for atom in atoms:
            tokens = atom.tokens
            if len(current) + len(tokens) <= self.chunk_size:
                current.extend(tokens)
                continue

            if atom.oversized:
                # Hard cut: fill the open chunk to the limit, close, repeat.
                remaining = tokens
                while remaining:
                    room = self.chunk_size - len(current)
                    current.extend(remaining[:room])
                    remaining = remaining[room:]
                    if remaining:
                        close()
                continue

            if len(current) > seeded:
                close()
            excess = len(current) + len(tokens) - self.chunk_size
            if excess > 0:
                # Shorten the overlap from the front so the atom fits.
                current = current[excess:]
                seeded = len(current)
            current.extend(tokens)

        if len(current) > seeded:
            chunks.append(current)
        return chunks


def split_text(
    text: str,
    chunk_size_tokens: int,
    overlap_size_tokens: int,
    tokenizer: Tokenizer,
) -> List[str]:
    """Functional form of `TextChunker(...).split(text)`."""
    return TextChunker(tokenizer, chunk_size_tokens, overlap_size_tokens).split(text)
