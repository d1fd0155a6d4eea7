# docmind/utils/text_chunker.py
from typing import List

from docmind.core.errors import ValidationError

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


class Chunker:
    """
    Fixed-size character windows with overlap.

    Each chunk is at most `size` characters; chunk k+1 starts `size - overlap`
    characters after chunk k, so its first `overlap` characters repeat the
    tail of chunk k.
    """

    def __init__(self, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP):
        if size <= 0:
            raise ValidationError(f"chunk size must be positive, got {size}")
        if overlap < 0:
            raise ValidationError(f"chunk overlap must not be negative, got {overlap}")
        if overlap >= size:
            raise ValidationError(f"chunk overlap ({overlap}) must be smaller than chunk size ({size})")
        self.size = size
        self.overlap = overlap

    def chunk(self, text: str) -> List[str]:
        if len(text) <= self.size:
            return [text]

        step = self.size - self.overlap
        chunks = []
        start = 0
        while start < len(text):
            end = min(start + self.size, len(text))
            chunks.append(text[start:end])
            if end >= len(text):
                break
            start += step
        return chunks

    def reassemble(self, chunks: List[str]) -> str:
        """Inverse of `chunk`: drop the repeated prefix of every chunk after the first."""
        if not chunks:
            return ""
        return chunks[0] + "".join(c[self.overlap:] for c in chunks[1:])


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[str]:
    return Chunker(chunk_size, overlap).chunk(text)
