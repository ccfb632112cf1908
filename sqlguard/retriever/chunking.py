"""
Fixed-size, overlapping text chunking for ingestion.
"""

from typing import List

# Preferred cut points, strongest first
SEPARATORS = ("\n\n", "\n", ". ", ";", ",", " ")


def split_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[str]:
    """
    Split text into chunks of at most chunk_size characters.

    Consecutive chunks share up to chunk_overlap characters. A chunk ends at
    the strongest separator found in the second half of its window, or at
    the hard size limit when there is none.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError("chunk_overlap must be in [0, chunk_size)")

    if not text.strip():
        return []
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + chunk_size, length)

        if end < length:
            floor = start + chunk_size // 2
            for sep in SEPARATORS:
                cut = text.rfind(sep, floor, end)
                if cut != -1:
                    end = cut + len(sep)
                    break

        chunk = text[start:end]
        if chunk.strip():
            chunks.append(chunk)

        if end >= length:
            break
        start = max(end - chunk_overlap, start + 1)

    return chunks
