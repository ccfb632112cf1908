"""
Context Assembler

Turns ranked search results into a bounded block of prompt context.
Only document content is used; scores and metadata never reach the model.
"""

import logging
from dataclasses import dataclass, field
from typing import List

from ..common.schemas import SearchResult

logger = logging.getLogger("sqlguard.retriever.context")

SEPARATOR = "\n\n---\n\n"


@dataclass
class AssembledContext:
    """Prompt context plus the results it was built from"""
    text: str
    included: List[SearchResult] = field(default_factory=list)
    dropped: List[SearchResult] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text


class ContextAssembler:
    """
    Concatenates result content up to a character budget.

    Results are taken in rank order; when the joined text is over budget the
    lowest-ranked entries are dropped first. A top-ranked entry that alone
    exceeds the budget is truncated to it.
    """

    def __init__(self, max_chars: int = 6000, separator: str = SEPARATOR):
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self._max_chars = max_chars
        self._separator = separator

    @property
    def max_chars(self) -> int:
        return self._max_chars

    def _joined_length(self, results: List[SearchResult]) -> int:
        if not results:
            return 0
        return sum(len(r.content) for r in results) + len(self._separator) * (len(results) - 1)

    def assemble(self, results: List[SearchResult]) -> AssembledContext:
        included = [r for r in results if r.content]
        dropped: List[SearchResult] = []

        while len(included) > 1 and self._joined_length(included) > self._max_chars:
            dropped.insert(0, included.pop())

        if not included:
            return AssembledContext(text="", included=[], dropped=dropped)

        text = self._separator.join(r.content for r in included)
        if len(text) > self._max_chars:
            # Single oversized entry
            text = text[:self._max_chars]

        if dropped:
            logger.debug(
                "Context budget %d chars: kept %d results, dropped %d",
                self._max_chars, len(included), len(dropped),
            )
        return AssembledContext(text=text, included=included, dropped=dropped)
