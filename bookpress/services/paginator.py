"""Cross-chapter pagination of page blocks under a character budget.

A page is closed *before* adding a block that would push it over the
budget, but only once it has reached the minimum length; a block longer
than the budget is never split and simply overshoots its page.
"""

from typing import Iterable, Iterator, List, Optional

from bookpress.models.content import ElementNode, estimate_length
from bookpress.models.page import PageDraft

DEFAULT_BUDGET = 3000
DEFAULT_MIN_LENGTH = 800


class Paginator:
    """Incremental accumulator: feed blocks with :meth:`add`, then call :meth:`finish`."""

    def __init__(self, budget: int = DEFAULT_BUDGET, min_length: int = DEFAULT_MIN_LENGTH):
        if budget <= 0:
            raise ValueError("budget must be positive")
        self.budget = budget
        self.min_length = min_length
        self._sequence = 1
        self._current = PageDraft(sequence=self._sequence)

    def add(self, block: ElementNode) -> Optional[PageDraft]:
        """Append *block*; return the page it closed, if any."""
        length = estimate_length(block)
        closed = None
        current = self._current
        if (
            current.blocks
            and current.length + length > self.budget
            and current.length >= self.min_length
        ):
            closed = current
            self._sequence += 1
            self._current = current = PageDraft(sequence=self._sequence)
        current.blocks.append(block)
        current.length += length
        return closed

    def finish(self) -> Optional[PageDraft]:
        """Close and return the final page, or *None* if nothing is pending."""
        current = self._current
        if not current.blocks:
            return None
        current.is_last = True
        self._current = PageDraft(sequence=self._sequence + 1)
        return current


def iter_pages(
    blocks: Iterable[ElementNode],
    budget: int = DEFAULT_BUDGET,
    min_length: int = DEFAULT_MIN_LENGTH,
) -> Iterator[PageDraft]:
    paginator = Paginator(budget, min_length)
    for block in blocks:
        page = paginator.add(block)
        if page is not None:
            yield page
    last = paginator.finish()
    if last is not None:
        yield last


def paginate(
    blocks: Iterable[ElementNode],
    budget: int = DEFAULT_BUDGET,
    min_length: int = DEFAULT_MIN_LENGTH,
) -> List[PageDraft]:
    """Split *blocks* into page drafts; the final draft has ``is_last=True``."""
    return list(iter_pages(blocks, budget, min_length))
