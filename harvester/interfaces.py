"""
Core interfaces for the harvester pipeline stages.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Protocol

from .models import ScrapedRow


class PageLoader(Protocol):
    """Anything that can turn a URL into rendered markup."""

    async def goto(self, url: str) -> str:
        """Load a list page; one attempt, raises on failure."""
        ...

    async def fetch_detail(self, url: str) -> str:
        """Load a product page in an auxiliary browsing context."""
        ...


class Fetcher(ABC):
    """Abstract base class for page-batch producers.

    A fetcher yields one ``List[ScrapedRow]`` per list page, as soon as the
    page has been extracted.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this fetcher."""
        pass

    @abstractmethod
    def fetch(self) -> AsyncIterator[List[ScrapedRow]]:
        """Yield page-sized batches of rows."""
        pass


class Sink(ABC):
    """Abstract base class for data sinks.

    Sinks consume batches and yield them unchanged, so they can be chained.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def handle(self, item: Any) -> None:
        """Handle an item."""
        pass

    async def __call__(self, items: AsyncIterator[Any]) -> AsyncIterator[Any]:
        """Transform interface: handle items and pass them through."""
        async for item in items:
            await self.handle(item)
            yield item
