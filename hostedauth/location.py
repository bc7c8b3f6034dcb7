from __future__ import annotations

import webbrowser
from typing import Callable, List, Optional, Protocol


class Location(Protocol):
    """
    The visible address of the running application.
    """

    @property
    def href(self) -> str:
        """Current full address."""

    def replace_state(self, url: str) -> None:
        """Rewrite the visible address without navigating (no new history entry)."""

    def assign(self, url: str) -> None:
        """Navigate away to `url` (full navigation)."""


class BrowserLocation(Location):
    """
    In-memory address bar.

    Navigation is delegated to `opener` (defaults to the system browser); the
    replaced addresses are kept in `history` so callers can inspect what was shown.
    """

    def __init__(self, href: str, *, opener: Optional[Callable[[str], object]] = None) -> None:
        self._href = href
        self._opener = opener if opener is not None else webbrowser.open
        self.history: List[str] = [href]
        self.navigations: List[str] = []

    @property
    def href(self) -> str:
        return self._href

    def replace_state(self, url: str) -> None:
        self._href = url
        self.history[-1] = url

    def assign(self, url: str) -> None:
        self.navigations.append(url)
        self._opener(url)

    def load(self, url: str) -> None:
        """Simulate arriving at `url` (e.g. the provider redirecting back)."""
        self._href = url
        self.history.append(url)
