"""Abstract presentation surface the booking engine drives.

The engine never renders anything. It asks the surface to navigate, to show
a toast, or to bring the error display into view. ``RecordingSurface``
keeps those requests in memory so that an HTTP client (or a test) can read
them back.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

log = logging.getLogger("booker.surface")


@dataclass
class Toast:
    message: str
    variant: str = "error"


class BookerSurface(ABC):
    """Abstract UI collaborator for one booking session."""

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Leave the booking page for ``url``."""

    @abstractmethod
    def show_toast(self, message: str, variant: str = "error") -> None:
        """Show a transient notification."""

    @abstractmethod
    def scroll_error_into_view(self) -> None:
        """Bring the booking form's error display into view."""


@dataclass
class RecordingSurface(BookerSurface):
    """Surface that records every request instead of rendering it."""

    navigations: list[str] = field(default_factory=list)
    toasts: list[Toast] = field(default_factory=list)
    error_scrolls: int = 0

    async def navigate(self, url: str) -> None:
        log.info("Navigate: %s", url)
        self.navigations.append(url)

    def show_toast(self, message: str, variant: str = "error") -> None:
        log.debug("Toast (%s): %s", variant, message)
        self.toasts.append(Toast(message=message, variant=variant))

    def scroll_error_into_view(self) -> None:
        self.error_scrolls += 1

    @property
    def last_navigation(self) -> str | None:
        return self.navigations[-1] if self.navigations else None

    def to_dict(self) -> dict:
        return {
            "navigations": list(self.navigations),
            "toasts": [{"message": t.message, "variant": t.variant} for t in self.toasts[-10:]],
            "error_scrolls": self.error_scrolls,
        }
