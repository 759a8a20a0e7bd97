"""List and viewport sub-components of the dashboard state.

Both are plain mutable records owned by the controller; the renderer only reads
them. Neither knows about keys; the controller translates input into calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

if TYPE_CHECKING:
    from .models import Service


DevFilter = Callable[["Service"], bool]


def keyword_filter(keywords: Iterable[str]) -> DevFilter:
    """Predicate matching services whose name contains any keyword (case-insensitive)."""
    kws = tuple(k.lower() for k in keywords if k)

    def matches(svc: "Service") -> bool:
        name = svc.name.lower()
        return any(kw in name for kw in kws)

    return matches


def visible_services(
    services: Sequence["Service"],
    dev_filter: DevFilter | None,
    search: str = "",
) -> tuple["Service", ...]:
    # Compute visible based on dev filter + search
    q = search.strip().lower()

    def matches_search(svc: "Service") -> bool:
        if not q:
            return True
        return q in svc.name.lower()

    return tuple(
        s for s in services if (dev_filter is None or dev_filter(s)) and matches_search(s)
    )


@dataclass(slots=True)
class ServiceList:
    items: tuple["Service", ...] = ()
    cursor: int = 0
    search: str = ""
    searching: bool = False
    per_page: int = 1

    def selected(self) -> "Service | None":
        if 0 <= self.cursor < len(self.items):
            return self.items[self.cursor]
        return None

    def set_items(self, items: tuple["Service", ...], keep: str | None = None) -> None:
        """Replace the rows, keeping the cursor on `keep` when it is still listed."""
        self.items = items
        row = 0
        if keep is not None:
            for i, svc in enumerate(items):
                if svc.name == keep:
                    row = i
                    break
        self.cursor = row

    def move(self, delta: int) -> None:
        if not self.items:
            self.cursor = 0
            return
        self.cursor = max(0, min(len(self.items) - 1, self.cursor + delta))

    def home(self) -> None:
        self.cursor = 0

    def end(self) -> None:
        self.cursor = max(0, len(self.items) - 1)

    def page(self, delta: int) -> None:
        self.move(delta * max(1, self.per_page))

    def page_start(self) -> int:
        per_page = max(1, self.per_page)
        return (self.cursor // per_page) * per_page


@dataclass(slots=True)
class Viewport:
    offset: int = 0
    height: int = 0

    def max_offset(self, total: int) -> int:
        return max(0, total - self.height)

    def goto_top(self) -> None:
        self.offset = 0

    def goto_bottom(self, total: int) -> None:
        self.offset = self.max_offset(total)

    def scroll(self, delta: int, total: int) -> None:
        self.offset = max(0, min(self.max_offset(total), self.offset + delta))

    def page(self, delta: int, total: int) -> None:
        self.scroll(delta * max(1, self.height), total)

    def at_bottom(self, total: int) -> bool:
        return self.offset >= self.max_offset(total)

    def window(self, lines: Sequence[str]) -> list[str]:
        if self.height <= 0:
            return []
        return list(lines[self.offset : self.offset + self.height])
