"""Resolve-or-fill cache for provider model identifiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Awaitable, Callable


@dataclass
class ModelVersionCache:
    """Maps a configured model source (slug or pinned version) to its resolved id.

    Entries are written once and never invalidated. There is no lock: two
    requests resolving the same source for the first time both call the
    resolver, and the later write wins with an identical value.
    """

    _entries: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    resolutions: int = field(default=0, init=False)

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    async def resolve(self, key: str, resolver: Callable[[str], Awaitable[str]]) -> str:
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        self.resolutions += 1
        value = await resolver(key)
        self._entries[key] = value
        return value

    def clear(self) -> None:
        self._entries.clear()
        self.resolutions = 0
