"""Bidirectional identifier <-> display name cache with TTL refresh."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Protocol

from demand_forecast.services.demand_types import (
    Diagnostic,
    Identifier,
    Named,
    Opaque,
    StageResult,
    normalize_name,
    parse_identifier,
)

logger = logging.getLogger(__name__)


class IdentifierLookup(Protocol):
    """External source of truth for one identifier space (skills, staff)."""

    async def load_all(self) -> Mapping[str, str]:
        """Return every known ``identifier -> display name`` pair."""
        ...

    async def name_for(self, identifier: str) -> str | None:
        ...

    async def id_for(self, name: str) -> str | None:
        ...


def _frozen(mapping: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True, slots=True)
class _CacheSnapshot:
    """One immutable cache epoch. Readers hold a reference; writers swap it."""

    names_by_id: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    ids_by_name: Mapping[str, str] = field(default_factory=lambda: _frozen({}))
    loaded_at: float | None = None

    @classmethod
    def from_source(cls, mapping: Mapping[str, str], loaded_at: float) -> _CacheSnapshot:
        names_by_id: dict[str, str] = {}
        ids_by_name: dict[str, str] = {}
        for raw_id, raw_name in mapping.items():
            identifier = str(raw_id).strip().lower()
            name = str(raw_name or "").strip()
            if not identifier or not name:
                continue
            names_by_id[identifier] = name
            ids_by_name.setdefault(normalize_name(name), identifier)
        return cls(_frozen(names_by_id), _frozen(ids_by_name), loaded_at)

    def with_names(self, resolved: Mapping[str, str], real: Mapping[str, str]) -> _CacheSnapshot:
        # Existing entries win so a name never changes inside one epoch.
        names_by_id = {**resolved, **self.names_by_id}
        ids_by_name = dict(self.ids_by_name)
        for identifier, name in real.items():
            ids_by_name.setdefault(normalize_name(name), identifier)
        return _CacheSnapshot(_frozen(names_by_id), _frozen(ids_by_name), self.loaded_at)

    def with_ids(self, resolved: Mapping[str, str]) -> _CacheSnapshot:
        ids_by_name = {**resolved, **self.ids_by_name}
        return _CacheSnapshot(self.names_by_id, _frozen(ids_by_name), self.loaded_at)


class IdentifierResolutionService:
    """Resolves opaque identifiers to display names and back.

    The cache is rebuilt from ``lookup.load_all()`` once it is older than
    ``ttl_seconds``; a failed rebuild keeps serving the previous snapshot.
    Misses are looked up one by one, at most ``max_concurrency`` at a time, and
    failures degrade to deterministic placeholders such as
    ``Unknown Skill (1a2b3c4d)``. Placeholders are cached until the next
    rebuild so that repeated resolution inside one epoch is stable.
    """

    def __init__(
        self,
        lookup: IdentifierLookup,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        max_concurrency: int = 8,
        kind: str = "skill",
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.lookup = lookup
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.max_concurrency = max_concurrency
        self.kind = kind
        self._snapshot = _CacheSnapshot()
        self._refresh_lock = asyncio.Lock()

    # ---------- Cache lifecycle ----------
    @property
    def snapshot_loaded_at(self) -> float | None:
        return self._snapshot.loaded_at

    def is_stale(self) -> bool:
        loaded_at = self._snapshot.loaded_at
        return loaded_at is None or self.clock() - loaded_at >= self.ttl_seconds

    async def refresh(self, force: bool = False) -> bool:
        """Rebuild the cache when stale (or when forced). Returns False if the rebuild failed."""

        async with self._refresh_lock:
            if not force and not self.is_stale():
                return True
            try:
                mapping = await self.lookup.load_all()
            except Exception as exc:
                logger.warning(
                    "%s cache refresh failed; keeping %d cached entries: %s",
                    self.kind.capitalize(),
                    len(self._snapshot.names_by_id),
                    exc,
                )
                return False
            self._snapshot = _CacheSnapshot.from_source(mapping, loaded_at=self.clock())
            logger.debug("%s cache refreshed with %d entries", self.kind.capitalize(), len(mapping))
            return True

    async def _ensure_fresh(self) -> None:
        if self.is_stale():
            await self.refresh()

    # ---------- Resolution ----------
    async def resolve_names(self, values: Iterable[str | Identifier]) -> list[str]:
        """Display names for ``values`` in input order. Empty references are skipped."""

        identifiers = [identifier for identifier in map(parse_identifier, values) if identifier is not None]
        resolved = await self.resolve_map(identifiers)
        return [resolved.value[identifier] for identifier in identifiers]

    async def resolve_map(self, identifiers: Iterable[Identifier]) -> StageResult[dict[Identifier, str]]:
        """Display name per unique identifier, with a diagnostic for every placeholder handed out."""

        await self._ensure_fresh()
        unique = list(dict.fromkeys(identifiers))
        diagnostics: list[Diagnostic] = []

        cached = self._snapshot.names_by_id
        misses = [
            identifier.value
            for identifier in unique
            if isinstance(identifier, Opaque) and identifier.value not in cached
        ]
        if misses:
            semaphore = asyncio.Semaphore(self.max_concurrency)
            results = await asyncio.gather(*(self._lookup_name(value, semaphore) for value in misses))
            resolved: dict[str, str] = {}
            real: dict[str, str] = {}
            for value, name, diagnostic in results:
                resolved[value] = name
                if diagnostic is None:
                    real[value] = name
                else:
                    diagnostics.append(diagnostic)
            self._snapshot = self._snapshot.with_names(resolved, real)

        names = self._snapshot.names_by_id
        resolved_names = {
            identifier: identifier.value.strip() if isinstance(identifier, Named) else names[identifier.value]
            for identifier in unique
        }
        return StageResult(resolved_names, tuple(diagnostics))

    async def resolve_ids(self, values: Iterable[str | Identifier]) -> StageResult[list[str]]:
        """Identifiers for display names in input order.

        Values that already are identifiers pass through. Names that cannot be
        resolved are returned unchanged.
        """

        await self._ensure_fresh()
        identifiers = [identifier for identifier in map(parse_identifier, values) if identifier is not None]
        diagnostics: list[Diagnostic] = []

        cached = self._snapshot.ids_by_name
        misses = list(
            dict.fromkeys(
                identifier.value
                for identifier in identifiers
                if isinstance(identifier, Named) and normalize_name(identifier.value) not in cached
            )
        )
        if misses:
            semaphore = asyncio.Semaphore(self.max_concurrency)
            results = await asyncio.gather(*(self._lookup_id(name, semaphore) for name in misses))
            resolved: dict[str, str] = {}
            for name, identifier, diagnostic in results:
                resolved[normalize_name(name)] = identifier
                if diagnostic is not None:
                    diagnostics.append(diagnostic)
            self._snapshot = self._snapshot.with_ids(resolved)

        ids = self._snapshot.ids_by_name
        resolved_ids = [
            identifier.value if isinstance(identifier, Opaque) else ids[normalize_name(identifier.value)]
            for identifier in identifiers
        ]
        return StageResult(resolved_ids, tuple(diagnostics))

    async def resolve(self, value: str | Identifier) -> str:
        identifier = parse_identifier(value)
        if identifier is None:
            raise ValueError(f"Cannot resolve an empty {self.kind} reference")
        resolved = await self.resolve_map([identifier])
        return resolved.value[identifier]

    # ---------- Single-item lookups ----------
    def placeholder(self, identifier: str, *, failed: bool = False) -> str:
        prefix = "Unresolved" if failed else "Unknown"
        return f"{prefix} {self.kind.capitalize()} ({identifier[:8]})"

    async def _lookup_name(
        self, identifier: str, semaphore: asyncio.Semaphore
    ) -> tuple[str, str, Diagnostic | None]:
        async with semaphore:
            try:
                name = await self.lookup.name_for(identifier)
            except Exception as exc:
                logger.warning("%s lookup failed for %s: %s", self.kind.capitalize(), identifier, exc)
                return (
                    identifier,
                    self.placeholder(identifier, failed=True),
                    Diagnostic(stage="identifier-resolution", subject=identifier, message=f"lookup failed: {exc}"),
                )
        if not name or not name.strip():
            logger.warning("%s %s not found; using placeholder name", self.kind.capitalize(), identifier)
            return (
                identifier,
                self.placeholder(identifier),
                Diagnostic(stage="identifier-resolution", subject=identifier, message="not found"),
            )
        return identifier, name.strip(), None

    async def _lookup_id(self, name: str, semaphore: asyncio.Semaphore) -> tuple[str, str, Diagnostic | None]:
        async with semaphore:
            try:
                identifier = await self.lookup.id_for(name)
            except Exception as exc:
                logger.warning("%s id lookup failed for %r: %s", self.kind.capitalize(), name, exc)
                return (
                    name,
                    name,
                    Diagnostic(stage="identifier-resolution", subject=name, message=f"lookup failed: {exc}"),
                )
        if not identifier or not str(identifier).strip():
            logger.warning("%s named %r not found; keeping the name", self.kind.capitalize(), name)
            return name, name, Diagnostic(stage="identifier-resolution", subject=name, message="not found")
        return name, str(identifier).strip().lower(), None
