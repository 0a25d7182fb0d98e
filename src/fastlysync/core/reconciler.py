"""
HTTPS logging reconciliation for one service version.

- ConfigSet: endpoints keyed by name, iterated in name order.
- plan(old, new): whole-record diff into removals, additions, unchanged.
- HTTPSLoggingReconciler.apply: every delete runs before any create. A 404
  on delete counts as ALREADY_ABSENT; any other error aborts the run and
  nothing already done is rolled back.
- HTTPSLoggingReconciler.refresh: list the version's endpoints and flatten
  them for the state store.

Usage:
    reconciler = HTTPSLoggingReconciler(HTTPSLoggingAPI(client))
    result = reconciler.apply(ServiceVersionRef("SU1Z0isxPaozGVKXdv0eY", 3), old, new)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Protocol, Union

from .fastly_client import APIError
from .https_logging import (
    ConfigValidationError,
    HTTPSLoggingEndpoint,
    ServiceVersionRef,
    flatten_https,
)

EntryLike = Union[HTTPSLoggingEndpoint, Mapping[str, Any]]


class LoggingAPI(Protocol):
    def list(self, ref: ServiceVersionRef) -> List[HTTPSLoggingEndpoint]: ...

    def create(self, ref: ServiceVersionRef, endpoint: HTTPSLoggingEndpoint) -> Any: ...

    def delete(self, ref: ServiceVersionRef, name: str) -> None: ...


class ConfigSet:
    """Logging endpoints keyed by `name`, their identity within a service version."""

    def __init__(self, entries: Optional[Iterable[EntryLike]] = None, *, validate: bool = True) -> None:
        self._by_name: Dict[str, HTTPSLoggingEndpoint] = {}
        for raw in entries or ():
            if isinstance(raw, HTTPSLoggingEndpoint):
                entry = raw
            else:
                entry = HTTPSLoggingEndpoint.from_mapping(raw, validate=validate)
            if entry.name in self._by_name:
                raise ConfigValidationError(f"duplicate httpslogging name '{entry.name}'")
            self._by_name[entry.name] = entry

    @classmethod
    def coerce(
        cls,
        value: Union["ConfigSet", Iterable[EntryLike], None],
        *,
        validate: bool = True,
    ) -> "ConfigSet":
        if isinstance(value, ConfigSet):
            return value
        return cls(value, validate=validate)

    def names(self) -> List[str]:
        return sorted(self._by_name)

    def __iter__(self) -> Iterator[HTTPSLoggingEndpoint]:
        for name in self.names():
            yield self._by_name[name]

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, entry: object) -> bool:
        return isinstance(entry, HTTPSLoggingEndpoint) and self._by_name.get(entry.name) == entry


@dataclass(frozen=True)
class ReconcilePlan:
    to_remove: List[HTTPSLoggingEndpoint]
    to_add: List[HTTPSLoggingEndpoint]
    unchanged: List[HTTPSLoggingEndpoint]

    @property
    def is_empty(self) -> bool:
        return not self.to_remove and not self.to_add


def plan(
    old: Union[ConfigSet, Iterable[EntryLike], None],
    new: Union[ConfigSet, Iterable[EntryLike], None],
) -> ReconcilePlan:
    """
    Presence-based diff over whole records.

    An old entry is removed unless the new set holds an identical record, and
    a new entry is added unless the old set holds one. A field change under
    the same name therefore shows up in both lists; there is no update.
    Raw old entries are previously stored state and skip value checks.
    """
    old_set = ConfigSet.coerce(old, validate=False)
    new_set = ConfigSet.coerce(new)

    to_remove = [entry for entry in old_set if entry not in new_set]
    to_add = [entry for entry in new_set if entry not in old_set]
    unchanged = [entry for entry in new_set if entry in old_set]
    return ReconcilePlan(to_remove=to_remove, to_add=to_add, unchanged=unchanged)


@dataclass(frozen=True)
class EntryResult:
    name: str
    status: str
    reason: str = ""


@dataclass
class ReconcileResult:
    ref: ServiceVersionRef
    entries: List[EntryResult] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    def append(self, res: EntryResult) -> None:
        self.entries.append(res)
        self.counts[res.status] = self.counts.get(res.status, 0) + 1


class HTTPSLoggingReconciler:
    """Apply the diff between two endpoint sets to one service version."""

    def __init__(self, api: LoggingAPI, *, logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.api = api
        self.log = logger or logging.getLogger("fsync.reconciler")

    def apply(
        self,
        ref: ServiceVersionRef,
        old: Union[ConfigSet, Iterable[EntryLike], None],
        new: Union[ConfigSet, Iterable[EntryLike], None],
    ) -> ReconcileResult:
        """
        Delete every removed entry, then create every added one.

        The first error aborts the run and propagates. Calls already made are
        not undone. A delete answered with 404 counts as done.
        """
        p = plan(old, new)
        result = ReconcileResult(ref=ref)
        self.log.info(
            "Reconciling HTTPS logging for %s v%s: remove=%d add=%d unchanged=%d",
            ref.service_id, ref.version, len(p.to_remove), len(p.to_add), len(p.unchanged),
        )

        for entry in p.to_remove:
            self.log.debug("HTTPS logging endpoint removal: %r", entry)
            try:
                self.api.delete(ref, entry.name)
            except APIError as e:
                if not e.is_not_found:
                    raise
                self.log.info("HTTPS logging endpoint '%s' already absent", entry.name)
                result.append(EntryResult(entry.name, "ALREADY_ABSENT", reason="404 on delete"))
                continue
            result.append(EntryResult(entry.name, "DELETED"))

        for entry in p.to_add:
            self.log.debug("HTTPS logging endpoint addition: %r", entry)
            self.api.create(ref, entry)
            result.append(EntryResult(entry.name, "CREATED"))

        for entry in p.unchanged:
            result.append(EntryResult(entry.name, "UNCHANGED"))

        return result

    def refresh(self, service_id: str, active_version: int) -> List[Dict[str, Any]]:
        """List the endpoints of the active version, flattened for state."""
        ref = ServiceVersionRef(service_id, active_version)
        self.log.debug("Refreshing HTTPS logging endpoints for %s v%s", service_id, active_version)
        return flatten_https(self.api.list(ref))
