"""
State and desired-state files (YAML).

State file layout:

    services:
      SU1Z0isxPaozGVKXdv0eY:
        version: 3
        httpslogging:
          - {name: splunk, url: "https://...", method: POST, ...}

Entries are stored flattened (see `flatten_https`). Writes go to a temp file
in the same directory and are moved into place with os.replace.

Desired-state layout:

    service_id: SU1Z0isxPaozGVKXdv0eY
    version: 3
    httpslogging:
      - name: splunk
        url: https://splunk.example.com/collector
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .https_logging import ConfigValidationError, ServiceVersionRef
from .reconciler import ConfigSet

log = logging.getLogger("fsync.state")


def _read_yaml_file(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigValidationError(f"Top-level YAML must be a mapping: {path}")
    return data


class StateStore:
    """Flattened HTTPS logging state per service, persisted as YAML."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _load_all(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        data = _read_yaml_file(self.path)
        services = data.get("services") or {}
        if not isinstance(services, dict):
            raise ConfigValidationError(f"'services' must be a mapping in {self.path}")
        return services

    def load(self, service_id: str) -> List[Dict[str, Any]]:
        entry = self._load_all().get(service_id) or {}
        return list(entry.get("httpslogging") or [])

    def version(self, service_id: str) -> Optional[int]:
        entry = self._load_all().get(service_id) or {}
        v = entry.get("version")
        return int(v) if v is not None else None

    def save(self, service_id: str, version: int, entries: List[Dict[str, Any]]) -> None:
        services = self._load_all()
        services[service_id] = {"version": int(version), "httpslogging": list(entries)}

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.stem}_", suffix=self.path.suffix, dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump({"services": services}, f, sort_keys=True, default_flow_style=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        log.debug("Saved %d HTTPS logging entries for %s v%s to %s", len(entries), service_id, version, self.path)


@dataclass(frozen=True)
class DesiredState:
    ref: ServiceVersionRef
    endpoints: ConfigSet


def load_desired(path: Union[str, Path]) -> DesiredState:
    """Read a desired-state file; raises ConfigValidationError on bad content."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Desired state file not found: {path}")
    data = _read_yaml_file(p)

    missing = [k for k in ("service_id", "version") if not data.get(k)]
    if missing:
        raise ConfigValidationError(f"Missing required key(s) in {path}: {', '.join(missing)}")
    try:
        version = int(data["version"])
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"'version' must be an integer in {path}") from exc

    entries = data.get("httpslogging") or []
    if not isinstance(entries, list):
        raise ConfigValidationError(f"'httpslogging' must be a list in {path}")

    return DesiredState(
        ref=ServiceVersionRef(str(data["service_id"]), version),
        endpoints=ConfigSet(entries),
    )
