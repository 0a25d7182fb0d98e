"""
Purge API: single URL, surrogate key, whole service.

Every call returns a :class:`Purge` (status + id) decoded from the JSON
response. Required inputs are checked before any network call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .fastly_client import DecodeError, FastlyClient, MissingRequiredField

SOFT_PURGE_HEADER = "Fastly-Soft-Purge"


@dataclass(frozen=True)
class Purge:
    """Response from a purge request. `status` is usually "ok"."""
    status: str
    id: str

    @classmethod
    def from_json(cls, data: Any, *, url: str = "") -> "Purge":
        if not isinstance(data, dict):
            raise DecodeError(url, str(data), "purge response must be a JSON object")
        return cls(status=str(data.get("status") or ""), id=str(data.get("id") or ""))


def _soft_headers(soft: bool) -> Optional[Dict[str, str]]:
    return {SOFT_PURGE_HEADER: "1"} if soft else None


def purge(client: FastlyClient, url: str, soft: bool = False) -> Purge:
    """Instantly purge an individual URL."""
    if not url:
        raise MissingRequiredField("url")
    path = f"purge/{url}"
    resp = client.post_json(path, headers=_soft_headers(soft), parallel=True)
    return Purge.from_json(resp, url=path)


def purge_key(client: FastlyClient, service_id: str, key: str, soft: bool = False) -> Purge:
    """Purge every object of a service tagged with a surrogate key."""
    if not service_id:
        raise MissingRequiredField("service_id")
    if not key:
        raise MissingRequiredField("key")
    path = f"/service/{service_id}/purge/{key}"
    resp = client.post_json(path, headers=_soft_headers(soft), parallel=True)
    return Purge.from_json(resp, url=path)


def purge_all(client: FastlyClient, service_id: str, soft: bool = False) -> Purge:
    """Purge everything cached for a service."""
    if not service_id:
        raise MissingRequiredField("service_id")
    path = f"/service/{service_id}/purge_all"
    resp = client.post_json(path, headers=_soft_headers(soft))
    return Purge.from_json(resp, url=path)
