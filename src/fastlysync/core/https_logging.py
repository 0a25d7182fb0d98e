"""
HTTPS logging endpoints: typed record, API wrapper and state flattening.

A declarative block (YAML mapping) becomes an :class:`HTTPSLoggingEndpoint`
through `from_mapping`, which applies defaults and validates values. Server
records go through `from_api`, which trusts the server and only normalizes
types. `flatten_https` turns records back into the plain mappings kept in
the state file.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Dict, Iterable, List, Mapping
from urllib.parse import quote, urlparse

from .fastly_client import DecodeError, FastlyClient, MissingRequiredField


class ConfigValidationError(ValueError):
    """Raised when a logging endpoint block has an invalid or unknown field."""


UINT_FIELDS = ("request_max_entries", "request_max_bytes", "format_version")
SECRET_FIELDS = ("tls_ca_cert", "tls_client_cert", "tls_client_key")

METHODS = ("POST", "PUT")
JSON_FORMATS = ("0", "1", "2")
FORMAT_VERSIONS = (1, 2)
MESSAGE_TYPES = ("classic", "loggly", "logplex", "blank")
PLACEMENTS = ("", "none", "waf_debug")


@dataclass(frozen=True)
class ServiceVersionRef:
    """Scope of every create/delete: one service at one (draft) version."""
    service_id: str
    version: int

    def __post_init__(self) -> None:
        if not self.service_id:
            raise MissingRequiredField("service_id")
        if isinstance(self.version, bool) or not isinstance(self.version, int) or self.version < 1:
            raise ValueError(f"version must be a positive integer, got {self.version!r}")


@dataclass(frozen=True)
class HTTPSLoggingEndpoint:
    name: str
    url: str
    request_max_entries: int = 0
    request_max_bytes: int = 0
    content_type: str = ""
    header_name: str = ""
    header_value: str = ""
    method: str = "POST"
    json_format: str = "0"
    tls_ca_cert: str = field(default="", repr=False)
    tls_client_cert: str = field(default="", repr=False)
    tls_client_key: str = field(default="", repr=False)
    tls_hostname: str = ""
    format: str = ""
    format_version: int = 2
    message_type: str = "blank"
    placement: str = ""
    response_condition: str = ""

    # ---------- construction ----------

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, validate: bool = True) -> "HTTPSLoggingEndpoint":
        """
        Build from a declarative block, applying defaults.

        Value checks (https url, enumerations) run unless `validate` is False,
        which is how previously stored state is read back.
        """
        if not isinstance(data, Mapping):
            raise ConfigValidationError(f"httpslogging entry must be a mapping, got {type(data).__name__}")
        known = set(cls.field_names())
        unknown = sorted(str(k) for k in data if k not in known)
        if unknown:
            raise ConfigValidationError(f"unknown httpslogging field(s): {', '.join(unknown)}")

        values: Dict[str, Any] = {}
        for name, value in data.items():
            if value is None:
                continue
            if name in UINT_FIELDS:
                values[name] = _to_int(name, value)
            elif name == "json_format":
                values[name] = _to_int_str(name, value)
            else:
                values[name] = str(value)

        for required in ("name", "url"):
            if not values.get(required):
                raise ConfigValidationError(f"httpslogging field '{required}' is required")

        endpoint = cls(**values)
        if validate:
            endpoint.validate()
        return endpoint

    @classmethod
    def from_api(cls, record: Mapping[str, Any]) -> "HTTPSLoggingEndpoint":
        """Parse a server record; missing fields become the empty/zero value."""
        if not isinstance(record, Mapping):
            raise DecodeError("", str(record), "logging record must be a JSON object")
        values: Dict[str, Any] = {}
        for name in cls.field_names():
            raw = record.get(name)
            if name in UINT_FIELDS:
                values[name] = _api_int(raw)
            else:
                values[name] = "" if raw is None else str(raw)
        return cls(**values)

    def validate(self) -> None:
        parsed = urlparse(self.url)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ConfigValidationError(f"url must use the https protocol, got {self.url!r}")
        if self.method not in METHODS:
            raise ConfigValidationError(f"method must be one of {METHODS}, got {self.method!r}")
        if self.json_format not in JSON_FORMATS:
            raise ConfigValidationError(f"json_format must be one of {JSON_FORMATS}, got {self.json_format!r}")
        if self.format_version not in FORMAT_VERSIONS:
            raise ConfigValidationError(
                f"format_version must be one of {FORMAT_VERSIONS}, got {self.format_version!r}"
            )
        if self.message_type not in MESSAGE_TYPES:
            raise ConfigValidationError(
                f"message_type must be one of {MESSAGE_TYPES}, got {self.message_type!r}"
            )
        if self.placement not in PLACEMENTS:
            raise ConfigValidationError(f"placement must be one of {PLACEMENTS}, got {self.placement!r}")

    # ---------- output ----------

    def as_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}

    def to_create_payload(self) -> Dict[str, Any]:
        """Fields verbatim; counters coerced to the API's unsigned integers."""
        payload = self.as_dict()
        for name in UINT_FIELDS:
            payload[name] = _to_uint(name, payload[name])
        return payload


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"{name} must be an integer, got {value!r}") from exc


def _to_int_str(name: str, value: Any) -> str:
    # YAML reads `json_format: 1` as an int
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value
    raise ConfigValidationError(f"{name} must be a string, got {value!r}")


def _to_uint(name: str, value: int) -> int:
    number = int(value)
    if number < 0:
        raise ConfigValidationError(f"{name} must not be negative, got {number}")
    return number


def _api_int(raw: Any) -> int:
    if raw in (None, ""):
        return 0
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise DecodeError("", str(raw), f"expected an integer, got {raw!r}") from exc


def flatten_https(endpoints: Iterable[HTTPSLoggingEndpoint]) -> List[Dict[str, Any]]:
    """
    Convert records to the flat mappings stored in state.

    Empty-string values are dropped, as they are the server's struct default.
    Unset and empty are therefore the same thing once stored.
    """
    out: List[Dict[str, Any]] = []
    for endpoint in endpoints:
        out.append({k: v for k, v in endpoint.as_dict().items() if v != ""})
    return out


class HTTPSLoggingAPI:
    """list/create/delete for /service/{id}/version/{v}/logging/https."""

    def __init__(self, client: FastlyClient) -> None:
        self.client = client

    @staticmethod
    def _collection(ref: ServiceVersionRef) -> str:
        return f"/service/{ref.service_id}/version/{ref.version}/logging/https"

    def list(self, ref: ServiceVersionRef) -> List[HTTPSLoggingEndpoint]:
        path = self._collection(ref)
        data = self.client.get_json(path)
        if not isinstance(data, list):
            raise DecodeError(path, str(data), "list endpoint must return a JSON list")
        return [HTTPSLoggingEndpoint.from_api(item) for item in data]

    def create(self, ref: ServiceVersionRef, endpoint: HTTPSLoggingEndpoint) -> HTTPSLoggingEndpoint:
        payload = self.client.post_json(self._collection(ref), endpoint.to_create_payload())
        if not isinstance(payload, dict) or not payload:
            # empty body: echo the request
            return endpoint
        return HTTPSLoggingEndpoint.from_api(payload)

    def delete(self, ref: ServiceVersionRef, name: str) -> None:
        if not name:
            raise MissingRequiredField("name")
        self.client.delete_json(f"{self._collection(ref)}/{quote(name, safe='')}")
