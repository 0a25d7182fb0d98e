from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .fastly_client import DEFAULT_BASE_URL


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class FastlySection:
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""        # secret, never log in clear text
    verify_tls: bool = True
    timeout_sec: int = 30


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class StateSection:
    path: str = "./fastlysync.state.yml"


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    fastly: FastlySection
    logging: LoggingSection
    state: StateSection

    @property
    def run_id(self) -> str:
        """Stable run identifier, generated on first access if not configured."""
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./fastlysync.yml",
    os.path.expanduser("~/.config/fastlysync/config.yml"),
    "/etc/fastlysync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False},
    "fastly": {
        "base_url": DEFAULT_BASE_URL,
        "api_key": "",
        "verify_tls": True,
        "timeout_sec": 30,
    },
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
    "state": {"path": "./fastlysync.state.yml"},
}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Maps merge recursively, lists/scalars override; `ext` wins. Returns a new dict."""
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _drop_empty(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Remove None/"" leaves so unset CLI flags do not mask lower layers."""
    out: Dict[str, Any] = {}
    for k, v in cfg.items():
        if isinstance(v, dict):
            out[k] = _drop_empty(v)
        elif v is not None and v != "":
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "FSYNC_") -> Dict[str, Any]:
    """
    Convert FSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    FASTLY_API_KEY fills fastly.api_key when the prefixed form is absent.
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val

    fallback = os.environ.get("FASTLY_API_KEY")
    if fallback and not out.get("fastly", {}).get("api_key"):
        out.setdefault("fastly", {})["api_key"] = fallback
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Replace values like "${VAR}" with os.environ["VAR"] when present."""
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Type coercion for the known boolean and integer keys."""
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        if key_path[-1:] in [("verify_tls",), ("dry_run",)]:
            return to_bool(obj)
        if key_path[-1:] == ("timeout_sec",):
            try:
                return int(obj)
            except (TypeError, ValueError):
                raise ValueError(f"{'.'.join(key_path)} must be an integer, got {obj!r}") from None
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    missing = []
    if not cfg.get("fastly", {}).get("base_url"):
        missing.append("fastly.base_url")
    if not cfg.get("app", {}).get("dry_run", False) and not cfg.get("fastly", {}).get("api_key"):
        missing.append("fastly.api_key")
    if missing:
        raise ValueError("Missing required configuration: " + ", ".join(missing))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "FSYNC_",
    *,
    use_dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides (None/"" values ignored)
      2) Environment variables (prefix FSYNC_, nested via __), after .env load
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs ${ENV_VAR} interpolation, bool/int coercion and validation
    (fastly.api_key is only required outside dry runs).
    """
    if use_dotenv:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=False)

    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, _drop_empty(cli_overrides or {}))

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    _validate(merged)

    return AppConfig(
        app=AppSection(**merged.get("app", {})),
        fastly=FastlySection(**merged.get("fastly", {})),
        logging=LoggingSection(**merged.get("logging", {})),
        state=StateSection(**merged.get("state", {})),
    )
