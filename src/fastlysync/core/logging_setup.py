"""
Central logging for fastlysync.

- Console handler on stderr: INFO..CRITICAL by default
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: Fastly-Key, api keys, tokens, passwords, PEM private keys
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """Redact API keys, tokens, passwords and private keys from log records."""

    _patterns = [
        (re.compile(r"(Fastly-Key['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE), r"\1***REDACTED***"),
        (re.compile(r"(api[_-]?key['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE), r"\1***REDACTED***"),
        (re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE), r"\1***REDACTED***"),
        (re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE), r"\1***REDACTED***"),
        (
            re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----", re.DOTALL),
            "***REDACTED PRIVATE KEY***",
        ),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat, repl in MaskSecretsFilter._patterns:
            masked = pat.sub(repl, masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            else:
                record.args = tuple(
                    self._mask(a) if isinstance(a, str) else a for a in record.args
                )
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill context fields for records logged outside the adapter."""

    fields = ("run_id", "action", "service", "version")

    def filter(self, record: logging.LogRecord) -> bool:
        for f in self.fields:
            if not hasattr(record, f):
                setattr(record, f, "-")
        return True


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _ensure_single_console_handler(
    base_logger: logging.Logger,
    *,
    console_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    Exactly ONE StreamHandler bound to the current sys.stderr
    (pytest may swap stdio between tests).
    """
    for h in list(base_logger.handlers):
        if type(h) is logging.StreamHandler:
            base_logger.removeHandler(h)
            h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(console_level, logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(mask)
    sh.addFilter(ContextDefaultsFilter())
    base_logger.addHandler(sh)


def _ensure_app_file_handler(
    base_logger: logging.Logger,
    *,
    base_dir: str,
    file_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    A single TimedRotatingFileHandler on <base_dir>/app.log. A handler left
    pointing elsewhere by an earlier call is replaced.
    """
    _ensure_dir(base_dir)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base_logger.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(h.baseFilename) != desired:
                base_logger.removeHandler(h)
                h.close()

    if not any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler)
        and os.path.abspath(h.baseFilename) == desired
        for h in base_logger.handlers
    ):
        rh = logging.handlers.TimedRotatingFileHandler(
            desired,
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
            delay=False,
        )
        rh.setLevel(_level(file_level, logging.DEBUG))
        rh.setFormatter(formatter)
        rh.addFilter(mask)
        rh.addFilter(ContextDefaultsFilter())
        base_logger.addHandler(rh)


def build_logger(
    *,
    name: str = "fsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    A base logger `<name>` holds the console and rotating file handlers; a
    child `<name>.<action>.<run_id>` adds the per-run file and propagates to
    the base so every record reaches all sinks. The adapter stamps records
    with run, action, service and version.
    """
    mask = MaskSecretsFilter()
    fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s service=%(service)s version=%(version)s | "
        "%(message)s"
    )
    formatter = _utc_formatter(fmt)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    _ensure_single_console_handler(base, console_level=console_level, formatter=formatter, mask=mask)
    _ensure_app_file_handler(base, base_dir=base_dir, file_level=file_level, formatter=formatter, mask=mask)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_fsync_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        _ensure_dir(dated_dir)

        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        Path(action_file).touch(exist_ok=True)
        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        fh.setLevel(_level(file_level, logging.DEBUG))
        fh.setFormatter(formatter)
        fh.addFilter(mask)
        fh.addFilter(ContextDefaultsFilter())

        child.addHandler(fh)
        child._fsync_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {
            "run_id": run_id,
            "action": action,
            "service": (extra or {}).get("service"),
            "version": (extra or {}).get("version"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
