"""
Command-line interface for fastlysync.

Usage (examples):
  - Purge a URL (soft):
      fastlysync purge www.example.com/index.html --soft

  - Purge a surrogate key / a whole service:
      fastlysync purge-key SU1Z0isxPaozGVKXdv0eY product-123
      fastlysync purge-all SU1Z0isxPaozGVKXdv0eY

  - Plan HTTPS logging changes without calling the API:
      fastlysync apply --desired ./logging.yml --dry-run

  - Apply them to the draft version named in the file, then store the result:
      fastlysync apply --desired ./logging.yml --api-key "$FASTLY_API_KEY"
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable

from .core.config import AppConfig, load_config
from .core.fastly_client import FastlyClient, FastlyError
from .core.https_logging import HTTPSLoggingAPI, ServiceVersionRef
from .core.logging_setup import build_logger
from .core.purge import Purge, purge, purge_all, purge_key
from .core.reconciler import HTTPSLoggingReconciler, plan
from .core.state import StateStore, load_desired

EXIT_OK = 0
EXIT_ERROR = 2


def _summarize_counts(counts: Dict[str, int]) -> str:
    keys = ["DELETED", "ALREADY_ABSENT", "CREATED", "UNCHANGED"]
    return " | ".join(f"{k}={counts.get(k, 0)}" for k in keys)


def _common_options() -> argparse.ArgumentParser:
    c = argparse.ArgumentParser(add_help=False)
    c.add_argument("--base-url", default="", help="Fastly API base URL")
    c.add_argument("--api-key", default="", help="Fastly API key (or FASTLY_API_KEY)")
    c.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    c.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    c.add_argument("--state", default="", help="State file path")
    c.add_argument("--logs-dir", default="", help="Logs base directory")
    c.add_argument("--console-level", default="", help="Console log level (INFO..CRITICAL)")
    c.add_argument("--file-level", default="", help="File log level (DEBUG..CRITICAL)")
    return c


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fastlysync", description="Fastly purge and HTTPS logging sync")
    sub = p.add_subparsers(dest="cmd", required=True)
    common = _common_options()

    a = sub.add_parser("purge", parents=[common], help="Purge a single URL")
    a.add_argument("url", help="URL to purge (host and path)")
    a.add_argument("--soft", action="store_true", help="Mark content stale instead of evicting it")

    a = sub.add_parser("purge-key", parents=[common], help="Purge a surrogate key")
    a.add_argument("service_id")
    a.add_argument("key")
    a.add_argument("--soft", action="store_true", help="Mark content stale instead of evicting it")

    a = sub.add_parser("purge-all", parents=[common], help="Purge a whole service")
    a.add_argument("service_id")
    a.add_argument("--soft", action="store_true", help="Mark content stale instead of evicting it")

    a = sub.add_parser("apply", parents=[common], help="Reconcile HTTPS logging endpoints")
    a.add_argument("--desired", required=True, help="Desired state YAML file")
    a.add_argument("--dry-run", action="store_true", help="Plan only, no network calls")

    a = sub.add_parser("refresh", parents=[common], help="Read HTTPS logging endpoints back into state")
    a.add_argument("service_id")
    a.add_argument("version", type=int)

    return p


def _config_from_args(args: argparse.Namespace) -> AppConfig:
    verify = None if args.verify_tls is None else (args.verify_tls == "true")
    overrides: Dict[str, Any] = {
        "app": {"dry_run": True if getattr(args, "dry_run", False) else None},
        "fastly": {
            "base_url": args.base_url,
            "api_key": args.api_key,
            "verify_tls": verify,
            "timeout_sec": args.timeout_sec,
        },
        "state": {"path": args.state},
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    }
    return load_config(overrides)


def _client(cfg: AppConfig, logger: logging.LoggerAdapter) -> FastlyClient:
    return FastlyClient(
        cfg.fastly.base_url,
        cfg.fastly.api_key,
        verify_tls=bool(cfg.fastly.verify_tls),
        timeout_sec=int(cfg.fastly.timeout_sec),
        logger=logger,
    )


def _print_purge(res: Purge) -> None:
    print(f"{res.status} {res.id}")


def _purge_cmd(args: argparse.Namespace, cfg: AppConfig, logger: logging.LoggerAdapter) -> int:
    client = _client(cfg, logger)
    if args.cmd == "purge":
        res = purge(client, args.url, soft=args.soft)
    elif args.cmd == "purge-key":
        res = purge_key(client, args.service_id, args.key, soft=args.soft)
    else:
        res = purge_all(client, args.service_id, soft=args.soft)
    logger.info("Purge %s (soft=%s): status=%s id=%s", args.cmd, args.soft, res.status, res.id)
    _print_purge(res)
    return EXIT_OK


def _apply_cmd(args: argparse.Namespace, cfg: AppConfig, logger: logging.LoggerAdapter) -> int:
    desired = load_desired(args.desired)
    ref = desired.ref
    store = StateStore(cfg.state.path)
    old = store.load(ref.service_id)
    stored_version = store.version(ref.service_id)
    if stored_version is not None and stored_version != ref.version:
        logger.warning(
            "Stored state for %s is from version %s, applying to version %s",
            ref.service_id, stored_version, ref.version,
        )
    logger.info(
        "Loaded %d desired and %d stored HTTPS logging entries for %s v%s",
        len(desired.endpoints), len(old), ref.service_id, ref.version,
    )

    if cfg.app.dry_run:
        p = plan(old, desired.endpoints)
        for entry in p.to_remove:
            print(f"- {entry.name}")
        for entry in p.to_add:
            print(f"+ {entry.name}")
        summary = f"TO_DELETE={len(p.to_remove)} | TO_CREATE={len(p.to_add)} | UNCHANGED={len(p.unchanged)}"
        logger.info("Dry-run summary: %s", summary)
        print(summary)
        return EXIT_OK

    reconciler = HTTPSLoggingReconciler(HTTPSLoggingAPI(_client(cfg, logger)), logger=logger)
    result = reconciler.apply(ref, old, desired.endpoints)
    flattened = reconciler.refresh(ref.service_id, ref.version)
    store.save(ref.service_id, ref.version, flattened)

    summary = _summarize_counts(result.counts)
    logger.info("Apply summary: %s", summary)
    print(summary)
    return EXIT_OK


def _refresh_cmd(args: argparse.Namespace, cfg: AppConfig, logger: logging.LoggerAdapter) -> int:
    ref = ServiceVersionRef(args.service_id, args.version)
    reconciler = HTTPSLoggingReconciler(HTTPSLoggingAPI(_client(cfg, logger)), logger=logger)
    flattened = reconciler.refresh(ref.service_id, ref.version)
    StateStore(cfg.state.path).save(ref.service_id, ref.version, flattened)
    logger.info("Stored %d HTTPS logging entries", len(flattened))
    print(f"httpslogging={len(flattened)}")
    return EXIT_OK


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        cfg = _config_from_args(args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"service": getattr(args, "service_id", None), "version": getattr(args, "version", None)},
    )

    try:
        if args.cmd in ("purge", "purge-key", "purge-all"):
            return _purge_cmd(args, cfg, logger)
        if args.cmd == "apply":
            return _apply_cmd(args, cfg, logger)
        if args.cmd == "refresh":
            return _refresh_cmd(args, cfg, logger)
    except (FastlyError, ValueError, FileNotFoundError) as e:
        logger.error("%s failed: %s", args.cmd, e)
        return EXIT_ERROR

    parser.error("Unknown command")  # pragma: no cover
    return EXIT_ERROR  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
