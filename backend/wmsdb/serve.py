"""
Run the WMS API under uvicorn.

Usage (from backend/):
  python -m wmsdb.serve --migrate
  wmsdb-serve --port 8080 --reload

Every flag falls back to an environment variable so container deployments
can stay flag-free: WMS_HOST, WMS_PORT, WMS_RELOAD, WMS_WORKERS,
WMS_LOG_LEVEL, WMS_FORWARDED_ALLOW_IPS, WMS_MIGRATE_ON_START,
WMS_SSL_CERTFILE and WMS_SSL_KEYFILE.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn

logger = logging.getLogger(__name__)

APP_PATH = "wmsdb.main:app"
MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"

_TRUTHY = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the WMS stock ledger API.")
    parser.add_argument("--host", default=os.getenv("WMS_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("WMS_PORT", "8000")))
    parser.add_argument("--workers", type=int, default=int(os.getenv("WMS_WORKERS", "1")))
    parser.add_argument("--log-level", default=os.getenv("WMS_LOG_LEVEL", "info"))
    parser.add_argument(
        "--forwarded-allow-ips",
        default=os.getenv("WMS_FORWARDED_ALLOW_IPS", "127.0.0.1"),
        help="Proxies whose X-Forwarded-* headers are trusted.",
    )
    parser.add_argument("--reload", action="store_true", default=_env_flag("WMS_RELOAD"))
    parser.add_argument(
        "--migrate",
        action="store_true",
        default=_env_flag("WMS_MIGRATE_ON_START"),
        help="Upgrade the write database to the latest revision before serving.",
    )
    parser.add_argument("--ssl-certfile", default=os.getenv("WMS_SSL_CERTFILE"))
    parser.add_argument("--ssl-keyfile", default=os.getenv("WMS_SSL_KEYFILE"))
    return parser


def build_run_options(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Translate parsed arguments into uvicorn.run keyword arguments.

    Raises SystemExit for combinations uvicorn would only reject at bind
    time: a half-configured TLS pair, or reload with several workers.
    """
    if bool(args.ssl_certfile) != bool(args.ssl_keyfile):
        raise SystemExit("TLS needs both --ssl-certfile and --ssl-keyfile.")
    if args.reload and args.workers > 1:
        raise SystemExit("--reload cannot be combined with --workers > 1.")
    if args.workers < 1:
        raise SystemExit("--workers must be at least 1.")

    options: Dict[str, Any] = {
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level.lower(),
        "proxy_headers": True,
        "forwarded_allow_ips": args.forwarded_allow_ips,
    }
    if args.reload:
        options["reload"] = True
    else:
        options["workers"] = args.workers
    if args.ssl_certfile:
        options["ssl_certfile"] = args.ssl_certfile
        options["ssl_keyfile"] = args.ssl_keyfile
    return options


def run_migrations() -> None:
    # env.py binds to the write engine, so no URL is set here.
    from alembic import command
    from alembic.config import Config

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    logger.info("Upgrading database schema", extra={"script_location": str(MIGRATIONS_DIR)})
    command.upgrade(config, "head")


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    options = build_run_options(args)
    if args.migrate:
        run_migrations()
    uvicorn.run(APP_PATH, **options)


if __name__ == "__main__":
    main()
