"""Module entrypoint to run `python -m tierdb`."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .config import CONFIG_FILE, ConfigError
from .manager import DatabaseManager
from .mock import UnsupportedQueryError


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tierdb", description="Resolve a database backend and optionally run a query.")
    parser.add_argument("--config", default=str(CONFIG_FILE), help="Path to the TOML config file")
    parser.add_argument("--query", help="SQL to run through fetch_all once connected")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log connection attempts")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    manager = DatabaseManager(args.config)
    try:
        handle = manager.get_connection()
        print(f"backend: {handle.backend.value}")
        if args.query:
            for row in manager.fetch_all(args.query):
                print(json.dumps(row, default=str))
    except (ConfigError, UnsupportedQueryError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        manager.reset()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
