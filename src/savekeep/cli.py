from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import SaveConfig
from .errors import SaveError
from .store import LocalRecordStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="savekeep", description="Inspect and manage local save files")
    parser.add_argument("--config", type=Path, help="YAML config file overlaying the packaged defaults")
    parser.add_argument("--dir", dest="save_dir", type=Path, help="Save directory (overrides config)")
    parser.add_argument("--encrypt", action="store_true", default=None, help="Files are encrypted")
    parser.add_argument("--passphrase", help="Encryption passphrase (default: per-install id)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="List stored keys")

    s = sub.add_parser("show", help="Print the decoded JSON stored under a key")
    s.add_argument("key")

    d = sub.add_parser("delete", help="Delete the save and backup for a key")
    d.add_argument("key")

    c = sub.add_parser("clear", help="Delete every save and backup in the directory")
    c.add_argument("--yes", action="store_true", help="Confirm deletion")

    return parser.parse_args(argv)


def build_store(args: argparse.Namespace) -> LocalRecordStore:
    config = SaveConfig.load(args.config)
    if args.save_dir is not None:
        config.save_dir = args.save_dir
    if args.encrypt is not None:
        config.encryption_enabled = args.encrypt
    if args.passphrase:
        config.passphrase = args.passphrase
    return config.build_store()


def run(args: argparse.Namespace) -> int:
    with build_store(args) as store:
        if args.cmd == "list":
            for key in store.list_keys():
                print(key)
            return 0

        if args.cmd == "show":
            payload = store.read_payload(args.key)
            if payload is None:
                print(f"No save found for key '{args.key}'", file=sys.stderr)
                return 1
            try:
                data = json.loads(payload.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                print(f"Save for '{args.key}' is not valid JSON: {e}", file=sys.stderr)
                return 1
            print(json.dumps(data, indent=2, ensure_ascii=False))
            return 0

        if args.cmd == "delete":
            if not store.delete_save(args.key):
                print(f"No save found for key '{args.key}'", file=sys.stderr)
            return 0

        if args.cmd == "clear":
            if not args.yes:
                print("Refusing to clear saves without --yes", file=sys.stderr)
                return 2
            count = store.clear_all_saves()
            print(f"Deleted {count} file(s)")
            return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )
    try:
        return run(args)
    except SaveError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
