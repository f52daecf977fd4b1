from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

import yaml

from stet import __version__
from stet.config import load_config, load_dotenv
from stet.errors import StoreError
from stet.store import Store


def setup_logging(log_path: str, level: str = "ERROR") -> logging.Logger:
    """File logger for diagnostics; the terminal belongs to the UI."""
    logger = logging.getLogger('stet')
    # Reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    # keep DEBUG on the logger; the handler filters by level
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    os.makedirs(os.path.dirname(os.path.abspath(log_path)), mode=0o700, exist_ok=True)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(level).upper(), None)
    fh.setLevel(lvl if isinstance(lvl, int) else logging.ERROR)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


def main() -> None:
    ap = argparse.ArgumentParser(prog="stet", description="Personal dashboard: habits, journal, Oura and Planta")
    ap.add_argument("--config", help="Path to YAML config")
    ap.add_argument("--data-dir", help="Directory for the database, tokens and log (default ~/.local/share/stet)")
    ap.add_argument("--db", help="Path to sqlite DB (overrides the data directory)")
    ap.add_argument("--env-file", default=".env", help="dotenv file with OURA_CLIENT_ID, OURA_CLIENT_SECRET, PLANTA_APP_CODE")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = ap.parse_args()

    load_dotenv(args.env_file)
    try:
        cfg = load_config(args.config, data_dir=args.data_dir)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"Cannot load config: {exc}", file=sys.stderr)
        sys.exit(1)
    if args.db:
        cfg.db_path = args.db

    logger = setup_logging(cfg.log_path, args.log_level)
    logger.info("starting stet %s (db=%s)", __version__, cfg.db_path)

    try:
        store = Store.open(cfg.db_path)
    except StoreError as exc:
        logger.error("cannot open database: %s", exc)
        print(f"Cannot open database: {exc}", file=sys.stderr)
        sys.exit(1)

    # imported late so --help and --version work without a terminal
    from stet.app import run_ui
    try:
        run_ui(cfg, store)
    finally:
        store.close()
        logger.info("stet exited")


if __name__ == "__main__":
    main()
