#!/usr/bin/env python3
"""Prepare a local forum_stats database and bring the recount worker up.

Loads `.env` the same way `manage.py` does, optionally wipes the SQLite
database, applies migrations, recounts every forum inline and finally starts
a Celery worker listening on the recount queue.

Examples
--------
python scripts/dev_bootstrap_and_run.py
python scripts/dev_bootstrap_and_run.py --keep-db --forum 3
python scripts/dev_bootstrap_and_run.py --no-worker --audit
"""
from __future__ import annotations

import argparse
import os
import subprocess
import sys
from pathlib import Path
from typing import Iterable, List

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
MANAGE_DIR = ROOT / "forum_stats"
PYTHON = sys.executable

DEFAULT_RESET = os.getenv("FORUM_RESET", "0").lower() not in {"0", "false", "no"}


def db_path() -> Path:
    return Path(os.getenv("FORUM_DB_PATH", str(MANAGE_DIR / "db.sqlite3")))


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate, recount forum aggregates and start the recount worker.")
    parser.add_argument("--reset", action="store_true", help="Delete the SQLite database first (env FORUM_RESET=1).")
    parser.add_argument("--keep-db", action="store_true", help="Never delete the database, even if FORUM_RESET=1.")
    parser.add_argument("--forum", type=int, help="Only recount this forum and the forums below it.")
    parser.add_argument("--audit", action="store_true", help="Report uncomputed forums instead of recounting.")
    parser.add_argument("--no-worker", action="store_true", help="Stop after the recount; do not start Celery.")
    parser.add_argument(
        "--worker-arg",
        dest="worker_args",
        action="append",
        default=[],
        help="Additional argument for `celery worker` (can be repeated).",
    )
    return parser.parse_args()


def build_commands(args: argparse.Namespace) -> List[List[str]]:
    commands: List[List[str]] = [[PYTHON, "manage.py", "migrate"]]

    recount_cmd = [PYTHON, "manage.py", "recount_forums"]
    if args.forum is not None:
        recount_cmd.extend(["--forum", str(args.forum)])
    if args.audit:
        recount_cmd.append("--audit")
    commands.append(recount_cmd)

    if not args.no_worker:
        queue = os.getenv("FORUM_RECOUNT_QUEUE", "recount")
        worker = [PYTHON, "-m", "celery", "-A", "forum_stats", "worker", "-Q", queue, "-l", "info"]
        worker.extend(args.worker_args)
        commands.append(worker)
    return commands


def run_command(cmd: Iterable[str]) -> None:
    command_list = list(cmd)
    print(f"\n=== Running: {' '.join(command_list)}\n", flush=True)
    subprocess.run(command_list, cwd=MANAGE_DIR, check=True)


def reset_datastore() -> None:
    path = db_path()
    if not path.exists():
        print(f">>> {path} does not exist yet; nothing to reset.", flush=True)
        return
    print(f"\n=== Removing {path} for a clean reset\n", flush=True)
    for candidate in (path, path.with_name(path.name + "-journal")):
        try:
            candidate.unlink()
        except FileNotFoundError:
            pass


def main() -> None:
    env_path = ROOT / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    if not MANAGE_DIR.exists():
        raise SystemExit(f"Expected manage.py directory at {MANAGE_DIR}")

    args = parse_args()
    if (args.reset or DEFAULT_RESET) and not args.keep_db:
        reset_datastore()

    for cmd in build_commands(args):
        try:
            run_command(cmd)
        except subprocess.CalledProcessError as exc:
            print(f"Command failed (exit {exc.returncode}): {' '.join(cmd)}", file=sys.stderr, flush=True)
            raise SystemExit(exc.returncode) from exc


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nAborted by user.\n", flush=True)
