"""Command-line interface: launch jobs and inspect the job database.

Examples::

    jobledger launch --call mypkg.models:fit --reps 1 2 3 --local
    jobledger launch --call mypkg.models:fit --reps-json '{"alpha": [0.1, 0.2]}' \\
        --resources '{"walltime": "02:00:00", "memory": "8G"}'
    jobledger list --status queued
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

import pandas as pd

from jobledger.config import get_config
from jobledger.jobs.errors import JobLedgerError
from jobledger.jobs.launch import launch
from jobledger.jobs.store import JobDatabase
from jobledger.logging_utils import configure_logging


def _parse_value(text: str) -> Any:
    """Interpret a command-line value as JSON when possible (``3`` -> 3), else as a string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def _json_object(text: str | None, flag: str) -> dict[str, Any]:
    if not text:
        return {}
    value = json.loads(text)
    if not isinstance(value, dict):
        raise SystemExit(f"{flag} must be a JSON object")
    return value


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="jobledger", description="Launch jobs and track them in the job database.")
    p.add_argument("--db", type=str, default=None, help="Job database path (default: JOBLEDGER_DB_PATH).")
    p.add_argument("--log-level", type=str, default=None)
    sub = p.add_subparsers(dest="command", required=True)

    lp = sub.add_parser("launch", help="Launch a function once per rep.")
    lp.add_argument("--call", required=True, help="Function as 'package.module:function'.")
    reps = lp.add_mutually_exclusive_group()
    reps.add_argument("--reps", nargs="+", default=None, help="Values to vectorize over (space-separated).")
    reps.add_argument("--reps-json", type=str, default=None, help="Reps as JSON (list, object or list of objects).")
    lp.add_argument("--argname", default="rep")
    lp.add_argument("--moreargs", type=str, default=None, help="Fixed arguments as a JSON object.")
    lp.add_argument("--resources", type=str, default=None, help="Batch resources as a JSON object.")
    lp.add_argument("--local", action="store_true", help="Run in this process instead of submitting to Slurm.")
    lp.add_argument("--regdir", type=str, default=None)
    lp.add_argument("--comment", type=str, default="")
    lp.add_argument("--finish", type=str, default=None, help="Finish function as 'package.module:function'.")

    ls = sub.add_parser("list", help="Show jobs in the job database.")
    ls.add_argument("--status", choices=["queued", "finished", "error"], default=None)
    ls.add_argument("--registry", type=str, default=None)
    ls.add_argument("--call", type=str, default=None)
    ls.add_argument("--limit", type=int, default=None, help="Show only the most recent N jobs.")

    return p


def cmd_launch(args: argparse.Namespace, db: JobDatabase) -> int:
    if args.reps_json is not None:
        reps: Any = json.loads(args.reps_json)
    elif args.reps is not None:
        reps = [_parse_value(v) for v in args.reps]
    else:
        reps = 1

    jobids = launch(
        args.call,
        reps=reps,
        argname=args.argname,
        moreargs=_json_object(args.moreargs, "--moreargs"),
        resources=_json_object(args.resources, "--resources"),
        local=args.local,
        regdir=args.regdir,
        comment=args.comment,
        finish=args.finish,
        db=db,
    )
    print(" ".join(str(j) for j in jobids))
    return 0


def cmd_list(args: argparse.Namespace, db: JobDatabase) -> int:
    df = db.jobs(status=args.status, registry=args.registry, call=args.call)
    if args.limit is not None:
        df = df.tail(args.limit)
    if df.empty:
        print("No jobs.")
        return 0
    with pd.option_context("display.max_columns", None, "display.width", 200):
        print(df.drop(columns=["log"]).to_string(index=False))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = get_config()
    configure_logging(args.log_level or cfg.log_level)
    db = JobDatabase(args.db or cfg.db_path)

    try:
        if args.command == "launch":
            return cmd_launch(args, db)
        return cmd_list(args, db)
    except JobLedgerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
