from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

import duckdb

from vuload.config import (
    Check,
    HttpMethod,
    RequestSpec,
    RunConfig,
    ScenarioConfig,
    Stage,
    parse_duration,
)
from vuload.errors import ConfigError, EncodingError, VuloadError
from vuload.loadgen.runner import run_load
from vuload.metrics import parse_threshold
from vuload.storage import DEFAULT_DB_PATH, Storage, default_storage

logger = logging.getLogger("vuload")

EXIT_OK = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_STARTUP_ERROR = 2

DEFAULT_DURATION = "30s"


def _pairs(values: list[str], sep: str, flag: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        key, found, rest = value.partition(sep)
        if not found or not key.strip():
            msg = f"{flag} expects KEY{sep}VALUE, got {value!r}"
            raise ConfigError(msg)
        pairs[key.strip()] = rest.strip()
    return pairs


def _parse_stage(text: str) -> Stage:
    duration, found, target = text.rpartition(":")
    if not found:
        msg = f"--stage expects DURATION:TARGET, got {text!r}"
        raise ConfigError(msg)
    try:
        vus = int(target)
    except ValueError:
        msg = f"Stage target must be an integer, got {target!r}"
        raise ConfigError(msg) from None
    return Stage(duration_sec=parse_duration(duration), target=vus)


def _load_json(path: Path) -> Any:
    try:
        return json.loads(_read_file(path).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        msg = f"{path} is not valid JSON: {exc}"
        raise EncodingError(msg) from exc


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read body file {path}: {exc}"
        raise ConfigError(msg) from exc


def _build_request(args: argparse.Namespace) -> RequestSpec:
    body = _read_file(args.body) if args.body else None
    payload = None
    if args.json:
        payload = _load_json(args.json)
    return RequestSpec(
        url=args.url,
        method=HttpMethod(args.method.upper()),
        headers=_pairs(args.header, ":", "--header"),
        params=_pairs(args.param, "=", "--param"),
        body=body,
        json=payload,
    )


def _build_scenario(args: argparse.Namespace) -> ScenarioConfig:
    stages = tuple(_parse_stage(s) for s in args.stage)
    duration = None
    if args.duration is not None:
        duration = parse_duration(args.duration)
    elif args.iterations is None and not stages:
        duration = parse_duration(DEFAULT_DURATION)
    return ScenarioConfig(
        vus=args.vus,
        duration_sec=duration,
        iterations=args.iterations,
        stages=stages,
        pause_sec=parse_duration(args.sleep),
        graceful_stop_sec=parse_duration(args.graceful_stop),
        timeout_sec=parse_duration(args.timeout),
    )


def build_run_config(args: argparse.Namespace) -> RunConfig:
    statuses = tuple(args.expect_status or [200])
    check = Check(
        name=args.check_name or f"is status {'/'.join(str(s) for s in statuses)}",
        expected_statuses=statuses,
    )
    return RunConfig(
        request=_build_request(args),
        scenario=_build_scenario(args),
        check=check,
        thresholds=tuple(parse_threshold(t) for t in args.threshold),
        run_id=args.run_id,
        notes=args.notes,
    )


def _open_storage(path: Path | None) -> Storage:
    try:
        return Storage(path) if path is not None else default_storage()
    except (OSError, duckdb.Error) as exc:
        msg = f"Cannot open run database {path or DEFAULT_DB_PATH}: {exc}"
        raise ConfigError(msg) from exc


def _cmd_run(args: argparse.Namespace) -> int:
    try:
        config = build_run_config(args)
        storage = _open_storage(args.out) if args.out else None
        if storage is not None and config.run_id and storage.run_exists(config.run_id):
            msg = f"Run {config.run_id} already exists in {args.out}"
            raise ConfigError(msg)
    except (VuloadError, ValueError, duckdb.Error) as exc:
        logger.error("Cannot start run: %s", exc)
        return EXIT_STARTUP_ERROR
    try:
        result = asyncio.run(run_load(config, handle_signals=True))
    except (VuloadError, ValueError) as exc:
        logger.error("Run aborted: %s", exc)
        return EXIT_STARTUP_ERROR
    output = {"run_id": result.run_id, **result.report.to_dict()}
    print(json.dumps(output, indent=2))
    if storage is not None:
        try:
            storage.save_run(config, result.run_id, result.report, result.outcomes)
        except (OSError, duckdb.Error) as exc:
            logger.error("Could not store run %s in %s: %s", result.run_id, args.out, exc)
    for threshold in result.report.threshold_results:
        if not threshold.passed:
            logger.warning("Threshold %s failed (observed %g)", threshold.rule, threshold.observed)
    return EXIT_OK if result.report.passed else EXIT_THRESHOLDS_FAILED


def _cmd_runs(args: argparse.Namespace) -> int:
    try:
        runs = _open_storage(args.db).list_runs()
    except (VuloadError, duckdb.Error) as exc:
        logger.error("Cannot list runs: %s", exc)
        return EXIT_STARTUP_ERROR
    if runs.empty:
        print("No runs recorded.")
    else:
        print(runs.to_string(index=False))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default="WARNING", help="Logging level for stderr output")

    parser = argparse.ArgumentParser(prog="vuload", description="Virtual-user HTTP load generator")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", parents=[common], help="Run a load scenario against one endpoint")
    run.add_argument("--url", required=True, help="Target URL")
    run.add_argument("--method", default="GET", choices=[m.value for m in HttpMethod], type=str.upper)
    run.add_argument("--vus", type=int, default=1, help="Concurrent virtual users")
    mode = run.add_mutually_exclusive_group()
    mode.add_argument("--duration", help="Run length, e.g. 30s or 1m30s")
    mode.add_argument("--iterations", type=int, help="Iterations per virtual user")
    run.add_argument(
        "--stage",
        action="append",
        default=[],
        metavar="DURATION:TARGET",
        help="Staged concurrency, repeatable; replaces --duration",
    )
    run.add_argument("--header", action="append", default=[], metavar="KEY:VALUE")
    run.add_argument("--param", action="append", default=[], metavar="KEY=VALUE")
    body = run.add_mutually_exclusive_group()
    body.add_argument("--body", type=Path, help="File sent as the raw request body")
    body.add_argument("--json", type=Path, help="JSON file sent as the request payload")
    run.add_argument("--sleep", default="0", help="Pause between iterations of a VU")
    run.add_argument("--timeout", default="60s", help="Per-request timeout")
    run.add_argument("--graceful-stop", default="30s", help="Time allowed for in-flight requests at stop")
    run.add_argument("--expect-status", type=int, action="append", default=None, metavar="CODE")
    run.add_argument("--check-name", default=None)
    run.add_argument("--threshold", action="append", default=[], metavar="EXPR", help="e.g. failure_rate<0.01")
    run.add_argument("--out", type=Path, default=None, help="DuckDB file to store the run in")
    run.add_argument("--run-id", default=None)
    run.add_argument("--notes", default="")
    run.set_defaults(func=_cmd_run)

    runs = sub.add_parser("runs", parents=[common], help="List stored runs")
    runs.add_argument("--db", type=Path, default=None, help="DuckDB file, defaults to .vuload/vuload.duckdb")
    runs.set_defaults(func=_cmd_runs)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
