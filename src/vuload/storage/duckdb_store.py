from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import duckdb
import pandas as pd

from vuload.config import RunConfig
from vuload.metrics import RequestOutcome, RunReport


@dataclass(slots=True)
class Storage:
    db_path: Path

    def __post_init__(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> duckdb.DuckDBPyConnection:
        return duckdb.connect(str(self.db_path))

    def _init_schema(self) -> None:
        with self._connect() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS run_meta (
                    run_id TEXT PRIMARY KEY,
                    created_at TIMESTAMP,
                    config_json TEXT,
                    report_json TEXT,
                    passed BOOLEAN,
                    notes TEXT
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS request_outcomes (
                    run_id TEXT,
                    vu_id INTEGER,
                    iteration INTEGER,
                    started_at DOUBLE,
                    latency_ms DOUBLE,
                    status_code INTEGER,
                    error_type TEXT,
                    error TEXT,
                    check_passed BOOLEAN
                );
                """
            )

    def run_exists(self, run_id: str) -> bool:
        with self._connect() as con:
            result = con.execute(
                "SELECT COUNT(*) FROM run_meta WHERE run_id = ?",
                [run_id],
            ).fetchone()
            return bool(result and result[0] > 0)

    def save_run(
        self,
        config: RunConfig,
        run_id: str,
        report: RunReport,
        outcomes: Iterable[RequestOutcome],
    ) -> None:
        config_json = json.dumps(config.to_metadata())
        report_json = json.dumps(report.to_dict())
        with self._connect() as con:
            con.execute(
                "INSERT INTO run_meta VALUES (?, ?, ?, ?, ?, ?)",
                [run_id, config.created_at, config_json, report_json, report.passed, config.notes],
            )
            outcomes_df = pd.DataFrame(
                [
                    {
                        "run_id": run_id,
                        "vu_id": o.vu_id,
                        "iteration": o.iteration,
                        "started_at": o.started_at,
                        "latency_ms": o.latency_ms,
                        "status_code": o.status_code,
                        "error_type": o.error_type.value if o.error_type else None,
                        "error": o.error,
                        "check_passed": o.check_passed,
                    }
                    for o in outcomes
                ]
            )
            if not outcomes_df.empty:
                outcomes_df["status_code"] = outcomes_df["status_code"].astype("Int64")
                con.execute("INSERT INTO request_outcomes SELECT * FROM outcomes_df")

    def list_runs(self) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT run_id, created_at, passed, notes FROM run_meta ORDER BY created_at DESC"
            ).fetchdf()

    def load_run_meta(self, run_id: str) -> dict[str, Any] | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT config_json FROM run_meta WHERE run_id = ?",
                [run_id],
            ).fetchone()
            if not row:
                return None
            return json.loads(row[0])

    def load_report(self, run_id: str) -> dict[str, Any] | None:
        with self._connect() as con:
            row = con.execute(
                "SELECT report_json FROM run_meta WHERE run_id = ?",
                [run_id],
            ).fetchone()
            if not row:
                return None
            return json.loads(row[0])

    def load_outcomes(self, run_id: str) -> pd.DataFrame:
        with self._connect() as con:
            return con.execute(
                "SELECT * FROM request_outcomes WHERE run_id = ? ORDER BY started_at",
                [run_id],
            ).fetchdf()
