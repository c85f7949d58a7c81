from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Iterable
from pathlib import Path

from .event_log import EventRecord
from .results import ExperimentResult

SCHEMA_VERSION = 1


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS run (
                id INTEGER PRIMARY KEY,
                app_version TEXT NOT NULL,
                rng_seed INTEGER NOT NULL,
                trials_planned INTEGER NOT NULL,
                trials_completed INTEGER NOT NULL,
                finished INTEGER NOT NULL,
                score REAL NOT NULL,
                live_score REAL NOT NULL,
                trial_score REAL NOT NULL,
                recorded_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trial (
                run_id INTEGER NOT NULL REFERENCES run(id) ON DELETE CASCADE,
                trial_number INTEGER NOT NULL,
                trial_type TEXT NOT NULL,
                target_rotation INTEGER NOT NULL,
                trialtime_s REAL NOT NULL,
                airtime_s REAL NOT NULL,
                hits INTEGER NOT NULL,
                misses INTEGER NOT NULL,
                targets INTEGER NOT NULL,
                taps INTEGER NOT NULL,
                tapdistance REAL NOT NULL,
                trial_points REAL NOT NULL,
                live_points REAL NOT NULL,
                feedback_index INTEGER NOT NULL,
                PRIMARY KEY (run_id, trial_number)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS event (
                run_id INTEGER NOT NULL REFERENCES run(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                timestamp_ms INTEGER NOT NULL,
                value TEXT,
                PRIMARY KEY (run_id, seq)
            );
            """
        )
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def _encode_value(record: EventRecord) -> str | None:
    if record.value is None:
        return None
    if isinstance(record.value, tuple):
        return json.dumps(list(record.value))
    return json.dumps(record.value)


def record_experiment(
    *,
    db_path: Path,
    result: ExperimentResult,
    events: Iterable[EventRecord],
    app_version: str,
) -> int:
    """
    Store one run:
      run -> trial + event
    """
    conn = open_db(db_path)
    try:
        return _insert_run(conn=conn, result=result, events=events, app_version=app_version)
    finally:
        conn.close()


def _insert_run(
    *,
    conn: sqlite3.Connection,
    result: ExperimentResult,
    events: Iterable[EventRecord],
    app_version: str,
) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO run(
                app_version, rng_seed, trials_planned, trials_completed, finished,
                score, live_score, trial_score, recorded_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                app_version,
                int(result.seed),
                int(result.trials_planned),
                int(result.trials_completed),
                1 if result.finished else 0,
                float(result.score),
                float(result.live_score),
                float(result.trial_score),
                _utc_now_iso(),
            ),
        )
        run_id = int(cur.lastrowid)

        for o in result.outcomes:
            s = o.stats
            conn.execute(
                """
                INSERT INTO trial(
                    run_id, trial_number, trial_type, target_rotation,
                    trialtime_s, airtime_s, hits, misses, targets, taps, tapdistance,
                    trial_points, live_points, feedback_index
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run_id,
                    int(o.trial_number),
                    str(o.config_name),
                    int(o.target_rotation),
                    float(s.trialtime),
                    float(s.airtime),
                    int(s.hits),
                    int(s.misses),
                    int(s.targets),
                    int(s.taps),
                    float(s.tapdistance),
                    float(o.breakdown.total),
                    float(o.live_score),
                    int(o.feedback_index),
                ),
            )

        for e in events:
            conn.execute(
                "INSERT INTO event(run_id, seq, type, name, timestamp_ms, value) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    run_id,
                    int(e.seq),
                    str(e.type.value),
                    str(e.name),
                    int(round(e.timestamp * 1000.0)),
                    _encode_value(e),
                ),
            )
    return run_id
