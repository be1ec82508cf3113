from __future__ import annotations

import logging
import os
import sqlite3
import time
from pathlib import Path
from typing import Protocol

from .results import NBackAttemptResult

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_PATH_ENV = "NBACK_DB_PATH"
HIGH_SCORE_KEY = "highscore"


class HighScoreStore(Protocol):
    def read_high_score(self) -> int: ...
    def write_high_score(self, score: int) -> None: ...


class InMemoryHighScoreStore:
    """Volatile store for headless runs; remembers every write."""

    def __init__(self, highscore: int = 0) -> None:
        self._highscore = int(highscore)
        self.writes: list[int] = []

    def read_high_score(self) -> int:
        return self._highscore

    def write_high_score(self, score: int) -> None:
        self._highscore = int(score)
        self.writes.append(int(score))


def default_db_path() -> Path:
    explicit = os.environ.get(DB_PATH_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".nback_trainer.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        _migrate(conn)
    except sqlite3.Error:
        conn.close()
        raise
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
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                id INTEGER PRIMARY KEY,
                created_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS attempt (
                id INTEGER PRIMARY KEY,
                session_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
                app_version TEXT NOT NULL,
                game_type TEXT NOT NULL,
                sequence_length INTEGER NOT NULL,
                alphabet_size INTEGER NOT NULL,
                match_percentage REAL NOT NULL,
                n_back INTEGER NOT NULL,
                event_interval_s REAL NOT NULL,
                visual_sequence TEXT NOT NULL,
                audio_sequence TEXT NOT NULL,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (attempt_id, key)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS claim_event (
                id INTEGER PRIMARY KEY,
                attempt_id INTEGER NOT NULL REFERENCES attempt(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                stimulus_index INTEGER NOT NULL,
                channel TEXT NOT NULL,
                is_hit INTEGER NOT NULL,
                rt_ms INTEGER NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_claim_event_attempt_seq ON claim_event(attempt_id, seq);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


class SqliteHighScoreStore:
    """High score kept in the local sqlite database.

    I/O problems never reach the game: a failed read reports no high score,
    a failed write is logged and skipped.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read_high_score(self) -> int:
        try:
            conn = open_db(self._path)
        except (sqlite3.Error, OSError):
            logger.warning("could not open %s; assuming no high score", self._path, exc_info=True)
            return 0
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (HIGH_SCORE_KEY,)).fetchone()
        except sqlite3.Error:
            logger.warning("high score read failed", exc_info=True)
            return 0
        finally:
            conn.close()
        if row is None:
            return 0
        try:
            return max(0, int(row[0]))
        except ValueError:
            return 0

    def write_high_score(self, score: int) -> None:
        try:
            conn = open_db(self._path)
        except (sqlite3.Error, OSError):
            logger.warning("could not open %s; high score not saved", self._path, exc_info=True)
            return
        try:
            with conn:
                conn.execute(
                    """
                    INSERT INTO kv_store(key, value, updated_at_utc) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at_utc = excluded.updated_at_utc
                    """,
                    (HIGH_SCORE_KEY, str(int(score)), _utc_now_iso()),
                )
        except sqlite3.Error:
            logger.warning("high score write failed", exc_info=True)
        finally:
            conn.close()


def record_nback_attempt(*, db_path: Path, result: NBackAttemptResult, app_version: str) -> int:
    """
    Attempt history for one finished game:
      session -> attempt -> metric + claim_event
    """
    conn = open_db(db_path)
    try:
        return _insert_attempt(conn=conn, result=result, app_version=app_version)
    finally:
        conn.close()


def _insert_attempt(*, conn: sqlite3.Connection, result: NBackAttemptResult, app_version: str) -> int:
    now = _utc_now_iso()

    with conn:
        cur = conn.execute("INSERT INTO session(created_at_utc) VALUES (?)", (now,))
        session_id = int(cur.lastrowid)

        cur = conn.execute(
            """
            INSERT INTO attempt(
                session_id, app_version, game_type,
                sequence_length, alphabet_size, match_percentage, n_back, event_interval_s,
                visual_sequence, audio_sequence, completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                app_version,
                str(result.game_type.value),
                int(result.sequence_length),
                int(result.alphabet_size),
                float(result.match_percentage),
                int(result.n_back),
                float(result.event_interval_s),
                ",".join(str(v) for v in result.visual_sequence),
                ",".join(str(v) for v in result.audio_sequence),
                now,
            ),
        )
        attempt_id = int(cur.lastrowid)

        mean_rt = "" if result.mean_rt_ms is None else f"{result.mean_rt_ms:.3f}"
        metrics = {
            "score": str(result.score),
            "previous_highscore": str(result.previous_highscore),
            "targets": str(result.targets),
            "hits": str(result.hits),
            "misses": str(result.misses),
            "accuracy": f"{result.accuracy:.6f}",
            "mean_rt_ms": mean_rt,
        }
        for k, v in metrics.items():
            conn.execute("INSERT INTO metric(attempt_id, key, value) VALUES (?, ?, ?)", (attempt_id, k, v))

        for seq, e in enumerate(result.events):
            conn.execute(
                """
                INSERT INTO claim_event(attempt_id, seq, stimulus_index, channel, is_hit, rt_ms)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    attempt_id,
                    seq,
                    int(e.index),
                    str(e.channel.value),
                    1 if e.is_hit else 0,
                    int(round(e.response_time_s * 1000.0)),
                ),
            )

    return attempt_id
