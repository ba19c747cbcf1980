from __future__ import annotations

import hashlib
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from loguru import logger

from judging.models import Criterion, Judge, ScoreRecord, Team
from judging.service import EventService


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def new_token() -> str:
    return secrets.token_urlsafe(16)


SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    admin_pw_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    project_title TEXT NOT NULL DEFAULT '',
    position INTEGER NOT NULL DEFAULT 0,
    UNIQUE(event_id, name)
);

CREATE TABLE IF NOT EXISTS criteria (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    max_score REAL NOT NULL,
    weight REAL NOT NULL DEFAULT 1,
    position INTEGER NOT NULL DEFAULT 0,
    UNIQUE(event_id, name)
);

CREATE TABLE IF NOT EXISTS judges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    judge_name TEXT NOT NULL,
    judge_token TEXT NOT NULL UNIQUE,
    last_submit_at TEXT,
    UNIQUE(event_id, judge_name)
);

CREATE TABLE IF NOT EXISTS assignments (
    judge_id INTEGER NOT NULL,
    team_id INTEGER NOT NULL,
    PRIMARY KEY (judge_id, team_id)
);

-- one row per (judge, team, criterion, round); resubmits overwrite in place
CREATE TABLE IF NOT EXISTS scores (
    judge_id INTEGER NOT NULL,
    team_id INTEGER NOT NULL,
    criterion_id INTEGER NOT NULL,
    round INTEGER NOT NULL,
    score REAL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (judge_id, team_id, criterion_id, round)
);
"""


class SqliteEventService(EventService):
    def __init__(self, db_path: str, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    # -----------------------
    # DB helpers
    # -----------------------
    @contextmanager
    def db(self) -> Iterator[sqlite3.Connection]:
        # `timeout` bounds how long a write waits on a locked database
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.db() as conn:
            conn.executescript(SCHEMA)
        logger.info("Database ready at {}", self.db_path)

    # -----------------------
    # Judge session contract
    # -----------------------
    def get_judge_by_token(self, token: str) -> Optional[Judge]:
        with self.db() as conn:
            row = conn.execute(
                "SELECT id, judge_name, event_id FROM judges WHERE judge_token=?", (token,)
            ).fetchone()
        if not row:
            return None
        return Judge(id=row["id"], name=row["judge_name"], event_id=row["event_id"])

    def get_assignments_for_judge(self, judge_id: int) -> Set[int]:
        with self.db() as conn:
            rows = conn.execute("SELECT team_id FROM assignments WHERE judge_id=?", (judge_id,)).fetchall()
        return {r["team_id"] for r in rows}

    def get_teams_for_event(self, event_id: int) -> List[Team]:
        with self.db() as conn:
            rows = conn.execute(
                "SELECT id, event_id, name, project_title FROM teams WHERE event_id=? ORDER BY position, id",
                (event_id,),
            ).fetchall()
        return [
            Team(id=r["id"], name=r["name"], event_id=r["event_id"], project_title=r["project_title"])
            for r in rows
        ]

    def get_criteria_for_event(self, event_id: int) -> List[Criterion]:
        with self.db() as conn:
            rows = conn.execute(
                "SELECT id, name, max_score, weight FROM criteria WHERE event_id=? ORDER BY position, id",
                (event_id,),
            ).fetchall()
        return [Criterion(id=r["id"], name=r["name"], max_score=r["max_score"], weight=r["weight"]) for r in rows]

    def get_scores_for_judge(self, judge_id: int) -> List[ScoreRecord]:
        with self.db() as conn:
            rows = conn.execute(
                "SELECT judge_id, team_id, criterion_id, score, round FROM scores WHERE judge_id=?",
                (judge_id,),
            ).fetchall()
        return [_score_record(r) for r in rows]

    def upsert_score(self, record: ScoreRecord) -> None:
        with self.db() as conn:
            conn.execute(
                """
                INSERT INTO scores(judge_id, team_id, criterion_id, round, score, updated_at)
                VALUES(?,?,?,?,?,?)
                ON CONFLICT(judge_id, team_id, criterion_id, round)
                DO UPDATE SET score=excluded.score, updated_at=excluded.updated_at
                """,
                (
                    record.judge_id,
                    record.team_id,
                    record.criterion_id,
                    record.round,
                    record.score,
                    datetime.utcnow().isoformat(timespec="seconds"),
                ),
            )

    def record_submission(self, judge_id: int) -> None:
        with self.db() as conn:
            conn.execute(
                "UPDATE judges SET last_submit_at=? WHERE id=?",
                (datetime.utcnow().isoformat(timespec="seconds"), judge_id),
            )

    # -----------------------
    # Event setup (admin)
    # -----------------------
    def create_event(self, name: str, admin_password: str) -> int:
        with self.db() as conn:
            cur = conn.execute(
                "INSERT INTO events(name, admin_pw_hash, created_at) VALUES(?,?,?)",
                (name.strip(), sha256(admin_password), datetime.utcnow().isoformat()),
            )
            event_id = cur.lastrowid
        logger.info("Created event {} ({})", event_id, name.strip())
        return event_id

    def list_events(self) -> List[sqlite3.Row]:
        with self.db() as conn:
            return conn.execute("SELECT id, name, created_at FROM events ORDER BY id DESC").fetchall()

    def get_event(self, event_id: int) -> Optional[sqlite3.Row]:
        with self.db() as conn:
            return conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()

    def check_admin_password(self, event_id: int, admin_password: str) -> Optional[bool]:
        """None if the event doesn't exist, else whether the password matches."""
        event = self.get_event(event_id)
        if event is None:
            return None
        return sha256(admin_password) == event["admin_pw_hash"]

    def replace_teams(self, event_id: int, teams: Sequence[Tuple[str, str]]) -> None:
        """Set the event's teams to (name, project_title) pairs; dropped teams lose their scores."""
        names = [name for name, _title in teams]
        with self.db() as conn:
            for position, (name, title) in enumerate(teams):
                conn.execute(
                    """
                    INSERT INTO teams(event_id, name, project_title, position) VALUES(?,?,?,?)
                    ON CONFLICT(event_id, name) DO UPDATE SET project_title=excluded.project_title,
                                                              position=excluded.position
                    """,
                    (event_id, name, title, position),
                )
            stale = _stale_ids(conn, "teams", event_id, names)
            for team_id in stale:
                conn.execute("DELETE FROM scores WHERE team_id=?", (team_id,))
                conn.execute("DELETE FROM assignments WHERE team_id=?", (team_id,))
                conn.execute("DELETE FROM teams WHERE id=?", (team_id,))
        logger.info("Event {}: {} teams ({} removed)", event_id, len(teams), len(stale))

    def replace_criteria(self, event_id: int, criteria: Sequence[Tuple[str, float, float]]) -> None:
        """Set the event's criteria to (name, max_score, weight) triples."""
        names = [name for name, _max, _weight in criteria]
        with self.db() as conn:
            for position, (name, max_score, weight) in enumerate(criteria):
                conn.execute(
                    """
                    INSERT INTO criteria(event_id, name, max_score, weight, position) VALUES(?,?,?,?,?)
                    ON CONFLICT(event_id, name) DO UPDATE SET max_score=excluded.max_score,
                                                              weight=excluded.weight,
                                                              position=excluded.position
                    """,
                    (event_id, name, max_score, weight, position),
                )
            stale = _stale_ids(conn, "criteria", event_id, names)
            for criterion_id in stale:
                conn.execute("DELETE FROM scores WHERE criterion_id=?", (criterion_id,))
                conn.execute("DELETE FROM criteria WHERE id=?", (criterion_id,))
        logger.info("Event {}: {} criteria ({} removed)", event_id, len(criteria), len(stale))

    def add_judges(self, event_id: int, names: Sequence[str]) -> None:
        """Create judges that don't exist yet; existing judges keep their token."""
        with self.db() as conn:
            for name in names:
                conn.execute(
                    "INSERT OR IGNORE INTO judges(event_id, judge_name, judge_token) VALUES(?,?,?)",
                    (event_id, name, new_token()),
                )

    def list_judges(self, event_id: int) -> List[sqlite3.Row]:
        with self.db() as conn:
            return conn.execute(
                "SELECT id, judge_name, judge_token, last_submit_at FROM judges WHERE event_id=? ORDER BY judge_name",
                (event_id,),
            ).fetchall()

    def set_assignments(self, event_id: int, assignments: Dict[str, List[str]]) -> None:
        """
        Replace the team list of each named judge.

        Judges not mentioned keep their assignments. Raises ValueError naming any
        judge or team that isn't part of the event; nothing is written in that case.
        """
        with self.db() as conn:
            judge_ids = {
                r["judge_name"]: r["id"]
                for r in conn.execute("SELECT id, judge_name FROM judges WHERE event_id=?", (event_id,))
            }
            team_ids = {
                r["name"]: r["id"] for r in conn.execute("SELECT id, name FROM teams WHERE event_id=?", (event_id,))
            }

            unknown = [j for j in assignments if j not in judge_ids]
            unknown += [t for teams in assignments.values() for t in teams if t not in team_ids]
            if unknown:
                raise ValueError(f"Unknown judge or team: {', '.join(dict.fromkeys(unknown))}")

            for judge_name, team_names in assignments.items():
                judge_id = judge_ids[judge_name]
                conn.execute("DELETE FROM assignments WHERE judge_id=?", (judge_id,))
                for team_name in dict.fromkeys(team_names):
                    conn.execute(
                        "INSERT INTO assignments(judge_id, team_id) VALUES(?,?)", (judge_id, team_ids[team_name])
                    )

    def get_scores_for_event(self, event_id: int, round: int) -> List[ScoreRecord]:
        with self.db() as conn:
            rows = conn.execute(
                """
                SELECT s.judge_id, s.team_id, s.criterion_id, s.score, s.round
                FROM scores s JOIN judges j ON j.id = s.judge_id
                WHERE j.event_id=? AND s.round=?
                """,
                (event_id, round),
            ).fetchall()
        return [_score_record(r) for r in rows]


def _score_record(row: sqlite3.Row) -> ScoreRecord:
    return ScoreRecord(
        judge_id=row["judge_id"],
        team_id=row["team_id"],
        criterion_id=row["criterion_id"],
        score=row["score"],
        round=row["round"],
    )


def _stale_ids(conn: sqlite3.Connection, table: str, event_id: int, keep_names: Sequence[str]) -> List[int]:
    rows = conn.execute(f"SELECT id, name FROM {table} WHERE event_id=?", (event_id,)).fetchall()
    keep = set(keep_names)
    return [r["id"] for r in rows if r["name"] not in keep]
