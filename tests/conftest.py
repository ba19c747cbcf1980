from __future__ import annotations

from typing import Dict, Hashable, List, Optional, Set

import pytest
from fastapi.testclient import TestClient

from judging.db import SqliteEventService
from judging.main import app, get_service
from judging.models import Criterion, Judge, ScoreRecord, Team
from judging.service import EventService


class FakeEventService(EventService):
    """In-memory event service that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.judges: Dict[str, Judge] = {}
        self.assignments: Dict[Hashable, Set[Hashable]] = {}
        self.teams: Dict[Hashable, List[Team]] = {}
        self.criteria: Dict[Hashable, List[Criterion]] = {}
        self.scores: Dict[tuple, ScoreRecord] = {}
        self.upserts: List[ScoreRecord] = []
        self.calls: List[str] = []
        self.fail_on: Dict[str, Exception] = {}
        self.fail_upsert_at: Optional[int] = None

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise self.fail_on[name]

    def get_judge_by_token(self, token):
        self._call("get_judge_by_token")
        return self.judges.get(token)

    def get_assignments_for_judge(self, judge_id):
        self._call("get_assignments_for_judge")
        return set(self.assignments.get(judge_id, set()))

    def get_teams_for_event(self, event_id):
        self._call("get_teams_for_event")
        return list(self.teams.get(event_id, []))

    def get_criteria_for_event(self, event_id):
        self._call("get_criteria_for_event")
        return list(self.criteria.get(event_id, []))

    def get_scores_for_judge(self, judge_id):
        self._call("get_scores_for_judge")
        return [r for r in self.scores.values() if r.judge_id == judge_id]

    def upsert_score(self, record):
        self._call("upsert_score")
        if self.fail_upsert_at is not None and len(self.upserts) + 1 == self.fail_upsert_at:
            self.upserts.append(record)
            raise ConnectionError("storage unavailable")
        self.upserts.append(record)
        self.scores[record.key] = record


@pytest.fixture
def fake_service() -> FakeEventService:
    """
    Judge "j1" (token "tok-1") of event "e1", assigned t1 and t2 out of t1..t3.
    Criteria: c1 (max 10, weight 1), c2 (max 5, weight 2).
    """
    service = FakeEventService()
    service.judges["tok-1"] = Judge(id="j1", name="Ada", event_id="e1")
    service.teams["e1"] = [
        Team(id="t1", name="Rockets", event_id="e1", project_title="Launchpad"),
        Team(id="t2", name="Owls", event_id="e1"),
        Team(id="t3", name="Foxes", event_id="e1"),
    ]
    service.assignments["j1"] = {"t1", "t2"}
    service.criteria["e1"] = [
        Criterion(id="c1", name="Innovation", max_score=10, weight=1),
        Criterion(id="c2", name="Design", max_score=5, weight=2),
    ]
    return service


@pytest.fixture
def sqlite_service(tmp_path) -> SqliteEventService:
    service = SqliteEventService(str(tmp_path / "judging.sqlite"), timeout=1.0)
    service.init_db()
    return service


@pytest.fixture
def seeded_event(sqlite_service):
    """Event with two teams, two criteria and judge Ada assigned to both teams."""
    event_id = sqlite_service.create_event("Spring Hackathon", "secret")
    sqlite_service.replace_teams(event_id, [("Rockets", "Launchpad"), ("Owls", "")])
    sqlite_service.replace_criteria(event_id, [("Innovation", 10, 1), ("Design", 5, 2)])
    sqlite_service.add_judges(event_id, ["Ada", "Grace"])
    sqlite_service.set_assignments(event_id, {"Ada": ["Rockets", "Owls"], "Grace": ["Owls"]})

    judges = {j["judge_name"]: j for j in sqlite_service.list_judges(event_id)}
    teams = {t.name: t for t in sqlite_service.get_teams_for_event(event_id)}
    criteria = {c.name: c for c in sqlite_service.get_criteria_for_event(event_id)}
    return {
        "event_id": event_id,
        "token": judges["Ada"]["judge_token"],
        "judge_id": judges["Ada"]["id"],
        "grace_token": judges["Grace"]["judge_token"],
        "teams": teams,
        "criteria": criteria,
    }


@pytest.fixture
def client(sqlite_service):
    app.dependency_overrides[get_service] = lambda: sqlite_service
    yield TestClient(app)
    app.dependency_overrides.clear()
