from __future__ import annotations

import pytest

from judging.errors import (
    IncompleteSubmission,
    InvalidToken,
    LoadFailure,
    MissingToken,
    PersistenceFailure,
    UnknownTeam,
)
from judging.models import ScoreRecord
from judging.session import PENDING, SUBMITTED, ScoringSession


@pytest.mark.parametrize("token", [None, "", "   "])
def test_missing_token_fails_before_any_lookup(fake_service, token):
    with pytest.raises(MissingToken):
        ScoringSession.load(token, fake_service)
    assert fake_service.calls == []


def test_invalid_token(fake_service):
    with pytest.raises(InvalidToken) as exc:
        ScoringSession.load("nope", fake_service)
    assert exc.value.token == "nope"
    assert fake_service.calls == ["get_judge_by_token"]


def test_load_runs_fetches_in_order_and_filters_assigned_teams(fake_service):
    session = ScoringSession.load("tok-1", fake_service)

    assert fake_service.calls == [
        "get_judge_by_token",
        "get_assignments_for_judge",
        "get_teams_for_event",
        "get_criteria_for_event",
        "get_scores_for_judge",
    ]
    assert session.judge.name == "Ada"
    assert [t.id for t in session.teams] == ["t1", "t2"]
    assert [c.id for c in session.criteria] == ["c1", "c2"]
    assert session.progress() == (0, 2)
    assert session.status("t1") == PENDING


def test_load_failure_aborts_with_diagnostics(fake_service):
    fake_service.fail_on["get_criteria_for_event"] = RuntimeError("criteria table missing")

    with pytest.raises(LoadFailure) as exc:
        ScoringSession.load("tok-1", fake_service)

    report = exc.value.report
    assert str(exc.value) == "Failed to load judge data: criteria table missing"
    assert report.stage == "load_criteria"
    assert report.completed_stages == ["resolve_judge", "load_assignments"]
    assert report.judge_id == "j1"
    assert report.event_id == "e1"
    assert report.token == "tok-1"
    assert "get_scores_for_judge" not in fake_service.calls


def test_load_failure_while_resolving_judge(fake_service):
    fake_service.fail_on["get_judge_by_token"] = TimeoutError()

    with pytest.raises(LoadFailure) as exc:
        ScoringSession.load("tok-1", fake_service)

    assert exc.value.report.stage == "resolve_judge"
    assert exc.value.report.judge_id is None
    assert exc.value.report.cause == "TimeoutError"


def test_persisted_complete_scores_seed_submitted_without_writes(fake_service):
    for crit, value in (("c1", 7), ("c2", 4)):
        fake_service.scores[("j1", "t2", crit, 1)] = ScoreRecord("j1", "t2", crit, value, 1)
    fake_service.scores[("j1", "t1", "c1", 1)] = ScoreRecord("j1", "t1", "c1", 3, 1)

    session = ScoringSession.load("tok-1", fake_service)

    assert session.status("t2") == SUBMITTED
    assert session.status("t1") == PENDING
    assert session.get_scores("t1") == {"c1": 3.0}
    assert fake_service.upserts == []


def test_seed_ignores_other_rounds_and_unassigned_teams(fake_service):
    for crit in ("c1", "c2"):
        fake_service.scores[("j1", "t1", crit, 2)] = ScoreRecord("j1", "t1", crit, 1, 2)
        fake_service.scores[("j1", "t3", crit, 1)] = ScoreRecord("j1", "t3", crit, 1, 1)

    session = ScoringSession.load("tok-1", fake_service, round=1)

    assert session.get_scores("t1") == {}
    assert session.tracker.submitted == frozenset()


def test_submit_scenario_writes_every_criterion(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    assert session.set_score("t1", "c1", "8")
    assert session.set_score("t1", "c2", "5")
    assert session.is_complete("t1")

    assert session.submit("t1") is True

    assert fake_service.upserts == [
        ScoreRecord("j1", "t1", "c1", 8.0, 1),
        ScoreRecord("j1", "t1", "c2", 5.0, 1),
    ]
    assert session.status("t1") == SUBMITTED


def test_submit_with_missing_criterion_is_refused(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    session.set_score("t1", "c1", "8")

    assert not session.is_complete("t1")
    with pytest.raises(IncompleteSubmission):
        session.submit("t1")
    assert fake_service.upserts == []
    assert session.status("t1") == PENDING


def test_persistence_failure_keeps_team_pending_and_retry_is_idempotent(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    session.set_score("t1", "c1", "8")
    session.set_score("t1", "c2", "5")
    fake_service.fail_upsert_at = 2

    with pytest.raises(PersistenceFailure) as exc:
        session.submit("t1")
    assert str(exc.value) == "Failed to submit scores. Please try again."
    assert session.status("t1") == PENDING

    fake_service.fail_upsert_at = None
    assert session.submit("t1") is True
    assert session.status("t1") == SUBMITTED
    # retried writes land on the same keys
    assert len([k for k in fake_service.scores if k[1] == "t1"]) == 2


def test_failed_submit_does_not_touch_other_teams(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    session.set_score("t2", "c1", "1")
    session.set_score("t2", "c2", "1")
    session.submit("t2")

    session.set_score("t1", "c1", "8")
    with pytest.raises(IncompleteSubmission):
        session.submit("t1")

    assert session.status("t2") == SUBMITTED
    assert session.get_scores("t1") == {"c1": 8.0}


def test_submitted_team_rejects_edits_and_resubmits(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    session.set_score("t1", "c1", "8")
    session.set_score("t1", "c2", "5")
    session.submit("t1")
    writes = len(fake_service.upserts)

    assert session.set_score("t1", "c1", "2") is False
    assert session.set_score("t1", "c1", "") is False
    assert session.get_scores("t1") == {"c1": 8.0, "c2": 5.0}
    assert session.submit("t1") is False
    assert len(fake_service.upserts) == writes


def test_edits_for_unknown_team_or_criterion_are_ignored(fake_service):
    session = ScoringSession.load("tok-1", fake_service)

    assert session.set_score("t3", "c1", "5") is False
    assert session.set_score("t1", "c9", "5") is False
    assert session.get_scores("t3") == {}
    with pytest.raises(UnknownTeam):
        session.submit("t3")
    with pytest.raises(UnknownTeam):
        session.team("t3")


def test_all_submitted_tracks_every_assigned_team(fake_service):
    session = ScoringSession.load("tok-1", fake_service)
    for team_id in ("t1", "t2"):
        assert not session.all_submitted()
        session.set_score(team_id, "c1", "10")
        session.set_score(team_id, "c2", "0")
        session.submit(team_id)

    assert session.all_submitted()
    assert session.progress() == (2, 2)


def test_sessions_do_not_share_state(fake_service):
    first = ScoringSession.load("tok-1", fake_service)
    second = ScoringSession.load("tok-1", fake_service)

    first.set_score("t1", "c1", "8")
    assert second.get_scores("t1") == {}
