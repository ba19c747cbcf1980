from __future__ import annotations

from typing import Dict, Hashable, List, Optional, Tuple

from loguru import logger

from judging.errors import (
    DiagnosticReport,
    IncompleteSubmission,
    InvalidToken,
    LoadFailure,
    MissingToken,
    PersistenceFailure,
    UnknownTeam,
)
from judging.models import Criterion, Judge, ScoreRecord, Team
from judging.scoring import ScoreStore, SubmissionTracker, assigned_teams, is_blank
from judging.service import EventService

PENDING = "Pending"
SUBMITTED = "Submitted"


class ScoringSession:
    """
    One judge's scoring session: the assigned teams, the event criteria, the
    in-progress scores and which teams have been submitted.

    Build it with `ScoringSession.load(token, service)`. Nothing is shared
    between sessions; a fresh load recomputes everything from storage.
    """

    def __init__(
        self,
        service: EventService,
        judge: Judge,
        teams: List[Team],
        criteria: List[Criterion],
        round: int = 1,
    ):
        self.service = service
        self.judge = judge
        self.teams = list(teams)
        self.criteria = list(criteria)
        self.round = round
        self.store = ScoreStore()
        self.tracker = SubmissionTracker(self.store, self.criteria, [t.id for t in self.teams])
        self._criteria_by_id = {c.id: c for c in self.criteria}

    @classmethod
    def load(cls, token: Optional[str], service: EventService, round: int = 1) -> "ScoringSession":
        """
        Resolve the judge, then fetch assignments, teams, criteria and existing
        scores, in that order. Any collaborator error aborts the load with a
        LoadFailure carrying a DiagnosticReport.
        """
        if is_blank(token):
            raise MissingToken()

        stage = "resolve_judge"
        completed: List[str] = []
        judge: Optional[Judge] = None
        try:
            judge = service.get_judge_by_token(token)
            if judge is None:
                logger.warning("No judge for token {}", token)
                raise InvalidToken(token)
            completed.append(stage)

            stage = "load_assignments"
            assigned_ids = service.get_assignments_for_judge(judge.id)
            event_teams = service.get_teams_for_event(judge.event_id)
            completed.append(stage)

            stage = "load_criteria"
            criteria = service.get_criteria_for_event(judge.event_id)
            completed.append(stage)

            stage = "load_scores"
            records = service.get_scores_for_judge(judge.id)
            completed.append(stage)
        except InvalidToken:
            raise
        except Exception as e:
            report = DiagnosticReport(
                token=token,
                stage=stage,
                cause=str(e) or e.__class__.__name__,
                completed_stages=completed,
                judge_id=judge.id if judge else None,
                event_id=judge.event_id if judge else None,
            )
            logger.error("Loading judge session failed at {}: {}", stage, report.cause)
            raise LoadFailure(report) from e

        session = cls(service, judge, assigned_teams(event_teams, assigned_ids), criteria, round=round)
        session._seed(records)
        logger.info(
            "Judge {} ({}) session loaded: {} teams, {} criteria, {} already submitted",
            judge.id,
            judge.name,
            len(session.teams),
            len(session.criteria),
            len(session.tracker.submitted),
        )
        return session

    def _seed(self, records: List[ScoreRecord]) -> None:
        team_ids = {t.id for t in self.teams}
        current = [r for r in records if r.round == self.round and r.team_id in team_ids]
        self.store.seed(current, self.criteria)
        self.tracker.seed_from_store()

    # -----------------------
    # Queries
    # -----------------------
    def team(self, team_id: Hashable) -> Team:
        for t in self.teams:
            if t.id == team_id:
                return t
        raise UnknownTeam(team_id)

    def criterion(self, criterion_id: Hashable) -> Optional[Criterion]:
        return self._criteria_by_id.get(criterion_id)

    def get_scores(self, team_id: Hashable) -> Dict[Hashable, float]:
        return self.store.get_scores(team_id)

    def is_complete(self, team_id: Hashable) -> bool:
        return self.store.is_complete(team_id, self.criteria)

    def is_submitted(self, team_id: Hashable) -> bool:
        return self.tracker.is_submitted(team_id)

    def status(self, team_id: Hashable) -> str:
        return SUBMITTED if self.is_submitted(team_id) else PENDING

    def progress(self) -> Tuple[int, int]:
        """(submitted teams, assigned teams)"""
        return len(self.tracker.submitted), len(self.teams)

    def all_submitted(self) -> bool:
        return self.tracker.all_submitted()

    # -----------------------
    # Actions
    # -----------------------
    def set_score(self, team_id: Hashable, criterion_id: Hashable, raw) -> bool:
        """Apply one field edit. Returns False when the edit was ignored."""
        criterion = self.criterion(criterion_id)
        if criterion is None or self.is_submitted(team_id):
            return False
        if team_id not in self.tracker.team_ids:
            return False
        accepted = self.store.set_score(team_id, criterion_id, raw, criterion.max_score)
        if not accepted:
            logger.debug("Ignored score {!r} for team {} / criterion {}", raw, team_id, criterion_id)
        return accepted

    def submit(self, team_id: Hashable) -> bool:
        """
        Persist the team's scores and lock it.

        Returns False if the team was already submitted. Raises
        IncompleteSubmission, PersistenceFailure or UnknownTeam otherwise.
        """

        def write(criterion: Criterion, score: float) -> None:
            self.service.upsert_score(
                ScoreRecord(
                    judge_id=self.judge.id,
                    team_id=team_id,
                    criterion_id=criterion.id,
                    score=score,
                    round=self.round,
                )
            )

        try:
            submitted = self.tracker.submit(team_id, write)
        except IncompleteSubmission as e:
            logger.info("Judge {} submit for team {} refused, missing {}", self.judge.id, team_id, e.missing)
            raise
        except PersistenceFailure as e:
            logger.error(
                "Judge {} submit for team {} failed at criterion {}: {}",
                self.judge.id,
                team_id,
                e.criterion_id,
                e.cause,
            )
            raise

        if submitted:
            logger.info("Judge {} submitted team {} ({} criteria)", self.judge.id, team_id, len(self.criteria))
        return submitted
