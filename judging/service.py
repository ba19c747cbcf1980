from __future__ import annotations

from typing import Hashable, List, Optional, Set

from judging.models import Criterion, Judge, ScoreRecord, Team


class EventService:
    """Data service a judge session reads from and writes scores through."""

    def get_judge_by_token(self, token: str) -> Optional[Judge]:
        raise NotImplementedError

    def get_assignments_for_judge(self, judge_id: Hashable) -> Set[Hashable]:
        raise NotImplementedError

    def get_teams_for_event(self, event_id: Hashable) -> List[Team]:
        raise NotImplementedError

    def get_criteria_for_event(self, event_id: Hashable) -> List[Criterion]:
        raise NotImplementedError

    def get_scores_for_judge(self, judge_id: Hashable) -> List[ScoreRecord]:
        raise NotImplementedError

    def upsert_score(self, record: ScoreRecord) -> None:
        """Insert or overwrite by (judge_id, team_id, criterion_id, round). Raises on failure."""
        raise NotImplementedError
