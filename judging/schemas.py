"""Pydantic models for the judge JSON API."""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from judging.scoring import SCORE_STEP
from judging.session import ScoringSession


class CriterionView(BaseModel):
    id: int
    name: str
    max_score: float
    weight: float
    min_score: float = 0.0
    step: float = SCORE_STEP


class TeamView(BaseModel):
    id: int
    name: str
    project_title: str = ""
    status: str
    scores: Dict[str, float] = Field(default_factory=dict, description="criterion id -> score")


class SessionView(BaseModel):
    judge_id: int
    judge_name: str
    round: int
    criteria: List[CriterionView]
    teams: List[TeamView]
    submitted: int
    assigned: int
    all_submitted: bool

    @classmethod
    def from_session(cls, session: ScoringSession) -> "SessionView":
        submitted, assigned = session.progress()
        return cls(
            judge_id=session.judge.id,
            judge_name=session.judge.name,
            round=session.round,
            criteria=[
                CriterionView(id=c.id, name=c.name, max_score=c.max_score, weight=c.weight) for c in session.criteria
            ],
            teams=[
                TeamView(
                    id=t.id,
                    name=t.name,
                    project_title=t.project_title,
                    status=session.status(t.id),
                    scores={str(k): v for k, v in session.get_scores(t.id).items()},
                )
                for t in session.teams
            ],
            submitted=submitted,
            assigned=assigned,
            all_submitted=session.all_submitted(),
        )


class SubmitRequest(BaseModel):
    token: str
    scores: Dict[str, Union[float, str, None]] = Field(..., description="criterion id -> score")


class SubmitResponse(BaseModel):
    team_id: int
    status: str
    submitted: bool = Field(..., description="False when the team was already submitted")
    ignored: List[str] = Field(default_factory=list, description="criterion ids whose value was refused")
    message: Optional[str] = None
