from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable


@dataclass(frozen=True)
class Judge:
    id: Hashable
    name: str
    event_id: Hashable


@dataclass(frozen=True)
class Team:
    id: Hashable
    name: str
    event_id: Hashable
    project_title: str = ""


@dataclass(frozen=True)
class Criterion:
    id: Hashable
    name: str
    max_score: float
    weight: float = 1.0


@dataclass(frozen=True)
class ScoreRecord:
    """One persisted score, unique per (judge_id, team_id, criterion_id, round)."""

    judge_id: Hashable
    team_id: Hashable
    criterion_id: Hashable
    score: float
    round: int

    @property
    def key(self) -> tuple:
        return (self.judge_id, self.team_id, self.criterion_id, self.round)
