from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Hashable, List, Optional


class ScoringError(Exception):
    """Base class for judge session errors. `str(err)` is the user-facing message."""


class MissingToken(ScoringError):
    def __init__(self) -> None:
        super().__init__("No access token provided. Please use the link from your invitation email.")


class InvalidToken(ScoringError):
    def __init__(self, token: str) -> None:
        super().__init__("Invalid access token. Please check your invitation link.")
        self.token = token


@dataclass
class DiagnosticReport:
    """What the initial load got through before it failed."""

    token: Optional[str]
    stage: str
    cause: str
    completed_stages: List[str] = field(default_factory=list)
    judge_id: Optional[Hashable] = None
    event_id: Optional[Hashable] = None

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LoadFailure(ScoringError):
    def __init__(self, report: DiagnosticReport) -> None:
        super().__init__(f"Failed to load judge data: {report.cause}")
        self.report = report


class IncompleteSubmission(ScoringError):
    def __init__(self, team_id: Hashable, missing: List[Hashable]) -> None:
        super().__init__("Please fill in all criteria scores before submitting.")
        self.team_id = team_id
        self.missing = missing


class UnknownTeam(ScoringError):
    def __init__(self, team_id: Hashable) -> None:
        super().__init__("This team is not assigned to you.")
        self.team_id = team_id


class PersistenceFailure(ScoringError):
    def __init__(self, team_id: Hashable, criterion_id: Hashable, cause: str) -> None:
        super().__init__("Failed to submit scores. Please try again.")
        self.team_id = team_id
        self.criterion_id = criterion_id
        self.cause = cause
