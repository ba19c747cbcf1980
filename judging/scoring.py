from __future__ import annotations

import math
from typing import Callable, Dict, FrozenSet, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from judging.errors import IncompleteSubmission, PersistenceFailure, UnknownTeam
from judging.models import Criterion, ScoreRecord, Team

# Input granularity for score fields; fractional scores are allowed.
SCORE_STEP = 0.1


def is_blank(raw) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def parse_score(raw) -> Optional[float]:
    """Return `raw` as a finite float, or None when it isn't one."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        # float() also takes "1_0"; a number field never sends that
        if "_" in text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return value


def score_bounds(criterion: Criterion) -> Tuple[float, float, float]:
    """(min, max, step) for a criterion's input field."""
    return 0.0, float(criterion.max_score), SCORE_STEP


def assigned_teams(event_teams: Sequence[Team], assigned_ids: Iterable[Hashable]) -> List[Team]:
    """Event teams whose id is in the judge's assignments, in event order."""
    wanted = set(assigned_ids)
    return [team for team in event_teams if team.id in wanted]


class ScoreStore:
    """team_id -> {criterion_id -> score}. A missing key means "not scored yet"."""

    def __init__(self) -> None:
        self._scores: Dict[Hashable, Dict[Hashable, float]] = {}

    def set_score(self, team_id: Hashable, criterion_id: Hashable, raw, max_score: float) -> bool:
        """
        Store `raw` for (team, criterion) if it parses to a number in [0, max_score].

        Anything else is refused without touching the store. A blank value clears
        the pair so an emptied field never reads back as 0.
        """
        if is_blank(raw):
            team_scores = self._scores.get(team_id)
            if team_scores is not None:
                team_scores.pop(criterion_id, None)
            return True

        value = parse_score(raw)
        if value is None or value < 0 or value > max_score:
            return False

        self._scores.setdefault(team_id, {})[criterion_id] = value
        return True

    def get_scores(self, team_id: Hashable) -> Dict[Hashable, float]:
        return dict(self._scores.get(team_id, {}))

    def missing(self, team_id: Hashable, criteria: Sequence[Criterion]) -> List[Hashable]:
        team_scores = self._scores.get(team_id, {})
        return [c.id for c in criteria if c.id not in team_scores]

    def is_complete(self, team_id: Hashable, criteria: Sequence[Criterion]) -> bool:
        return not self.missing(team_id, criteria)

    def seed(self, records: Iterable[ScoreRecord], criteria: Sequence[Criterion]) -> int:
        """
        Load persisted records, validating each against its criterion's bound.

        Records for unknown criteria or with out-of-range values are skipped so the
        team shows up as incomplete and can be rescored. Returns the number kept.
        """
        by_id = {c.id: c for c in criteria}
        kept = 0
        for rec in records:
            criterion = by_id.get(rec.criterion_id)
            if criterion is None or is_blank(rec.score):
                continue
            if self.set_score(rec.team_id, rec.criterion_id, rec.score, criterion.max_score):
                kept += 1
        return kept


class SubmissionTracker:
    """
    Pending -> Submitted latch for each assigned team.

    A team only becomes Submitted after every criterion has been written through
    the gateway; nothing ever moves it back.
    """

    def __init__(self, store: ScoreStore, criteria: Sequence[Criterion], team_ids: Iterable[Hashable]):
        self.store = store
        self.criteria = list(criteria)
        self.team_ids = list(team_ids)
        self._submitted: Set[Hashable] = set()

    @property
    def submitted(self) -> FrozenSet[Hashable]:
        return frozenset(self._submitted)

    def is_submitted(self, team_id: Hashable) -> bool:
        return team_id in self._submitted

    def seed_from_store(self) -> Set[Hashable]:
        """Mark every team the store already holds a full set of scores for."""
        seeded = {t for t in self.team_ids if self.store.is_complete(t, self.criteria)}
        self._submitted |= seeded
        return seeded

    def submit(self, team_id: Hashable, write: Callable[[Criterion, float], None]) -> bool:
        """
        Persist a complete team with one `write` per criterion, then latch it.

        Returns False (and writes nothing) if the team is already submitted.
        Raises IncompleteSubmission before any write when a criterion is missing,
        and PersistenceFailure if any write raises; earlier writes of that attempt
        stay in storage and a retry overwrites them under the same key.
        """
        if team_id not in self.team_ids:
            raise UnknownTeam(team_id)
        if team_id in self._submitted:
            return False

        missing = self.store.missing(team_id, self.criteria)
        if missing:
            raise IncompleteSubmission(team_id, missing)

        scores = self.store.get_scores(team_id)
        for criterion in self.criteria:
            try:
                write(criterion, scores[criterion.id])
            except Exception as e:
                raise PersistenceFailure(team_id, criterion.id, str(e)) from e

        self._submitted.add(team_id)
        return True

    def all_submitted(self) -> bool:
        return all(t in self._submitted for t in self.team_ids)
