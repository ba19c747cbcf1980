from __future__ import annotations

from dataclasses import asdict
from typing import Dict, Hashable, List, Sequence

import pandas as pd

from judging.db import SqliteEventService
from judging.models import Criterion, ScoreRecord, Team
from judging.scoring import ScoreStore, SubmissionTracker


def scoresheet_frame(
    records: Sequence[ScoreRecord],
    judge_names: Dict[Hashable, str],
    teams: Sequence[Team],
    criteria: Sequence[Criterion],
) -> pd.DataFrame:
    """
    One row per (judge, team) that has any score:
      Judge, Team, <criterion name>..., WeightedTotal, Complete

    WeightedTotal is sum(score * weight) over the criteria scored so far.
    """
    crit_ids = [c.id for c in criteria]
    columns = ["Judge", "Team"] + [c.name for c in criteria] + ["WeightedTotal", "Complete"]
    team_names = {t.id: t.name for t in teams}

    df = pd.DataFrame([asdict(r) for r in records], columns=["judge_id", "team_id", "criterion_id", "score", "round"])
    df = df[
        df["criterion_id"].isin(crit_ids) & df["team_id"].isin(list(team_names)) & df["judge_id"].isin(list(judge_names))
    ]
    df = df.dropna(subset=["score"])
    if df.empty:
        return pd.DataFrame(columns=columns)

    sheet = df.pivot_table(index=["judge_id", "team_id"], columns="criterion_id", values="score", aggfunc="last")
    sheet = sheet.reindex(columns=crit_ids)
    sheet.columns.name = None

    weights = pd.Series({c.id: float(c.weight) for c in criteria})
    sheet["WeightedTotal"] = sheet[crit_ids].mul(weights, axis=1).sum(axis=1)
    sheet["Complete"] = sheet[crit_ids].notna().all(axis=1)

    sheet = sheet.reset_index()
    sheet.insert(0, "Judge", sheet.pop("judge_id").map(judge_names))
    sheet.insert(1, "Team", sheet.pop("team_id").map(team_names))
    sheet = sheet.rename(columns={c.id: c.name for c in criteria})

    return sheet[columns].sort_values(by=["Judge", "Team"], kind="mergesort").reset_index(drop=True)


def event_scoresheet(service: SqliteEventService, event_id: int, round: int) -> pd.DataFrame:
    judge_names = {j["id"]: j["judge_name"] for j in service.list_judges(event_id)}
    return scoresheet_frame(
        service.get_scores_for_event(event_id, round),
        judge_names,
        service.get_teams_for_event(event_id),
        service.get_criteria_for_event(event_id),
    )


def judge_progress(service: SqliteEventService, event_id: int, round: int) -> List[dict]:
    """Per judge: assigned team count and how many of those are fully submitted."""
    criteria = service.get_criteria_for_event(event_id)
    event_team_ids = {t.id for t in service.get_teams_for_event(event_id)}

    rows = []
    for judge in service.list_judges(event_id):
        team_ids = [t for t in service.get_assignments_for_judge(judge["id"]) if t in event_team_ids]
        store = ScoreStore()
        store.seed([r for r in service.get_scores_for_judge(judge["id"]) if r.round == round], criteria)
        tracker = SubmissionTracker(store, criteria, team_ids)
        tracker.seed_from_store()
        rows.append(
            {
                "judge_name": judge["judge_name"],
                "judge_token": judge["judge_token"],
                "last_submit_at": judge["last_submit_at"],
                "assigned": len(team_ids),
                "submitted": len(tracker.submitted),
                "done": bool(team_ids) and tracker.all_submitted(),
            }
        )
    return rows
