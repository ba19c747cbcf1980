from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from html import escape
from io import StringIO
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from loguru import logger

from judging.config import get_settings
from judging.db import SqliteEventService
from judging.errors import (
    IncompleteSubmission,
    InvalidToken,
    LoadFailure,
    MissingToken,
    PersistenceFailure,
    ScoringError,
    UnknownTeam,
)
from judging.logger import setup_logger
from judging.reports import event_scoresheet, judge_progress
from judging.schemas import SessionView, SubmitRequest, SubmitResponse
from judging.scoring import score_bounds
from judging.session import ScoringSession


def get_service() -> SqliteEventService:
    settings = get_settings()
    return SqliteEventService(settings.db_path, timeout=settings.db_timeout)


def get_round() -> int:
    return get_settings().current_round


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(get_settings())
    get_service().init_db()
    yield


app = FastAPI(title="Judging Dashboard", lifespan=lifespan)


def require_admin(service: SqliteEventService, event_id: int, admin_password: str) -> None:
    ok = service.check_admin_password(event_id, admin_password)
    if ok is None:
        raise HTTPException(status_code=404, detail="Event not found.")
    if not ok:
        raise HTTPException(status_code=403, detail="Invalid admin password.")


def fmt(value: float) -> str:
    # shortest round-tripping form, so re-rendered values post back unchanged
    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def note_submission(service: SqliteEventService, judge_id: int) -> None:
    """Stamp the judge's last submit time; scores are already stored, so failures are only logged."""
    try:
        service.record_submission(judge_id)
    except sqlite3.Error as e:
        logger.warning("Could not record submission time for judge {}: {}", judge_id, e)


# -----------------------
# Setup text parsing
# -----------------------
def split_lines(raw: str) -> List[str]:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    return list(dict.fromkeys(lines))  # dedupe preserve order


def parse_teams(raw: str) -> List[Tuple[str, str]]:
    """`Team name | Project title` per line; the title is optional."""
    teams: Dict[str, str] = {}
    for line in split_lines(raw):
        name, _, title = line.partition("|")
        if name.strip():
            teams[name.strip()] = title.strip()
    return list(teams.items())


def parse_criteria(raw: str) -> List[Tuple[str, float, float]]:
    """`Criterion name | max score | weight` per line; weight defaults to 1."""
    criteria: List[Tuple[str, float, float]] = []
    seen = set()
    for line in split_lines(raw):
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 2 or not parts[0]:
            raise ValueError(f"Expected 'name | max score | weight': {line}")
        try:
            max_score = float(parts[1])
            weight = float(parts[2]) if len(parts) > 2 and parts[2] else 1.0
        except ValueError:
            raise ValueError(f"Invalid number in: {line}") from None
        if max_score <= 0 or weight <= 0:
            raise ValueError(f"Max score and weight must be positive: {line}")
        if parts[0] not in seen:
            seen.add(parts[0])
            criteria.append((parts[0], max_score, weight))
    return criteria


def parse_assignments(raw: str) -> Dict[str, List[str]]:
    """`Judge name: Team A, Team B` per line."""
    assignments: Dict[str, List[str]] = {}
    for line in split_lines(raw):
        judge_name, sep, teams = line.partition(":")
        if not sep or not judge_name.strip():
            raise ValueError(f"Expected 'judge: team, team': {line}")
        assignments[judge_name.strip()] = [t.strip() for t in teams.split(",") if t.strip()]
    return assignments


# -----------------------
# UI helpers
# -----------------------
def page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    html = f"""
    <html>
      <head>
        <title>{title}</title>
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <style>
          body {{ font-family: system-ui, Arial; max-width: 1100px; margin: 0 auto; padding: 22px; background: #f5f7fa; }}
          input, textarea, button {{ font-size: 16px; padding: 10px; }}
          textarea {{ width: 100%; }}
          .card {{ background: #fff; border: 1px solid #ddd; border-radius: 12px; padding: 16px; margin: 16px 0; }}
          .card.done {{ background: #ecfdf5; }}
          .row {{ display: flex; gap: 12px; flex-wrap: wrap; align-items: center; }}
          .row > * {{ flex: 1; min-width: 220px; }}
          table {{ border-collapse: collapse; width: 100%; }}
          th, td {{ border: 1px solid #ddd; padding: 8px; }}
          th {{ text-align: left; background: #f7f7f7; }}
          .muted {{ color: #666; }}
          .pill {{ display:inline-block; padding:4px 10px; border:1px solid #ddd; border-radius:999px; }}
          a {{ text-decoration: none; }}
          .danger {{ color: #b00020; }}
          .ok {{ color: #2e7d32; }}
          .warn {{ color: #b26a00; }}
          .score-input {{ width: 120px; }}
        </style>
      </head>
      <body>
        <h1>{title}</h1>
        {body}
      </body>
    </html>
    """
    return HTMLResponse(html, status_code=status_code)


def error_page(err: ScoringError, token: Optional[str], status_code: int) -> HTMLResponse:
    debug_rows = f"<tr><th>Token from URL</th><td>{escape(token or 'No token provided')}</td></tr>"
    if isinstance(err, LoadFailure):
        report = err.report
        debug_rows += (
            f"<tr><th>Failed stage</th><td>{escape(report.stage)}</td></tr>"
            f"<tr><th>Completed stages</th><td>{escape(', '.join(report.completed_stages) or '(none)')}</td></tr>"
            f"<tr><th>Judge ID</th><td>{escape(str(report.judge_id or ''))}</td></tr>"
            f"<tr><th>Event ID</th><td>{escape(str(report.event_id or ''))}</td></tr>"
        )
    body = f"""
    <div class="card"><p class="danger">{escape(str(err))}</p></div>
    <div class="card">
      <h3>Debug Information</h3>
      <table><tbody>{debug_rows}</tbody></table>
    </div>
    """
    return page("Judge Dashboard", body, status_code=status_code)


def render_dashboard(session: ScoringSession, token: str, notice: str = "", notice_class: str = "ok") -> HTMLResponse:
    submitted, assigned = session.progress()
    header = f"""
    <div class="card">
      <h2>Welcome, {escape(session.judge.name)}</h2>
      <p>
        <span class="pill">Round {session.round}</span>
        <span class="pill">{assigned} Teams Assigned</span>
        <span class="pill {'ok' if submitted == assigned else 'warn'}">{submitted}/{assigned} Scored</span>
      </p>
    </div>
    """
    if notice:
        header += f'<div class="card"><p class="{notice_class}">{escape(notice)}</p></div>'

    if not session.teams:
        return page("Judge Dashboard", header + '<div class="card muted">No teams have been assigned to you yet.</div>')

    cards = ""
    for team in session.teams:
        done = session.is_submitted(team.id)
        scores = session.get_scores(team.id)
        disabled = " disabled" if done else ""

        rows = ""
        for c in session.criteria:
            lo, hi, step = score_bounds(c)
            value = fmt(scores[c.id]) if c.id in scores else ""
            rows += f"""
            <tr>
              <td>{escape(c.name)}</td>
              <td>
                <input class="score-input" type="number" name="s__{c.id}" value="{value}"
                       min="{fmt(lo)}" max="{fmt(hi)}" step="{step}"{disabled} />
                <span class="muted">Max: {fmt(hi)}</span>
              </td>
              <td>{fmt(c.weight)}x</td>
            </tr>
            """

        cards += f"""
        <div class="card{' done' if done else ''}">
          <div class="row">
            <div>
              <h3>{escape(team.name)}</h3>
              <p class="muted">{escape(team.project_title or 'No project title')}</p>
            </div>
            <div style="text-align:right;">
              <span class="pill {'ok' if done else 'warn'}">{session.status(team.id)}</span>
            </div>
          </div>
          <form method="post" action="/judge/teams/{team.id}/submit">
            <input type="hidden" name="token" value="{escape(token)}" />
            <table>
              <thead><tr><th>Criterion</th><th>Score</th><th>Weight</th></tr></thead>
              <tbody>{rows}</tbody>
            </table>
            <button type="submit" style="margin-top:12px;"{disabled}>
              {'Scores Submitted' if done else 'Submit Scores'}
            </button>
          </form>
        </div>
        """

    if session.all_submitted():
        footer = '<div class="card"><p class="ok">All scores are automatically synced to the admin dashboard!</p></div>'
    else:
        footer = '<div class="card"><p class="muted">Please score all assigned teams before pushing to admin.</p></div>'

    return page("Judge Dashboard", header + cards + footer)


# -----------------------
# Routes: Home
# -----------------------
@app.get("/", response_class=HTMLResponse)
def home():
    return page(
        "Judging Dashboard",
        """
        <div class="card">
          <p><a href="/admin">Admin</a></p>
          <p class="muted">
            Judges open the personal link from their invitation. Each assigned team is scored
            per criterion and submitted once every criterion has a score.
          </p>
        </div>
        """,
    )


# -----------------------
# Routes: Admin
# -----------------------
@app.get("/admin", response_class=HTMLResponse)
def admin_home(service: SqliteEventService = Depends(get_service)):
    rows = ""
    for e in service.list_events():
        rows += f"""
        <tr>
          <td>{e["id"]}</td>
          <td>{escape(e["name"])}</td>
          <td><a href="/admin/event/{e['id']}">Open</a></td>
        </tr>
        """

    body = f"""
    <div class="card">
      <h2>Create Event</h2>
      <form method="post" action="/admin/create">
        <div class="row">
          <input name="event_name" placeholder="Event name (e.g., Spring Hackathon)" required />
          <input name="admin_password" placeholder="Admin password" type="password" required />
        </div>
        <button type="submit">Create</button>
      </form>
      <p class="muted">Save the admin password. You'll need it to edit teams, criteria, judges and assignments.</p>
    </div>

    <div class="card">
      <h2>Existing Events</h2>
      <table>
        <thead><tr><th>ID</th><th>Name</th><th></th></tr></thead>
        <tbody>{rows or '<tr><td colspan="3" class="muted">No events yet.</td></tr>'}</tbody>
      </table>
    </div>
    """
    return page("Admin", body)


@app.post("/admin/create")
def admin_create(
    event_name: str = Form(...),
    admin_password: str = Form(...),
    service: SqliteEventService = Depends(get_service),
):
    event_id = service.create_event(event_name, admin_password)
    return RedirectResponse(url=f"/admin/event/{event_id}", status_code=303)


@app.get("/admin/event/{event_id}", response_class=HTMLResponse)
def admin_event(
    event_id: int,
    request: Request,
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    event = service.get_event(event_id)
    if not event:
        raise HTTPException(404, "Event not found.")

    teams = service.get_teams_for_event(event_id)
    criteria = service.get_criteria_for_event(event_id)
    team_text = "\n".join(f"{t.name} | {t.project_title}" if t.project_title else t.name for t in teams)
    criteria_text = "\n".join(f"{c.name} | {fmt(c.max_score)} | {fmt(c.weight)}" for c in criteria)

    judge_rows = ""
    for p in judge_progress(service, event_id, round):
        link = f"{request.base_url}judge?token={p['judge_token']}"
        state = '<span class="ok">Done</span>' if p["done"] else f"{p['submitted']}/{p['assigned']}"
        judge_rows += (
            f"<tr><td>{escape(p['judge_name'])}</td><td>{state}</td>"
            f"<td>{p['last_submit_at'] or ''}</td><td><a href=\"{escape(link)}\">{escape(link)}</a></td></tr>"
        )
    if not judge_rows:
        judge_rows = '<tr><td colspan="4" class="muted">No judges yet.</td></tr>'

    def setup_form(action: str, field: str, text: str, hint: str, label: str) -> str:
        return f"""
        <form method="post" action="/admin/event/{event_id}/{action}">
          <div class="row">
            <input name="admin_password" placeholder="Admin password" type="password" required />
          </div>
          <textarea name="{field}" rows="5">{escape(text)}</textarea>
          <p class="muted">{hint}</p>
          <button type="submit">{label}</button>
        </form>
        """

    teams_form = setup_form(
        "teams",
        "teams",
        team_text,
        "One team per line: Team name | Project title. Replaces the list; removed teams lose their scores.",
        "Save Teams",
    )
    criteria_form = setup_form(
        "criteria", "criteria", criteria_text, "One criterion per line: Name | max score | weight.", "Save Criteria"
    )
    judges_form = setup_form(
        "judges", "judges", "", "One judge name per line. Existing judges keep their link.", "Add Judges"
    )
    assignments_form = setup_form(
        "assignments", "assignments", "", "One judge per line: Judge name: Team A, Team B", "Save Assignments"
    )

    body = f"""
    <div class="card">
      <p><a href="/admin">&larr; Back to Admin</a></p>
      <h2>{escape(event["name"])}</h2>
      <p class="muted">Round {round} &middot; {len(teams)} teams &middot; {len(criteria)} criteria</p>
    </div>

    <div class="card">
      <h3>Judges</h3>
      <table>
        <thead><tr><th>Judge</th><th>Teams Submitted</th><th>Last Submit</th><th>Personal Link</th></tr></thead>
        <tbody>{judge_rows}</tbody>
      </table>
      <form method="get" action="/admin/event/{event_id}/download/scores" style="margin-top:12px;">
        <div class="row">
          <input name="admin_password" placeholder="Admin password" type="password" required />
        </div>
        <button type="submit">Download Scoresheet CSV</button>
      </form>
    </div>

    <div class="card">
      <h3>Teams</h3>
      {teams_form}
    </div>

    <div class="card">
      <h3>Criteria</h3>
      {criteria_form}
    </div>

    <div class="card">
      <h3>Add Judges</h3>
      {judges_form}
    </div>

    <div class="card">
      <h3>Assignments</h3>
      {assignments_form}
    </div>
    """
    return page(f"Admin Event #{event_id}", body)


def _setup_error(event_id: int, message: str) -> HTMLResponse:
    return page(
        "Admin",
        f'<div class="card"><p class="danger">{escape(message)}</p>'
        f'<p><a href="/admin/event/{event_id}">&larr; Back to Event</a></p></div>',
        status_code=400,
    )


@app.post("/admin/event/{event_id}/teams")
def admin_set_teams(
    event_id: int,
    admin_password: str = Form(...),
    teams: str = Form(""),
    service: SqliteEventService = Depends(get_service),
):
    require_admin(service, event_id, admin_password)
    service.replace_teams(event_id, parse_teams(teams))
    return RedirectResponse(url=f"/admin/event/{event_id}", status_code=303)


@app.post("/admin/event/{event_id}/criteria")
def admin_set_criteria(
    event_id: int,
    admin_password: str = Form(...),
    criteria: str = Form(""),
    service: SqliteEventService = Depends(get_service),
):
    require_admin(service, event_id, admin_password)
    try:
        parsed = parse_criteria(criteria)
    except ValueError as e:
        return _setup_error(event_id, str(e))
    service.replace_criteria(event_id, parsed)
    return RedirectResponse(url=f"/admin/event/{event_id}", status_code=303)


@app.post("/admin/event/{event_id}/judges")
def admin_add_judges(
    event_id: int,
    admin_password: str = Form(...),
    judges: str = Form(""),
    service: SqliteEventService = Depends(get_service),
):
    require_admin(service, event_id, admin_password)
    service.add_judges(event_id, split_lines(judges))
    return RedirectResponse(url=f"/admin/event/{event_id}", status_code=303)


@app.post("/admin/event/{event_id}/assignments")
def admin_set_assignments(
    event_id: int,
    admin_password: str = Form(...),
    assignments: str = Form(""),
    service: SqliteEventService = Depends(get_service),
):
    require_admin(service, event_id, admin_password)
    try:
        service.set_assignments(event_id, parse_assignments(assignments))
    except ValueError as e:
        return _setup_error(event_id, str(e))
    return RedirectResponse(url=f"/admin/event/{event_id}", status_code=303)


@app.get("/admin/event/{event_id}/download/scores")
def download_scores(
    event_id: int,
    admin_password: str,
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    require_admin(service, event_id, admin_password)
    sheet = event_scoresheet(service, event_id, round)

    buf = StringIO()
    sheet.to_csv(buf, index=False)
    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="event_{event_id}_round_{round}_scores.csv"'},
    )


# -----------------------
# Routes: Judge
# -----------------------
LOAD_ERROR_STATUS = {MissingToken: 400, InvalidToken: 403, LoadFailure: 500}


@app.get("/judge", response_class=HTMLResponse)
def judge_dashboard(
    token: Optional[str] = None,
    notice: str = "",
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    try:
        session = ScoringSession.load(token, service, round=round)
    except (MissingToken, InvalidToken, LoadFailure) as e:
        return error_page(e, token, LOAD_ERROR_STATUS[type(e)])

    message = "Scores submitted successfully!" if notice == "submitted" else ""
    return render_dashboard(session, token, notice=message)


@app.post("/judge/teams/{team_id}/submit")
async def judge_submit(
    team_id: int,
    request: Request,
    token: str = Form(""),
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    try:
        session = ScoringSession.load(token, service, round=round)
    except (MissingToken, InvalidToken, LoadFailure) as e:
        return error_page(e, token, LOAD_ERROR_STATUS[type(e)])

    form = await request.form()
    for c in session.criteria:
        session.set_score(team_id, c.id, form.get(f"s__{c.id}"))

    try:
        submitted = session.submit(team_id)
    except UnknownTeam as e:
        return error_page(e, token, 404)
    except (IncompleteSubmission, PersistenceFailure) as e:
        return render_dashboard(session, token, notice=str(e), notice_class="danger")

    if not submitted:
        return RedirectResponse(url=f"/judge?token={token}", status_code=303)

    note_submission(service, session.judge.id)
    return RedirectResponse(url=f"/judge?token={token}&notice=submitted", status_code=303)


# -----------------------
# Routes: Judge JSON API
# -----------------------
def load_or_raise(token: Optional[str], service: SqliteEventService, round: int) -> ScoringSession:
    try:
        return ScoringSession.load(token, service, round=round)
    except LoadFailure as e:
        raise HTTPException(500, detail={"message": str(e), "diagnostics": e.report.as_dict()})
    except (MissingToken, InvalidToken) as e:
        raise HTTPException(LOAD_ERROR_STATUS[type(e)], detail={"message": str(e)})


@app.get("/api/judge/session", response_model=SessionView)
def api_session(
    token: Optional[str] = None,
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    return SessionView.from_session(load_or_raise(token, service, round))


@app.post("/api/judge/teams/{team_id}/submit", response_model=SubmitResponse)
def api_submit(
    team_id: int,
    body: SubmitRequest,
    service: SqliteEventService = Depends(get_service),
    round: int = Depends(get_round),
):
    session = load_or_raise(body.token, service, round)
    try:
        session.team(team_id)
    except UnknownTeam as e:
        raise HTTPException(404, detail={"message": str(e)})

    ignored = []
    if not session.is_submitted(team_id):
        for c in session.criteria:
            key = str(c.id)
            if key in body.scores and not session.set_score(team_id, c.id, body.scores[key]):
                ignored.append(key)

    try:
        submitted = session.submit(team_id)
    except IncompleteSubmission as e:
        raise HTTPException(
            422, detail={"message": str(e), "missing": [str(m) for m in e.missing], "ignored": ignored}
        )
    except PersistenceFailure as e:
        raise HTTPException(503, detail={"message": str(e), "criterion_id": str(e.criterion_id)})

    if submitted:
        note_submission(service, session.judge.id)
    return SubmitResponse(
        team_id=team_id,
        status=session.status(team_id),
        submitted=submitted,
        ignored=ignored,
        message="Scores submitted successfully!" if submitted else None,
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info("Starting judging dashboard on {}:{}", settings.server_host, settings.server_port)
    uvicorn.run("judging.main:app", host=settings.server_host, port=settings.server_port)
