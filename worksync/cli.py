"""
Operator CLI commands registered on the Flask app.

    flask seed-demo                      # sample projects, services, tasks, users
    flask show-view --user u1 --view kanban
    flask scan-deadlines --user u1

Each command runs its coroutine with ``asyncio.run`` inside the app
context created by the Flask CLI.
"""

import asyncio
import json
import logging
from datetime import timedelta

import click
from flask import current_app

from worksync.core.exceptions import ValidationError
from worksync.integrations.document_store import DocumentStore
from worksync.models.entities import PROJECTS, SERVICES, STATUSES, TASKS, USERS
from worksync.services.view_projector import (
    BoardProjection,
    HomeProjection,
    InboxProjection,
    ListProjection,
    MAIN_VIEWS,
    ProjectDetailProjection,
)
from worksync.services.workspace_session import WorkspaceSession
from worksync.utils.helpers import time_ago, to_iso, utcnow

logger = logging.getLogger(__name__)


# ── Demo data ────────────────────────────────────────────────────────────────

DEMO_USERS = (
    ("demo-admin", "admin@worksync.dev", "admin"),
    ("demo-ana", "ana@worksync.dev", "user"),
    ("demo-ben", "ben@worksync.dev", "user"),
)


async def seed_demo(store: DocumentStore) -> dict:
    """Write a small, self-consistent workspace. Returns counts per collection."""
    now = utcnow()
    counts = {USERS: 0, PROJECTS: 0, SERVICES: 0, TASKS: 0}

    for uid, email, role in DEMO_USERS:
        await store.set(USERS, uid, {
            "uid": uid,
            "email": email,
            "displayName": email.split("@")[0],
            "role": role,
        })
        counts[USERS] += 1

    website = await store.create(PROJECTS, {"name": "Website Relaunch", "color": "#667eea",
                                            "userId": "demo-admin"})
    mobile = await store.create(PROJECTS, {"name": "Mobile App", "color": "#f5576c",
                                           "userId": "demo-admin"})
    counts[PROJECTS] += 2

    design = await store.create(SERVICES, {"name": "Design", "description": "UI and branding",
                                           "projectId": website, "userId": "demo-admin"})
    content = await store.create(SERVICES, {"name": "Content", "description": "Copy and SEO",
                                            "projectId": website, "userId": "demo-admin"})
    release = await store.create(SERVICES, {"name": "Release", "description": "Store submission",
                                            "projectId": mobile, "userId": "demo-admin"})
    counts[SERVICES] += 3

    tasks = [
        ("Homepage wireframes", website, design, "inProgress", "high", ["demo-ana"], 20),
        ("Brand colour review", website, design, "clientChecking", "medium", ["demo-ana", "demo-ben"], 30),
        ("Landing page copy", website, content, "todo", "medium", "__ALL__", 72),
        ("SEO keyword list", website, content, "completed", "low", [], None),
        ("App store screenshots", mobile, release, "todo", "high", ["demo-ben"], 6),
        ("Beta feedback triage", mobile, release, "todo", "medium", [], None),
    ]
    for title, project_id, service_id, status, priority, assigned, due_in_hours in tasks:
        await store.create(TASKS, {
            "title": title,
            "description": "",
            "dueDate": to_iso(now + timedelta(hours=due_in_hours)) if due_in_hours else None,
            "priority": priority,
            "status": status,
            "projectId": project_id,
            "serviceId": service_id,
            "assignedTo": assigned,
            "watchers": [],
            "checklist": [],
            "tags": [],
            "userId": "demo-admin",
        })
        counts[TASKS] += 1
    return counts


# ── Projection rendering ─────────────────────────────────────────────────────

def _item_line(item, cache) -> str:
    due = item.due_date.strftime("%Y-%m-%d %H:%M") if item.due_date else "-"
    return (f"  [{item.status}] {item.title}  (project: {cache.project_name(item.project_id)}, "
            f"service: {cache.service_name(item.service_id)}, "
            f"assignee: {cache.assignee_label(item)}, due: {due})")


def describe_projection(projection, cache, now=None) -> list:
    """Plain-text lines for one projection."""
    now = now or utcnow()
    lines = [f"View: {projection.view}"]
    if isinstance(projection, ListProjection):
        lines.extend(_item_line(i, cache) for i in projection.items)
    elif isinstance(projection, BoardProjection):
        for lane in STATUSES:
            lines.append(f"{lane} ({len(projection.lanes[lane])})")
            lines.extend(_item_line(i, cache) for i in projection.lanes[lane])
    elif isinstance(projection, HomeProjection):
        s = projection.stats
        lines.append(f"total={s.total} in_progress={s.in_progress} completed={s.completed} "
                     f"overdue={s.overdue} completion={s.completion_rate}%")
        lines.append("My work:")
        lines.extend(_item_line(i, cache) for i in projection.my_work)
        lines.append(f"Assigned to me ({projection.assigned_total}):")
        lines.extend(_item_line(i, cache) for i in projection.assigned_to_me)
    elif isinstance(projection, ProjectDetailProjection):
        lines.append(f"Project: {projection.project_name}")
        lines.extend(f"  {s.service.name}: {s.item_count} task(s)" for s in projection.services)
    elif isinstance(projection, InboxProjection):
        lines.append(f"counts: {projection.counts}")
        for e in projection.entries:
            marker = " " if e.read else "*"
            when = f" ({time_ago(e.timestamp, now)})" if e.timestamp else ""
            lines.append(f" {marker}[{e.type}] {e.title}: {e.message}{when}")
    return lines


async def _show_view(store, config, user_id, email, view, layout, quick_filter,
                     project_id, service_id, search="") -> list:
    session = WorkspaceSession(store, config)
    await session.start(user_id, email)
    try:
        await session.wait_until_synced()
        session.set_view(view)
        session.set_quick_filter(quick_filter)
        session.set_search(search)
        session.set_layout(layout)
        if project_id:
            session.open_project(project_id)
        if service_id:
            session.open_service(service_id)
        lines = describe_projection(session.project(), session.cache)
        lines.append("Badges: " + json.dumps(session.badges().to_dict(), sort_keys=True))
        return lines
    finally:
        session.end()


async def _scan_deadlines(store, config, user_id, email) -> dict:
    session = WorkspaceSession(store, config)
    await session.start(user_id, email)
    try:
        await session.wait_until_synced()
        result = await session.notifications.evaluate_deadlines()
        await session.settle()
        return result.to_dict()
    finally:
        session.end()


# ── Registration ─────────────────────────────────────────────────────────────

def _run(coro):
    """Run a session coroutine; rejected input becomes a click usage error."""
    try:
        return asyncio.run(coro)
    except ValidationError as exc:
        detail = "; ".join(f"{k}: {v}" for k, v in exc.details.items())
        raise click.ClickException(f"{exc} ({detail})" if detail else str(exc)) from exc


def init_cli(app):
    """Attach the operator commands to ``app.cli``."""

    @app.cli.command("seed-demo")
    def seed_demo_cmd():
        """Populate the store with a demo workspace."""
        counts = asyncio.run(seed_demo(DocumentStore.from_config(current_app.config)))
        logger.info("Seeded demo workspace: %s", counts)
        click.echo(json.dumps(counts, sort_keys=True))

    @app.cli.command("show-view")
    @click.option("--user", "user_id", required=True, help="Actor id (identity-provider subject).")
    @click.option("--email", default="", help="Actor email; decides admin privilege.")
    @click.option("--view", type=click.Choice(MAIN_VIEWS), default="home", show_default=True)
    @click.option("--layout", type=click.Choice(["list", "board"]), default="list", show_default=True)
    @click.option("--quick-filter", type=click.Choice(["all", "today", "upcoming", "completed"]),
                  default="all", show_default=True)
    @click.option("--project", "project_id", default=None)
    @click.option("--service", "service_id", default=None)
    @click.option("--search", default="", help="Search title, description and tags (list and kanban).")
    def show_view_cmd(user_id, email, view, layout, quick_filter, project_id, service_id, search):
        """Print one projection and the badge counts for a user."""
        store = DocumentStore.from_config(current_app.config)
        lines = _run(_show_view(store, current_app.config, user_id, email, view, layout,
                                quick_filter, project_id, service_id, search))
        for line in lines:
            click.echo(line)

    @app.cli.command("scan-deadlines")
    @click.option("--user", "user_id", required=True)
    @click.option("--email", default="")
    def scan_deadlines_cmd(user_id, email):
        """Run one deadline evaluation for a user."""
        store = DocumentStore.from_config(current_app.config)
        result = _run(_scan_deadlines(store, current_app.config, user_id, email))
        click.echo(json.dumps(result, sort_keys=True))
