"""CLI entry point for the work engine."""

import json
import logging
import os
import sys

import click

from work_engine.config import get_config
from work_engine.core import agents as agents_mod
from work_engine.core import projects as projects_mod
from work_engine.core import work_tasks as work_tasks_mod
from work_engine.core.errors import WorkTaskError
from work_engine.core.repo_map import RepoMapIndexer
from work_engine.core.service import WorkTaskService
from work_engine.core.sessions import list_sessions_for_task
from work_engine.db.engine import get_db
from work_engine.integrations import slack as slack_mod
from work_engine.process.supervisor import ClaudeProcessSupervisor


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _make_service(db, config) -> WorkTaskService:
    supervisor = ClaudeProcessSupervisor.from_config(config)
    return WorkTaskService(db, supervisor, config, indexer=RepoMapIndexer())


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "agent_id": task.agent_id,
        "project_id": task.project_id,
        "session_id": task.session_id,
        "source": task.source,
        "source_id": task.source_id,
        "requester_info": task.requester_info,
        "description": task.description,
        "branch_name": task.branch_name,
        "worktree_dir": task.worktree_dir,
        "iteration_count": task.iteration_count,
        "status": task.status,
        "pr_url": task.pr_url,
        "summary": task.summary,
        "error": task.error,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


def _echo_outcome(task):
    click.echo(f"Work task {task.id}: {task.status}")
    if task.branch_name:
        click.echo(f"  Branch: {task.branch_name}")
    click.echo(f"  Iterations: {task.iteration_count}")
    if task.pr_url:
        click.echo(f"  PR: {task.pr_url}")
    if task.error:
        click.echo(f"  Error: {task.error}", err=True)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """we - Work Engine CLI"""
    config = get_config()
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


SHELL_NOTE = "Run without a shell; wrap '&&' or pipes in sh -c '...'."


@project_group.command("add")
@click.argument("name")
@click.option("--working-dir", default=".", help="Path to the git repository")
@click.option("--branch", default="main", help="Default branch name")
@click.option("--install-command", default=None, help=f"Dependency install command. {SHELL_NOTE}")
@click.option("--check-command", default=None, help=f"Static check command. {SHELL_NOTE}")
@click.option("--test-command", default=None, help=f"Test command. {SHELL_NOTE}")
@click.option("--slack-channel", default=None, help="Slack channel for task outcomes")
def project_add(name, working_dir, branch, install_command, check_command, test_command, slack_channel):
    """Register a project."""
    working_dir = os.path.abspath(working_dir)
    project_id = agents_mod.slugify(name)

    with _get_db() as db:
        project = projects_mod.create_project(
            db, project_id, name, working_dir, branch,
            install_command=install_command,
            check_command=check_command,
            test_command=test_command,
            slack_channel=slack_channel,
        )
        click.echo(f"Project created: {project.id} ({project.name})")
        click.echo(f"  Working dir: {project.working_dir}")
        click.echo(f"  Branch: {project.default_branch}")


@project_group.command("update")
@click.argument("project_id")
@click.option("--working-dir", default=None, help="Path to the git repository")
@click.option("--branch", default=None, help="Default branch name")
@click.option("--install-command", default=None, help=f"Dependency install command. {SHELL_NOTE}")
@click.option("--check-command", default=None, help=f"Static check command. {SHELL_NOTE}")
@click.option("--test-command", default=None, help=f"Test command. {SHELL_NOTE}")
@click.option("--slack-channel", default=None, help="Slack channel for task outcomes")
def project_update(project_id, working_dir, branch, install_command, check_command, test_command, slack_channel):
    """Change a project's settings."""
    with _get_db() as db:
        if not projects_mod.get_project(db, project_id):
            click.echo(f"Project not found: {project_id}", err=True)
            sys.exit(1)
        project = projects_mod.update_project(
            db, project_id,
            working_dir=os.path.abspath(working_dir) if working_dir else None,
            default_branch=branch,
            install_command=install_command,
            check_command=check_command,
            test_command=test_command,
            slack_channel=slack_channel,
        )
        click.echo(f"Project updated: {project.id} ({project.name})")


@project_group.command("list")
def project_list():
    """List projects."""
    with _get_db() as db:
        projects = projects_mod.list_projects(db)
        if not projects:
            click.echo("No projects found.")
            return
        for p in projects:
            click.echo(f"  {p.id}: {p.name} ({p.working_dir})")


# ── Agent Commands ────────────────────────────────────────────────────────────


@main.group("agent")
def agent_group():
    """Manage agents."""
    pass


@agent_group.command("add")
@click.argument("name")
@click.option("--project", default=None, help="Default project ID")
@click.option("--model", default=None, help="Model passed to the session")
@click.option("--permission-mode", default="acceptEdits", help="Session permission mode")
def agent_add(name, project, model, permission_mode):
    """Register an agent."""
    with _get_db() as db:
        if project and not projects_mod.get_project(db, project):
            click.echo(f"Project not found: {project}", err=True)
            sys.exit(1)
        agent = agents_mod.create_agent(
            db, name, default_project_id=project, model=model, permission_mode=permission_mode
        )
        click.echo(f"Agent created: {agent.id} ({agent.name})")


@agent_group.command("list")
def agent_list():
    """List agents."""
    with _get_db() as db:
        agents = agents_mod.list_agents(db)
        if not agents:
            click.echo("No agents found.")
            return
        for a in agents:
            default = f" [project: {a.default_project_id}]" if a.default_project_id else ""
            click.echo(f"  {a.id}: {a.name}{default}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Run and inspect work tasks."""
    pass


@task_group.command("create")
@click.argument("agent_id")
@click.argument("description")
@click.option("--project", default=None, help="Project ID (defaults to the agent's project)")
@click.option("--source", default="cli", help="Source tag recorded on the task")
@click.option("--timeout", default=None, type=float, help="Give up waiting after N seconds")
def task_create(agent_id, description, project, source, timeout):
    """Create a work task and run it to completion in the foreground."""
    config = get_config()
    with _get_db() as db:
        service = _make_service(db, config)
        try:
            task = service.create(
                agent_id, description, project_id=project, source=source,
                requester_info={"user": os.environ.get("USER", "")},
            )
        except WorkTaskError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

        click.echo(f"Created work task: {task.id}")
        if task.branch_name:
            click.echo(f"  Branch: {task.branch_name}")

        project_obj = projects_mod.get_project(db, task.project_id)
        if config.slack_bot_token and project_obj and project_obj.slack_channel:
            service.on_complete(
                task.id,
                slack_mod.completion_notifier(config.slack_bot_token, project_obj.slack_channel),
            )

        try:
            final = service.wait_for(task.id, timeout=timeout)
        except KeyboardInterrupt:
            click.echo("Interrupted, cancelling work task...", err=True)
            final = service.cancel_task(task.id)

        if final is None:
            click.echo(f"Timed out waiting for work task {task.id}; cancelling.", err=True)
            final = service.cancel_task(task.id)

        _echo_outcome(final)
        if final.status != "completed":
            sys.exit(1)


@task_group.command("list")
@click.option("--agent", default=None, help="Filter by agent ID")
@click.option("--project", default=None, help="Filter by project ID")
@click.option("--status", default=None, help="Filter by status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(agent, project, status, json_output):
    """List work tasks."""
    with _get_db() as db:
        tasks = work_tasks_mod.list_work_tasks(db, agent_id=agent, project_id=project, status=status)

        if json_output:
            click.echo(json.dumps([_task_dict(t) for t in tasks], indent=2))
            return

        if not tasks:
            click.echo("No work tasks found.")
            return

        status_icons = {
            "pending": "○",
            "branching": "◐",
            "running": "●",
            "validating": "◑",
            "completed": "✓",
            "failed": "✗",
        }
        for task in tasks:
            icon = status_icons.get(task.status, "?")
            pr = f" [{task.pr_url}]" if task.pr_url else ""
            click.echo(f"  {icon} {task.id}: {task.description[:60]} ({task.status}){pr}")


@task_group.command("show")
@click.argument("task_id")
def task_show(task_id):
    """Show work task details and history."""
    with _get_db() as db:
        task = work_tasks_mod.get_work_task(db, task_id)
        if not task:
            click.echo(f"Work task not found: {task_id}", err=True)
            sys.exit(1)

        click.echo(f"Work task: {task.id}")
        click.echo(f"  Description: {task.description}")
        click.echo(f"  Status: {task.status}")
        click.echo(f"  Agent: {task.agent_id}")
        click.echo(f"  Project: {task.project_id}")
        click.echo(f"  Source: {task.source}")
        if task.branch_name:
            click.echo(f"  Branch: {task.branch_name}")
        if task.worktree_dir:
            click.echo(f"  Worktree: {task.worktree_dir}")
        click.echo(f"  Iterations: {task.iteration_count}")
        if task.pr_url:
            click.echo(f"  PR: {task.pr_url}")
        if task.error:
            click.echo(f"  Error: {task.error}")
        if task.summary:
            click.echo(f"  Summary: {task.summary}")
        if task.created_at:
            click.echo(f"  Created: {task.created_at}")
        if task.completed_at:
            click.echo(f"  Completed: {task.completed_at}")

        sessions = list_sessions_for_task(db, task_id)
        if sessions:
            click.echo("  Sessions:")
            for i, s in enumerate(sessions, 1):
                click.echo(f"    {i}. {s.id} ({s.name})")

        events = work_tasks_mod.get_work_task_events(db, task_id)
        if events:
            click.echo("  History:")
            for e in events:
                click.echo(f"    [{e.created_at}] {e.event_type}: {e.old_value} -> {e.new_value}")


@task_group.command("cancel")
@click.argument("task_id")
def task_cancel(task_id):
    """Cancel a work task and remove its worktree.

    A session hosted by another `we task create` process is stopped by that
    process when it next checks the task, within about a second.
    """
    config = get_config()
    with _get_db() as db:
        service = _make_service(db, config)
        task = service.cancel_task(task_id)
        if not task:
            click.echo(f"Work task not found: {task_id}", err=True)
            sys.exit(1)
        click.echo(f"Work task {task.id}: {task.status}")
        if task.error:
            click.echo(f"  Error: {task.error}")


# ── Maintenance ───────────────────────────────────────────────────────────────


@main.command("recover")
def recover():
    """Fail work tasks left active by a crashed run and remove their worktrees."""
    config = get_config()
    with _get_db() as db:
        service = _make_service(db, config)
        recovered = service.recover_stale_tasks()
        if not recovered:
            click.echo("No stale work tasks.")
            return
        for task in recovered:
            click.echo(f"  Recovered {task.id}: {task.description[:60]}")
