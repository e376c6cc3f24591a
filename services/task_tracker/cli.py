#!/usr/bin/env python3
"""
Task Tracker CLI Tool
Part of the Task Tracker Microservice

This CLI tool sends signed push deliveries to a running Task Tracker
Service (hand-written, sample, or replayed from a local Git repository),
renders the leaderboard and activity feed, and seeds teams directly into
the database.
"""

import asyncio
import json
import sys
from typing import Dict, Any, List, Optional

import click
import httpx
from git import Repo, InvalidGitRepositoryError, NoSuchPathError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import get_settings, get_webhook_secret
from services.task_tracker.security import sign_payload

console = Console()

SAMPLE_DELIVERIES: Dict[str, Dict[str, Any]] = {
    "Task completion via commit message": {
        "ref": "refs/heads/web",
        "commits": [
            {
                "id": "abc123def456",
                "message": "Task 1 Done - Implemented login page",
                "added": ["team1/web/login.tsx"],
                "modified": ["team1/web/app.tsx"],
                "removed": [],
            },
        ],
    },
    "Task completion via file pattern": {
        "ref": "refs/heads/android",
        "commits": [
            {
                "id": "xyz789",
                "message": "Added task solution",
                "added": ["team-alpha/android/task2_solution.kt"],
                "modified": [],
                "removed": [],
            },
        ],
    },
    "Multiple signals for one task": {
        "ref": "refs/heads/core",
        "commits": [
            {
                "id": "multi123",
                "message": "Completed Task 3 - Final implementation",
                "added": ["team2/core/task3_final.py"],
                "modified": ["team2/core/README.md"],
                "removed": [],
            },
        ],
    },
}


def build_push_payload(ref: str, commits: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Minimal GitHub push payload accepted by the webhook."""
    if not ref.startswith("refs/"):
        ref = f"refs/heads/{ref}"
    return {"ref": ref, "commits": commits}


def commit_to_payload(commit) -> Dict[str, Any]:
    """Describe a GitPython commit the way a push delivery does."""
    added, modified, removed = [], [], []
    if commit.parents:
        for diff in commit.parents[0].diff(commit):
            if diff.change_type == "A":
                added.append(diff.b_path)
            elif diff.change_type == "D":
                removed.append(diff.a_path)
            elif diff.change_type == "R":
                removed.append(diff.a_path)
                added.append(diff.b_path)
            else:
                modified.append(diff.b_path or diff.a_path)
    else:
        added = [item.path for item in commit.tree.traverse() if item.type == "blob"]

    return {
        "id": commit.hexsha,
        "message": commit.message.strip(),
        "added": added,
        "modified": modified,
        "removed": removed,
    }


def payload_from_repository(repo_path: str, count: int, branch: Optional[str] = None) -> Dict[str, Any]:
    """Push payload for the last ``count`` commits of a local repository, oldest first."""
    try:
        repo = Repo(repo_path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        raise click.ClickException(f"Invalid Git repository: {repo_path}")

    if branch is None:
        if repo.head.is_detached:
            raise click.ClickException("HEAD is detached; pass --branch")
        branch = repo.active_branch.name

    commits = list(repo.iter_commits(branch, max_count=count))
    commits.reverse()
    return build_push_payload(branch, [commit_to_payload(commit) for commit in commits])


class TaskTrackerCLI:
    """CLI interface for the Task Tracker Service."""

    def __init__(self, base_url: Optional[str] = None, secret: Optional[str] = None):
        self.settings = get_settings()
        self.base_url = base_url or f"http://localhost:{self.settings.service.task_tracker_port}"
        self.secret = secret or get_webhook_secret(self.settings)
        self.client = httpx.AsyncClient(timeout=float(self.settings.service.request_timeout))

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.aclose()

    async def send_delivery(self, payload: Dict[str, Any]) -> httpx.Response:
        """POST a push payload signed with the shared secret."""
        if not self.secret:
            raise click.ClickException(
                "No webhook secret; set GITHUB_WEBHOOK_SECRET or pass --secret"
            )
        body = json.dumps(payload).encode("utf-8")
        try:
            return await self.client.post(
                f"{self.base_url}/api/github-webhook",
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "X-GitHub-Event": "push",
                    "X-Hub-Signature-256": sign_payload(body, self.secret),
                },
            )
        except httpx.ConnectError:
            raise click.ClickException("Could not connect to Task Tracker Service. Is it running?")

    async def get_json(self, path: str, **params) -> Any:
        try:
            response = await self.client.get(f"{self.base_url}{path}", params=params)
        except httpx.ConnectError:
            raise click.ClickException("Could not connect to Task Tracker Service. Is it running?")
        if response.status_code != 200:
            raise click.ClickException(
                f"API Error: {response.json().get('error', 'Unknown error')}"
            )
        return response.json()


def display_delivery_result(title: str, payload: Dict[str, Any], response: httpx.Response):
    """Show what was sent and how the service answered."""
    files = [
        path
        for commit in payload["commits"]
        for path in [*commit.get("added", []), *commit.get("modified", [])]
    ]
    summary = (
        f"Branch: {payload['ref']}\n"
        f"Commits: {len(payload['commits'])}\n"
        f"Files: {', '.join(files) or '-'}\n"
        f"Status: {response.status_code}"
    )
    style = "green" if response.is_success else "red"
    console.print(Panel(summary, title=title, border_style=style))

    data = response.json()
    if "results" not in data:
        console.print(f"[dim]{data.get('message') or data.get('error')}[/dim]")
        return

    table = Table(title="Task Completions", show_header=True, header_style="bold magenta")
    table.add_column("Team", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Task", style="white")
    table.add_column("Status", style="green")
    for result in data["results"]:
        table.add_row(result["team"], result["category"], str(result["task"]), result["status"])
    console.print(table)


def display_leaderboard(category: str, entries: List[Dict[str, Any]]):
    if not entries:
        console.print(Panel("No teams on the board yet.", title=f"{category} Leaderboard"))
        return

    table = Table(title=f"{category} Leaderboard", show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", width=4)
    table.add_column("Team", style="cyan")
    table.add_column("Tasks", style="white")
    table.add_column("Milestones", style="green")
    table.add_column("Done", style="yellow")
    table.add_column("Last Active", style="blue")
    for rank, entry in enumerate(entries, start=1):
        milestones = "".join("●" if reached else "○" for reached in entry["milestones"])
        table.add_row(
            str(rank),
            entry["name"],
            str(entry["tasksCompleted"]),
            milestones,
            f"{entry['completionPercentage']}%",
            (entry.get("lastActive") or "")[:19],
        )
    console.print(table)


def display_activity(activities: List[Dict[str, Any]]):
    if not activities:
        console.print(Panel("No activity yet.", title="Activity"))
        return

    table = Table(title="Recent Activity", show_header=True, header_style="bold magenta")
    table.add_column("Time", style="blue")
    table.add_column("Team", style="cyan")
    table.add_column("Category", style="yellow")
    table.add_column("Message", style="white")
    for activity in activities:
        table.add_row(
            activity["timestamp"][:19],
            activity["team"]["name"],
            activity["category"],
            activity["message"],
        )
    console.print(table)


def _run(coro):
    try:
        return asyncio.run(coro)
    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]Error: {str(e)}[/red]")
        sys.exit(1)


@click.group()
@click.version_option(version="1.0.0")
@click.option("--url", envvar="TASK_TRACKER_URL", help="Service base URL")
@click.option("--secret", envvar="GITHUB_WEBHOOK_SECRET", help="Webhook secret used to sign deliveries")
@click.pass_context
def cli(ctx, url: Optional[str], secret: Optional[str]):
    """Task Tracker CLI - send push deliveries and inspect the leaderboard."""
    ctx.obj = {"url": url, "secret": secret}


@cli.command()
@click.option("--ref", "-r", default="refs/heads/web", show_default=True, help="Pushed ref or branch")
@click.option("--message", "-m", required=True, help="Commit message")
@click.option("--added", "-a", multiple=True, help="Added file path (repeatable)")
@click.option("--modified", "-M", multiple=True, help="Modified file path (repeatable)")
@click.option("--commit-id", default="0000000000000000000000000000000000000000", help="Commit hash")
@click.pass_context
def send(ctx, ref: str, message: str, added, modified, commit_id: str):
    """Send a single-commit push delivery."""
    payload = build_push_payload(ref, [{
        "id": commit_id,
        "message": message,
        "added": list(added),
        "modified": list(modified),
        "removed": [],
    }])

    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            response = await tool.send_delivery(payload)
            display_delivery_result("Push Delivery", payload, response)

    _run(run())


@cli.command()
@click.pass_context
def samples(ctx):
    """Send the bundled sample deliveries."""
    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            for title, payload in SAMPLE_DELIVERIES.items():
                response = await tool.send_delivery(payload)
                display_delivery_result(title, payload, response)

    _run(run())


@cli.command()
@click.option("--repo-path", "-p", default=".", help="Path to Git repository (default: current directory)")
@click.option("--branch", "-b", help="Branch to replay (default: active branch)")
@click.option("--count", "-n", default=1, show_default=True, help="Number of recent commits to include")
@click.option("--dry-run", is_flag=True, help="Print the payload instead of sending it")
@click.pass_context
def replay(ctx, repo_path: str, branch: Optional[str], count: int, dry_run: bool):
    """Replay recent commits of a local repository as a push delivery."""
    payload = payload_from_repository(repo_path, count, branch)
    if dry_run:
        console.print_json(json.dumps(payload))
        return

    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            response = await tool.send_delivery(payload)
            display_delivery_result("Replayed Push", payload, response)

    _run(run())


@cli.command()
@click.option("--category", "-c", default="Global", show_default=True, help="Web, Android, Core or Global")
@click.pass_context
def leaderboard(ctx, category: str):
    """Display the leaderboard for a category."""
    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            entries = await tool.get_json("/api/leaderboard", category=category)
            display_leaderboard(category, entries)

    _run(run())


@cli.command()
@click.option("--limit", "-l", default=20, show_default=True, help="Number of records to display")
@click.pass_context
def activity(ctx, limit: int):
    """Display recent task completions."""
    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            display_activity(await tool.get_json("/api/activity", limit=limit))

    _run(run())


@cli.command()
@click.pass_context
def status(ctx):
    """Check the status of the Task Tracker Service."""
    async def run():
        async with TaskTrackerCLI(ctx.obj["url"], ctx.obj["secret"]) as tool:
            try:
                response = await tool.client.get(f"{tool.base_url}/health")
            except httpx.ConnectError:
                console.print("[red]Task Tracker Service is not responding[/red]")
                sys.exit(1)
            health = response.json()
            if response.status_code == 200:
                console.print("[green]Task Tracker Service is running[/green]")
            else:
                console.print("[red]Task Tracker Service is unhealthy[/red]")
            console.print(f"[dim]Database: {health.get('database', 'unknown')}[/dim]")

    _run(run())


@cli.command()
@click.argument("names", nargs=-1)
def seed(names):
    """Create teams with empty progress (default: configured seed teams)."""
    from shared.database import DatabaseManager, DatabaseService, init_database

    settings = get_settings()
    names = list(names) or settings.leaderboard.seed_teams

    async def run():
        db = DatabaseManager(settings=settings)
        try:
            await init_database(db)
            teams = await DatabaseService(db).seed_teams(names)
        finally:
            await db.close()
        for team in teams:
            console.print(f"[green]Seeded team: {team.name}[/green]")

    _run(run())


if __name__ == "__main__":
    cli()
