"""
Unit tests for the task tracker CLI.

Covers payload building, Git commit conversion, and the click commands
with the HTTP side mocked out.
"""

import json
import shutil
from unittest.mock import AsyncMock, Mock, patch

import httpx
import pytest
from click.testing import CliRunner

from services.task_tracker.cli import (
    SAMPLE_DELIVERIES,
    TaskTrackerCLI,
    build_push_payload,
    cli,
    commit_to_payload,
    payload_from_repository,
)
from services.task_tracker.security import sign_payload, verify_signature


def delivery_response(data, status_code=200):
    return httpx.Response(status_code, json=data)


class TestPayloadBuilding:
    """Test cases for push payload helpers."""

    def test_branch_name_is_expanded(self):
        assert build_push_payload("web", [])["ref"] == "refs/heads/web"

    def test_full_ref_is_kept(self):
        assert build_push_payload("refs/heads/core", [])["ref"] == "refs/heads/core"

    def test_samples_are_push_events(self):
        for payload in SAMPLE_DELIVERIES.values():
            assert payload["ref"].startswith("refs/heads/")
            assert payload["commits"]


class TestCommitToPayload:
    """Test cases for commit_to_payload."""

    @pytest.fixture
    def mock_commit(self):
        """Create a mock Git commit with one parent."""
        diffs = [
            Mock(change_type="A", a_path=None, b_path="team1/web/task1.js"),
            Mock(change_type="M", a_path="team1/web/app.tsx", b_path="team1/web/app.tsx"),
            Mock(change_type="D", a_path="team1/web/old.js", b_path=None),
            Mock(change_type="R", a_path="team1/web/a.js", b_path="team1/web/b.js"),
        ]
        parent = Mock()
        parent.diff.return_value = diffs
        commit = Mock()
        commit.hexsha = "abc123def456"
        commit.message = "Task 1 Done\n\nLong description\n"
        commit.parents = [parent]
        return commit

    def test_classifies_changes(self, mock_commit):
        payload = commit_to_payload(mock_commit)

        assert payload["id"] == "abc123def456"
        assert payload["message"] == "Task 1 Done\n\nLong description"
        assert payload["added"] == ["team1/web/task1.js", "team1/web/b.js"]
        assert payload["modified"] == ["team1/web/app.tsx"]
        assert payload["removed"] == ["team1/web/old.js", "team1/web/a.js"]

    def test_initial_commit_adds_every_blob(self):
        commit = Mock()
        commit.hexsha = "root"
        commit.message = "Initial commit"
        commit.parents = []
        commit.tree.traverse.return_value = [
            Mock(type="tree", path="team1"),
            Mock(type="blob", path="team1/core/task1.py"),
        ]

        payload = commit_to_payload(commit)

        assert payload["added"] == ["team1/core/task1.py"]
        assert payload["modified"] == []


class TestPayloadFromRepository:
    """Test cases for payload_from_repository."""

    def test_invalid_repository(self, tmp_path):
        with pytest.raises(Exception) as exc_info:
            payload_from_repository(str(tmp_path / "missing"), 1)
        assert "Invalid Git repository" in str(exc_info.value)

    @pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
    def test_replays_recent_commits_oldest_first(self, tmp_path):
        from git import Actor, Repo

        repo = Repo.init(tmp_path, initial_branch="web")
        author = Actor("Test User", "test@example.com")
        for name, message in (("task1.js", "Task 1 Done"), ("task2.js", "Task 2 Done")):
            path = tmp_path / "team1" / "web" / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("solution\n")
            repo.index.add([str(path.relative_to(tmp_path))])
            repo.index.commit(message, author=author, committer=author)

        payload = payload_from_repository(str(tmp_path), 2)

        assert payload["ref"] == "refs/heads/web"
        assert [c["message"] for c in payload["commits"]] == ["Task 1 Done", "Task 2 Done"]
        assert payload["commits"][0]["added"] == ["team1/web/task1.js"]
        assert payload["commits"][1]["added"] == ["team1/web/task2.js"]


class TestTaskTrackerCLI:
    """Test cases for the HTTP client wrapper."""

    @pytest.mark.asyncio
    async def test_send_delivery_signs_body(self):
        async with TaskTrackerCLI("http://tracker", "s3cret") as tool:
            with patch.object(
                tool.client, "post", AsyncMock(return_value=delivery_response({}))
            ) as mock_post:
                await tool.send_delivery({"ref": "refs/heads/web", "commits": []})

        _, kwargs = mock_post.call_args
        assert mock_post.call_args.args[0] == "http://tracker/api/github-webhook"
        assert verify_signature(
            kwargs["content"], kwargs["headers"]["X-Hub-Signature-256"], "s3cret"
        )
        assert kwargs["headers"]["X-Hub-Signature-256"] == sign_payload(kwargs["content"], "s3cret")

    @pytest.mark.asyncio
    async def test_send_delivery_requires_secret(self):
        async with TaskTrackerCLI("http://tracker") as tool:
            tool.secret = None
            with pytest.raises(Exception) as exc_info:
                await tool.send_delivery({"ref": "refs/heads/web", "commits": []})
        assert "No webhook secret" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        async with TaskTrackerCLI("http://tracker", "s3cret") as tool:
            with patch.object(
                tool.client, "get", AsyncMock(side_effect=httpx.ConnectError("refused"))
            ):
                with pytest.raises(Exception) as exc_info:
                    await tool.get_json("/api/leaderboard")
        assert "Could not connect" in str(exc_info.value)


class TestCommands:
    """Test cases for the click commands."""

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_send(self, runner):
        result_data = {
            "success": True,
            "processed": 1,
            "results": [{"team": "team1", "category": "Web", "task": 1, "status": "completed"}],
        }
        with patch.object(
            TaskTrackerCLI, "send_delivery", AsyncMock(return_value=delivery_response(result_data))
        ) as mock_send:
            result = runner.invoke(cli, [
                "--secret", "s3cret", "send",
                "--ref", "web", "-m", "Task 1 Done", "-a", "team1/web/task1.js",
            ])

        assert result.exit_code == 0, result.output
        payload = mock_send.call_args.args[0]
        assert payload["ref"] == "refs/heads/web"
        assert payload["commits"][0]["added"] == ["team1/web/task1.js"]
        assert "team1" in result.output
        assert "completed" in result.output

    def test_samples_sends_every_sample(self, runner):
        with patch.object(
            TaskTrackerCLI,
            "send_delivery",
            AsyncMock(return_value=delivery_response({"message": "Not a push event"})),
        ) as mock_send:
            result = runner.invoke(cli, ["--secret", "s3cret", "samples"])

        assert result.exit_code == 0, result.output
        assert mock_send.await_count == len(SAMPLE_DELIVERIES)

    def test_replay_dry_run(self, runner):
        payload = build_push_payload("core", [{
            "id": "abc", "message": "Task 3 done", "added": [], "modified": [], "removed": [],
        }])
        with patch(
            "services.task_tracker.cli.payload_from_repository", return_value=payload
        ) as mock_payload:
            result = runner.invoke(cli, ["replay", "--dry-run", "-n", "3", "-p", "/repo"])

        assert result.exit_code == 0, result.output
        mock_payload.assert_called_once_with("/repo", 3, None)
        assert json.loads(result.output) == payload

    def test_leaderboard(self, runner):
        entries = [{
            "id": "1",
            "name": "team1",
            "avatar": None,
            "tasksCompleted": 2,
            "lastActive": "2026-01-01T10:00:00Z",
            "milestones": [True, True, False],
            "completionPercentage": 67,
        }]
        with patch.object(TaskTrackerCLI, "get_json", AsyncMock(return_value=entries)) as mock_get:
            result = runner.invoke(cli, ["leaderboard", "-c", "Web"])

        assert result.exit_code == 0, result.output
        mock_get.assert_awaited_once_with("/api/leaderboard", category="Web")
        assert "team1" in result.output
        assert "67%" in result.output

    def test_activity_empty(self, runner):
        with patch.object(TaskTrackerCLI, "get_json", AsyncMock(return_value=[])):
            result = runner.invoke(cli, ["activity"])

        assert result.exit_code == 0, result.output
        assert "No activity yet" in result.output

    def test_seed(self, runner, settings):
        with patch("services.task_tracker.cli.get_settings", return_value=settings):
            result = runner.invoke(cli, ["seed", "red-team", "blue-team"])

        assert result.exit_code == 0, result.output
        assert "Seeded team: red-team" in result.output
        assert "Seeded team: blue-team" in result.output
