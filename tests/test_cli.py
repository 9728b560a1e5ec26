"""Tests for the command line entry point."""

import json
import pytest
from unittest.mock import AsyncMock, Mock, patch
from typer.testing import CliRunner
from livesync.cli import app
from livesync.util.types import Result

runner = CliRunner()


@pytest.fixture
def queue_args(tmp_path):
    return ["--queue-path", str(tmp_path / "queue.json"), "--cwd", str(tmp_path)]


def test_queue_add_list_clear(queue_args):
    added = runner.invoke(app, ["queue", "add", "/save", "-X", "put", "-d", '{"title": "v2"}',
                                "-H", "If-Match: 7"] + queue_args)
    assert added.exit_code == 0, added.output
    action_id = added.output.strip()

    listed = runner.invoke(app, ["queue", "list", "--json"] + queue_args)
    assert listed.exit_code == 0, listed.output
    [record] = json.loads(listed.output)
    assert record["id"] == action_id
    assert record["method"] == "PUT"
    assert record["payload"] == {"title": "v2"}
    assert record["headers"] == {"If-Match": "7"}

    cleared = runner.invoke(app, ["queue", "clear", "--yes"] + queue_args)
    assert cleared.exit_code == 0
    assert "cleared 1" in cleared.output

    listed = runner.invoke(app, ["queue", "list"] + queue_args)
    assert "Queue is empty." in listed.output


def test_queue_add_rejects_bad_json(queue_args):
    result = runner.invoke(app, ["queue", "add", "/save", "-d", "{nope"] + queue_args)
    assert result.exit_code == 2


def test_queue_drain_empty(queue_args):
    result = runner.invoke(app, ["queue", "drain", "--base-url", "http://127.0.0.1:9"] + queue_args)
    assert result.exit_code == 0
    assert "replayed 0" in result.output


def test_watch_job_requires_token(monkeypatch, tmp_path):
    monkeypatch.delenv("LIVESYNC_TOKEN", raising=False)
    result = runner.invoke(app, ["watch-job", "J1", "--cwd", str(tmp_path)])
    assert result.exit_code == 1
    assert "LIVESYNC_TOKEN" in result.output


def test_bad_log_level(tmp_path):
    result = runner.invoke(app, ["config", "--cwd", str(tmp_path), "--log-level", "loud"])
    assert result.exit_code == 2


def test_config_masks_password(tmp_path):
    (tmp_path / ".livesync").mkdir()
    (tmp_path / ".livesync" / "client.yaml").write_text("mirror:\n  password: hunter2\n")

    result = runner.invoke(app, ["config", "--cwd", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert "hunter2" not in result.output
    assert json.loads(result.output)["mirror"]["password"] == "***"


def test_queue_clear_also_clears_enabled_mirror(tmp_path, queue_args):
    (tmp_path / ".livesync").mkdir()
    (tmp_path / ".livesync" / "client.yaml").write_text("mirror:\n  enabled: true\n")
    transport = Mock()
    transport.connected = True
    transport.delete_key = AsyncMock(return_value=Result.success())
    transport.disconnect = AsyncMock(return_value=Result.success())

    with patch("livesync.cli.RedisTransport", return_value=transport):
        result = runner.invoke(app, ["queue", "clear", "--yes"] + queue_args)

    assert result.exit_code == 0, result.output
    transport.delete_key.assert_awaited_once_with("livesync:queue:livesync-offline-queue")
