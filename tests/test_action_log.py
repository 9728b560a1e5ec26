"""Tests for the durable action log."""

import json
import os
from livesync.offline.action_log import ActionLog


def test_enqueue_preserves_order(action_log):
    for target in ("/x", "/y", "/z"):
        assert action_log.enqueue(target, "post", {"t": target}).ok

    actions = action_log.list()
    assert [a.target for a in actions] == ["/x", "/y", "/z"]
    assert all(a.method == "POST" for a in actions)
    assert len({a.id for a in actions}) == 3
    assert action_log.size() == 3


def test_log_survives_a_new_instance(action_log):
    queued = action_log.enqueue("/save", "PUT", {"title": "v2"}, headers={"If-Match": "7"}).value

    reopened = ActionLog(action_log.path, action_log.record_name)
    [action] = reopened.list()

    assert action.id == queued.id
    assert action.payload == {"title": "v2"}
    assert action.headers == {"If-Match": "7"}


def test_record_layout_on_disk(action_log):
    action_log.enqueue("/save", "PUT", {"a": 1})

    with open(action_log.path, encoding="utf-8") as f:
        doc = json.load(f)

    [record] = doc["test-queue"]
    assert set(record) == {"id", "target", "method", "payload", "enqueuedAt"}


def test_other_records_in_the_file_are_kept(tmp_path):
    path = tmp_path / "shared.json"
    path.write_text(json.dumps({"other-app": [{"keep": True}]}))

    log_ = ActionLog(str(path), "mine")
    log_.enqueue("/a")
    log_.clear()

    doc = json.loads(path.read_text())
    assert doc["other-app"] == [{"keep": True}]
    assert doc["mine"] == []


def test_remove_drops_only_given_ids(action_log):
    x = action_log.enqueue("/x").value
    y = action_log.enqueue("/y").value
    z = action_log.enqueue("/z").value

    result = action_log.remove([x.id, z.id, "unknown"])

    assert result.value == 2
    assert [a.id for a in action_log.list()] == [y.id]


def test_clear_and_empty_log(action_log):
    assert action_log.list() == []
    assert action_log.clear().ok

    action_log.enqueue("/x")
    action_log.clear()
    assert action_log.size() == 0


def test_corrupt_file_is_moved_aside(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text("{not json")
    log_ = ActionLog(str(path), "q")

    assert log_.list() == []
    assert any(name.startswith("queue.json.corrupt-") for name in os.listdir(tmp_path))

    assert log_.enqueue("/x").ok
    assert log_.size() == 1


def test_size_watchers(action_log):
    sizes = []
    action_log.watch(sizes.append)

    a = action_log.enqueue("/a").value
    action_log.enqueue("/b")
    action_log.remove([a.id])
    action_log.clear()

    assert sizes == [1, 2, 1, 0]


def test_forwarders_are_best_effort(action_log):
    forwarded = []

    def broken(_action):
        raise ConnectionError("redis down")

    action_log.add_forwarder(broken)
    action_log.add_forwarder(forwarded.append)

    result = action_log.enqueue("/x")

    assert result.ok
    assert [a.id for a in forwarded] == [result.value.id]
    assert action_log.size() == 1


def test_write_failure_is_reported(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    log_ = ActionLog(str(blocker / "queue.json"), "q")

    result = log_.enqueue("/x")

    assert not result.ok
    assert result.error.code == "action_log.write_failed"
