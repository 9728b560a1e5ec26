"""Tests for topic membership and re-join after reconnect."""

import pytest
from livesync.transport.contracts import Identity
from livesync.transport.topics import TopicRegistry, chat_topic, job_topic

IDENTITY = Identity(user_id="u1", token="tok")


def test_topic_names():
    assert job_topic("J1") == "job:J1"
    assert chat_topic("S1") == "chat:S1"


@pytest.mark.asyncio
async def test_join_before_connect_is_sent_on_connect(make_connection, connector):
    conn = make_connection()
    topics = TopicRegistry(conn)

    assert (await topics.join("job:J1")).ok
    assert topics.active == {"job:J1"}
    assert topics.joined == set()

    await conn.connect(IDENTITY)

    assert connector.last.events("join-topic") == ["job:J1"]
    assert topics.joined == {"job:J1"}
    await conn.disconnect()


@pytest.mark.asyncio
async def test_join_and_leave_are_idempotent(make_connection, connector):
    conn = make_connection()
    topics = TopicRegistry(conn)
    await conn.connect(IDENTITY)

    await topics.join("job:J1")
    await topics.join("job:J1")
    await topics.leave("job:J1")
    await topics.leave("job:J1")
    await topics.leave("job:never")

    ws = connector.last
    assert ws.events("join-topic") == ["job:J1"]
    assert ws.events("leave-topic") == ["job:J1"]
    assert not topics.is_active("job:J1")
    await conn.disconnect()


@pytest.mark.asyncio
async def test_leave_of_unsent_topic_sends_nothing(make_connection, connector):
    conn = make_connection()
    topics = TopicRegistry(conn)
    await topics.join("chat:S1")
    await topics.leave("chat:S1")

    await conn.connect(IDENTITY)

    assert connector.last.events("join-topic") == []
    assert connector.last.events("leave-topic") == []
    await conn.disconnect()


@pytest.mark.asyncio
async def test_reconnect_rejoins_exactly_the_active_topics(make_connection, connector, settle):
    conn = make_connection()
    topics = TopicRegistry(conn)
    await conn.connect(IDENTITY)
    await topics.join("job:A")
    await topics.join("chat:B")
    await topics.join("job:gone")
    await topics.leave("job:gone")

    connector.sockets[0].drop()
    await settle()

    assert len(connector.sockets) == 2
    assert sorted(connector.sockets[1].events("join-topic")) == ["chat:B", "job:A"]
    assert topics.joined == {"chat:B", "job:A"}
    await conn.disconnect()


@pytest.mark.asyncio
async def test_drop_forgets_joined_but_keeps_interest(make_connection, connector, settle):
    conn = make_connection(cfg=None)
    conn.cfg.reconnection = False
    topics = TopicRegistry(conn)
    await conn.connect(IDENTITY)
    await topics.join("job:A")

    connector.sockets[0].drop()
    await settle()

    assert topics.joined == set()
    assert topics.active == {"job:A"}
