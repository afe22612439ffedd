from datetime import datetime, timedelta, timezone

import pytest

from pinchat.domain.threads.models import Thread
from pinchat.domain.threads.read_state import is_unread, summarize, unread_count

POST_ID = "post-1"
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _thread(**fields):
    base = dict(id="p_r", post_id="p", owner_uid="o", responder_uid="r", participants=("o", "r"))
    base.update(fields)
    return Thread(**base)


def test_unread_when_last_message_after_marker():
    thread = _thread(last_message_at=T0 + timedelta(seconds=1), owner_last_read_at=T0, responder_last_read_at=T0 + timedelta(seconds=1))
    assert is_unread(thread, "o")
    assert not is_unread(thread, "r")


def test_unread_compares_mixed_representations_in_micros():
    marker_ms = int(T0.timestamp() * 1000)
    thread = _thread(last_message_at=T0 + timedelta(microseconds=500), owner_last_read_at=marker_ms)
    assert is_unread(thread, "o")
    same = _thread(last_message_at=T0, owner_last_read_at={"seconds": int(T0.timestamp()), "nanoseconds": 0})
    assert not is_unread(same, "o")


def test_missing_marker_or_activity():
    assert is_unread(_thread(last_message_at=T0), "o")
    assert not is_unread(_thread(), "o")
    assert not is_unread(_thread(last_message_at=T0, owner_last_read_at=T0), "o")


def test_unread_count_and_summary():
    threads = [
        _thread(id="a", last_message_at=T0, owner_last_read_at=T0 - timedelta(seconds=5)),
        {"id": "b", "postId": "p", "ownerUid": "o", "responderUid": "x", "lastMessageAt": T0, "ownerLastReadAt": T0},
    ]
    assert unread_count(threads, "o") == 1

    row = summarize(threads[0], "o", {"a": "Scarf finder"})
    assert row.counterpart_uid == "r"
    assert row.nickname == "Scarf finder"
    assert row.unread
    assert row.last_message_at == T0


@pytest.mark.asyncio
async def test_mark_read_updates_only_own_marker(seeded, session_for, users, store_read):
    responder = session_for(users["responder"])
    owner = session_for(users["owner"])
    await responder.send_to_post(POST_ID, "hello")
    thread_id = f"{POST_ID}_{users['responder'].id}"
    await responder.send_message(thread_id, "anyone?")
    before = await store_read(f"threads/{thread_id}")
    assert is_unread(before, users["owner"].id)

    assert await owner.mark_read(thread_id) is True

    after = await store_read(f"threads/{thread_id}")
    assert not is_unread(after, users["owner"].id)
    assert after["responderLastReadAt"] == before["responderLastReadAt"]
    assert after["ownerLastReadAt"] > before["ownerLastReadAt"]


@pytest.mark.asyncio
async def test_mark_read_is_best_effort(seeded, session_for, users):
    await session_for(users["responder"]).send_to_post(POST_ID, "hello")
    thread_id = f"{POST_ID}_{users['responder'].id}"

    assert await session_for(users["other"]).mark_read(thread_id) is False
    assert await session_for(users["owner"]).mark_read(f"{POST_ID}_missing") is False


@pytest.mark.asyncio
async def test_mark_read_offline_falls_back_to_suffix_and_suppresses(seeded, session_for, users):
    responder = session_for(users["responder"])
    await responder.send_to_post(POST_ID, "hello")
    thread_id = f"{POST_ID}_{users['responder'].id}"

    seeded.set_available(False)
    try:
        assert await responder.mark_read(thread_id) is False
    finally:
        seeded.set_available(True)
