import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.redis_store import RedisDocumentBackend, decode_record, encode_record
from pinchat.infra.store import (
	SERVER_TIMESTAMP,
	FieldFilter,
	Query,
	StoreConflict,
	StorePermissionDenied,
	Write,
	WriteKind,
)
from pinchat.session import MessagingSession
from pinchat.settings import settings

ADMIN = AuthenticatedUser(id="admin-1", roles=("admin",))
OWNER = AuthenticatedUser(id="owner-1", email="owner@example.com")
RESPONDER = AuthenticatedUser(id="resp-1", email="resp@example.com")
OTHER = AuthenticatedUser(id="other-1", email="other@example.com")
POST_ID = "post-1"


@pytest_asyncio.fixture
async def redis_backend(fake_redis):
	backend = RedisDocumentBackend(fake_redis, prefix="t")
	for user in (OWNER, RESPONDER, OTHER):
		await backend.commit([Write(WriteKind.SET, f"users/{user.id}", {"email": user.email, "blockedUids": []})], ADMIN)
	await backend.commit(
		[Write(WriteKind.SET, f"posts/{POST_ID}", {"ownerUid": OWNER.id, "ownerEmail": OWNER.email, "status": "public"})],
		ADMIN,
	)
	try:
		yield backend
	finally:
		await backend.close()


def test_timestamps_survive_json_encoding():
	stamp = datetime(2024, 5, 1, 8, 30, 15, 123456, tzinfo=timezone.utc)
	raw = encode_record({"createdAt": stamp, "nested": {"at": [stamp]}, "plain": {"n": 1}})
	decoded = decode_record(raw)
	assert decoded["createdAt"] == stamp
	assert decoded["nested"]["at"] == [stamp]
	assert decoded["plain"] == {"n": 1}
	assert decode_record(None) is None


@pytest.mark.asyncio
async def test_commit_persists_records_and_collection_index(redis_backend, fake_redis):
	commit_time = await redis_backend.commit(
		[Write(WriteKind.CREATE, "posts/post-2", {"ownerUid": OWNER.id, "createdAt": SERVER_TIMESTAMP})],
		OWNER,
	)

	snapshot = await redis_backend.get("posts/post-2", RESPONDER)
	assert snapshot.get("createdAt") == commit_time
	assert await fake_redis.sismember("t:col:posts", "post-2")

	with pytest.raises(StoreConflict):
		await redis_backend.commit([Write(WriteKind.CREATE, "posts/post-2", {"ownerUid": OWNER.id})], OWNER)

	await redis_backend.commit([Write(WriteKind.DELETE, "posts/post-2")], OWNER)
	assert not (await redis_backend.get("posts/post-2", RESPONDER)).exists
	assert not await fake_redis.sismember("t:col:posts", "post-2")


@pytest.mark.asyncio
async def test_rejected_batch_writes_nothing(redis_backend, fake_redis):
	writes = [
		Write(WriteKind.SET, "posts/post-3", {"ownerUid": RESPONDER.id}),
		Write(WriteKind.UPDATE, f"posts/{POST_ID}", {"title": "hijacked"}),
	]
	with pytest.raises(StorePermissionDenied):
		await redis_backend.commit(writes, RESPONDER)
	assert await fake_redis.get("t:doc:posts/post-3") is None


@pytest.mark.asyncio
async def test_queries_follow_rules(redis_backend):
	async with MessagingSession(RESPONDER, redis_backend) as responder:
		await responder.send_to_post(POST_ID, "hello over redis")

	thread_id = f"{POST_ID}_{RESPONDER.id}"
	mine = await redis_backend.run_query(
		Query("threads").where(FieldFilter("participants", "array_contains", OWNER.id)), OWNER
	)
	assert [doc.id for doc in mine] == [thread_id]

	with pytest.raises(StorePermissionDenied) as excinfo:
		await redis_backend.run_query(Query("threads"), OTHER)
	assert excinfo.value.reason == "query_not_permitted"
	with pytest.raises(StorePermissionDenied):
		await redis_backend.run_query(Query(f"threads/{thread_id}/messages"), OTHER)


@pytest.mark.asyncio
async def test_conversation_round_trip(redis_backend):
	thread_id = f"{POST_ID}_{RESPONDER.id}"
	async with MessagingSession(RESPONDER, redis_backend) as responder, MessagingSession(OWNER, redis_backend) as owner:
		await responder.send_to_post(POST_ID, "is this yours?")
		await owner.send_message(thread_id, "yes, thank you")
		assert await owner.mark_read(thread_id)

	messages = await redis_backend.run_query(Query(f"threads/{thread_id}/messages").order("createdAt"), ADMIN)
	assert [doc.get("content") for doc in messages] == ["is this yours?", "yes, thank you"]
	thread = (await redis_backend.get(f"threads/{thread_id}", ADMIN)).data
	assert thread["lastSenderUid"] == OWNER.id
	assert thread["ownerLastReadAt"] >= thread["lastMessageAt"]


@pytest.mark.asyncio
async def test_listener_delivers_initial_and_live_snapshots(redis_backend, monkeypatch):
	monkeypatch.setattr(settings, "subscription_poll_timeout_seconds", 0.01)
	pushes = []
	async with MessagingSession(OWNER, redis_backend) as owner:
		await owner.subscribe_threads(pushes.append)
		assert pushes == [[]]

		async with MessagingSession(RESPONDER, redis_backend) as responder:
			await responder.send_to_post(POST_ID, "ping")

		for _ in range(200):
			if len(pushes) > 1:
				break
			await asyncio.sleep(0.01)

	assert [thread.responder_uid for thread in pushes[-1]] == [RESPONDER.id]
