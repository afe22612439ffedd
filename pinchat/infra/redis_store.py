"""Redis-backed document backend.

Layout, per key prefix ``p``:

- ``p:doc:{path}``      JSON body of one record
- ``p:col:{collection}`` set of record ids in a collection
- ``p:chg:{path}``      pub/sub channel announcing committed changes to a
  collection or to one record

Commits are optimistic: every touched record is WATCHed, rules are evaluated
against the watched state, and the writes plus change announcements go out in
one MULTI/EXEC. A concurrent change aborts the EXEC and the commit is retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence, Tuple

from redis.exceptions import RedisError, WatchError

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.listeners import QueryListener, maybe_await
from pinchat.infra.redis import redis_client
from pinchat.infra.rules import SecurityRules
from pinchat.infra.store import (
	DocumentSnapshot,
	ErrorCallback,
	Query,
	QuerySnapshot,
	SnapshotCallback,
	StoreConflict,
	StoreInvalidArgument,
	StorePermissionDenied,
	StoreUnavailable,
	Write,
	apply_writes,
	document_id,
	parent_collection,
	run_query,
	watched_paths,
)
from pinchat.obs import metrics as obs_metrics
from pinchat.settings import settings

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_TS_KEY = "$ts"


def _to_json_value(value: Any) -> Any:
	if isinstance(value, datetime):
		aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
		return {_TS_KEY: (aware - _EPOCH) // timedelta(microseconds=1)}
	if isinstance(value, dict):
		return {key: _to_json_value(nested) for key, nested in value.items()}
	if isinstance(value, (list, tuple)):
		return [_to_json_value(item) for item in value]
	return value


def _from_json_value(value: Any) -> Any:
	if isinstance(value, dict):
		if len(value) == 1 and _TS_KEY in value:
			return _EPOCH + timedelta(microseconds=int(value[_TS_KEY]))
		return {key: _from_json_value(nested) for key, nested in value.items()}
	if isinstance(value, list):
		return [_from_json_value(item) for item in value]
	return value


def encode_record(data: dict) -> str:
	return json.dumps(_to_json_value(data), separators=(",", ":"))


def decode_record(raw: Any) -> Optional[dict]:
	if raw is None:
		return None
	return _from_json_value(json.loads(raw))


def _text(value: Any) -> str:
	return value.decode() if isinstance(value, bytes) else str(value)


class _RedisListener(QueryListener):
	"""Listener that refreshes on change announcements for its collection."""

	def __init__(self, backend: "RedisDocumentBackend", *args, **kwargs) -> None:
		super().__init__(backend, *args, **kwargs)
		self._redis_backend = backend
		self._pubsub = None
		self.task: Optional[asyncio.Task] = None

	async def start(self) -> None:
		self._pubsub = self._redis_backend.redis.pubsub()
		channels = [self._redis_backend.channel(path) for path in watched_paths(self.query.collection)]
		await self._pubsub.subscribe(*channels)
		await self.refresh()
		self.task = asyncio.create_task(self._run(), name=f"docstore-listen:{self.query.collection}")

	async def _run(self) -> None:
		timeout = max(0.01, float(settings.subscription_poll_timeout_seconds))
		try:
			while not self.removed:
				try:
					message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
				except RedisError:
					logger.warning("Change feed interrupted", extra={"collection": self.query.collection})
					await asyncio.sleep(timeout)
					continue
				if message is None:
					continue
				await self.refresh()
		finally:
			with suppress(RedisError):
				await self._pubsub.aclose()

	def remove(self) -> None:
		if self.removed:
			return
		super().remove()
		if self.task is not None and not self.task.done():
			self.task.cancel()


class RedisDocumentBackend:
	"""Rules-enforcing document store persisted in Redis."""

	name = "redis"

	def __init__(
		self,
		client=None,
		rules: SecurityRules | None = None,
		*,
		prefix: str | None = None,
	) -> None:
		self.redis = client if client is not None else redis_client
		self._rules = rules or SecurityRules()
		self._prefix = prefix or settings.store_key_prefix
		self._listeners: List[_RedisListener] = []

	def doc_key(self, path: str) -> str:
		return f"{self._prefix}:doc:{path}"

	def collection_key(self, collection: str) -> str:
		return f"{self._prefix}:col:{collection}"

	def channel(self, path: str) -> str:
		return f"{self._prefix}:chg:{path}"

	async def _read(self, path: str) -> Optional[dict]:
		return decode_record(await self.redis.get(self.doc_key(path)))

	async def get(self, path: str, actor: Optional[AuthenticatedUser]) -> DocumentSnapshot:
		try:
			data = await self._read(path)
		except RedisError as exc:
			raise StoreUnavailable("redis_error") from exc
		await self._rules.authorize_read(actor, path, data)
		return DocumentSnapshot(path, data, datetime.now(timezone.utc))

	async def _collection_records(self, collection: str) -> List[Tuple[str, dict]]:
		ids = sorted(_text(item) for item in await self.redis.smembers(self.collection_key(collection)))
		if not ids:
			return []
		paths = [f"{collection}/{doc_id}" for doc_id in ids]
		raws = await self.redis.mget([self.doc_key(path) for path in paths])
		return [(path, decode_record(raw)) for path, raw in zip(paths, raws) if raw is not None]

	async def _evaluate(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
	) -> Tuple[List[Tuple[str, dict]], datetime]:
		try:
			await self._rules.authorize_list(actor, query, self._read)
			records = await self._collection_records(query.collection)
		except RedisError as exc:
			raise StoreUnavailable("redis_error") from exc
		rows = run_query(query, records)
		for path, data in rows:
			try:
				await self._rules.authorize_read(actor, path, data)
			except StorePermissionDenied:
				raise StorePermissionDenied("query_not_permitted") from None
		return rows, datetime.now(timezone.utc)

	async def run_query(self, query: Query, actor: Optional[AuthenticatedUser]) -> QuerySnapshot:
		rows, read_time = await self._evaluate(query, actor)
		return QuerySnapshot(
			docs=tuple(DocumentSnapshot(path, data, read_time) for path, data in rows),
			read_time=read_time,
		)

	async def commit(self, writes: Sequence[Write], actor: Optional[AuthenticatedUser]) -> datetime:
		if not writes:
			raise StoreInvalidArgument("empty_batch")
		if len(writes) > settings.store_max_batch_writes:
			raise StoreInvalidArgument("batch_too_large")
		paths = list(dict.fromkeys(write.path for write in writes))
		attempts = max(1, int(settings.store_commit_retries))
		for _ in range(attempts):
			try:
				return await self._commit_once(paths, writes, actor)
			except WatchError:
				obs_metrics.inc_store_retry(self.name)
				continue
			except RedisError as exc:
				raise StoreUnavailable("redis_error") from exc
		raise StoreConflict("contention")

	async def _commit_once(
		self,
		paths: List[str],
		writes: Sequence[Write],
		actor: Optional[AuthenticatedUser],
	) -> datetime:
		async with self.redis.pipeline(transaction=True) as pipe:
			await pipe.watch(*[self.doc_key(path) for path in paths])
			before = {}
			for path in paths:
				before[path] = decode_record(await pipe.get(self.doc_key(path)))
			seconds, micros = await pipe.time()
			commit_time = _EPOCH + timedelta(seconds=int(seconds), microseconds=int(micros))
			after = apply_writes(before, writes, commit_time)

			async def lookup_after(path: str) -> Optional[dict]:
				if path in after:
					return after[path]
				await pipe.watch(self.doc_key(path))
				return decode_record(await pipe.get(self.doc_key(path)))

			for path in paths:
				await self._rules.authorize_write(actor, path, before[path], after[path], lookup_after)

			pipe.multi()
			touched = list(paths)
			for path in paths:
				collection = parent_collection(path)
				if collection not in touched:
					touched.append(collection)
				if after[path] is None:
					pipe.delete(self.doc_key(path))
					pipe.srem(self.collection_key(collection), document_id(path))
				else:
					pipe.set(self.doc_key(path), encode_record(after[path]))
					pipe.sadd(self.collection_key(collection), document_id(path))
			for changed in touched:
				pipe.publish(self.channel(changed), commit_time.isoformat())
			await pipe.execute()
		return commit_time

	async def listen(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
		on_snapshot: SnapshotCallback,
		on_error: Optional[ErrorCallback] = None,
	) -> _RedisListener:
		listener = _RedisListener(self, query, actor, on_snapshot, on_error)
		self._listeners.append(listener)
		try:
			await listener.start()
		except RedisError as exc:
			listener.remove()
			if on_error is not None:
				await maybe_await(on_error(StoreUnavailable("redis_error")))
			logger.warning("Listener could not subscribe", extra={"collection": query.collection, "error": str(exc)})
		return listener

	def _detach(self, listener: QueryListener) -> None:
		if listener in self._listeners:
			self._listeners.remove(listener)

	async def close(self) -> None:
		listeners = list(self._listeners)
		for listener in listeners:
			listener.remove()
		for listener in listeners:
			if listener.task is None:
				continue
			with suppress(asyncio.CancelledError):
				await listener.task
