"""Single-process document backend used by tests and local development."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.listeners import QueryListener
from pinchat.infra.rules import SecurityRules
from pinchat.infra.store import (
	DocumentSnapshot,
	ErrorCallback,
	Query,
	QuerySnapshot,
	SnapshotCallback,
	StoreInvalidArgument,
	StorePermissionDenied,
	StoreUnavailable,
	Write,
	apply_writes,
	parent_collection,
	run_query,
	watched_paths,
)
from pinchat.settings import settings


class InMemoryDocumentBackend:
	"""Rules-enforcing document store kept in a process-local dict."""

	name = "memory"

	def __init__(
		self,
		rules: SecurityRules | None = None,
		*,
		clock: Callable[[], datetime] | None = None,
	) -> None:
		self._lock = asyncio.Lock()
		self._docs: Dict[str, dict] = {}
		self._listeners: List[QueryListener] = []
		self._rules = rules or SecurityRules()
		self._clock = clock or (lambda: datetime.now(timezone.utc))
		self._last_commit: Optional[datetime] = None
		self._available = True

	def set_available(self, available: bool) -> None:
		"""Simulate a network partition between clients and the store."""
		self._available = available

	def _ensure_available(self) -> None:
		if not self._available:
			raise StoreUnavailable("store_offline")

	def _next_commit_time(self) -> datetime:
		now = self._clock()
		if self._last_commit is not None and now <= self._last_commit:
			now = self._last_commit + timedelta(milliseconds=1)
		self._last_commit = now
		return now

	async def _lookup(self, path: str) -> Optional[dict]:
		return self._docs.get(path)

	async def get(self, path: str, actor: Optional[AuthenticatedUser]) -> DocumentSnapshot:
		self._ensure_available()
		async with self._lock:
			data = copy.deepcopy(self._docs.get(path))
		await self._rules.authorize_read(actor, path, data)
		return DocumentSnapshot(path, data, datetime.now(timezone.utc))

	async def _evaluate(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
	) -> Tuple[List[Tuple[str, dict]], datetime]:
		self._ensure_available()
		async with self._lock:
			await self._rules.authorize_list(actor, query, self._lookup)
			rows = [(path, copy.deepcopy(data)) for path, data in run_query(query, self._docs.items())]
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
		self._ensure_available()
		if not writes:
			raise StoreInvalidArgument("empty_batch")
		if len(writes) > settings.store_max_batch_writes:
			raise StoreInvalidArgument("batch_too_large")
		async with self._lock:
			paths = list(dict.fromkeys(write.path for write in writes))
			before = {path: copy.deepcopy(self._docs.get(path)) for path in paths}
			commit_time = self._next_commit_time()
			after = apply_writes(before, writes, commit_time)

			async def lookup_after(path: str) -> Optional[dict]:
				if path in after:
					return after[path]
				return self._docs.get(path)

			for path in paths:
				await self._rules.authorize_write(actor, path, before[path], after[path], lookup_after)
			for path in paths:
				if after[path] is None:
					self._docs.pop(path, None)
				else:
					self._docs[path] = after[path]
			touched = set(paths) | {parent_collection(path) for path in paths}
			listeners = [
				listener
				for listener in self._listeners
				if any(path in touched for path in watched_paths(listener.query.collection))
			]
		for listener in listeners:
			await listener.refresh()
		return commit_time

	async def listen(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
		on_snapshot: SnapshotCallback,
		on_error: Optional[ErrorCallback] = None,
	) -> QueryListener:
		listener = QueryListener(self, query, actor, on_snapshot, on_error)
		self._listeners.append(listener)
		await listener.refresh()
		return listener

	def _detach(self, listener: QueryListener) -> None:
		if listener in self._listeners:
			self._listeners.remove(listener)

	@property
	def listener_count(self) -> int:
		return len(self._listeners)

	async def close(self) -> None:
		for listener in list(self._listeners):
			listener.remove()

	async def reset(self) -> None:
		async with self._lock:
			self._docs.clear()
		await self.close()
