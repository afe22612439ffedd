"""Per-device store client bound to one authenticated user.

Mirrors what a mobile/web SDK offers: point reads with a local snapshot cache,
queries, atomic batches and live listeners. The cache is what makes stale reads
possible; identity-sensitive reads pass ``Source.SERVER`` to bypass it.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Dict, Optional

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.listeners import maybe_await
from pinchat.infra.store import (
	DocumentBackend,
	DocumentSnapshot,
	ErrorCallback,
	ListenerRegistration,
	Query,
	QuerySnapshot,
	SnapshotCallback,
	Source,
	StoreUnavailable,
	WriteBatch,
)
from pinchat.settings import settings

logger = logging.getLogger(__name__)

_backend: Optional[DocumentBackend] = None


def _build_backend() -> DocumentBackend:
	backend_name = settings.store_backend.strip().lower()
	if backend_name == "redis":
		from pinchat.infra.redis_store import RedisDocumentBackend

		return RedisDocumentBackend()
	if backend_name != "memory":
		logger.warning("Unknown store backend %s, falling back to memory", backend_name)
	from pinchat.infra.memory_store import InMemoryDocumentBackend

	return InMemoryDocumentBackend()


def get_backend() -> DocumentBackend:
	global _backend
	if _backend is None:
		_backend = _build_backend()
	return _backend


def set_backend(backend: Optional[DocumentBackend]) -> None:
	"""Swap the process-wide backend (tests, alternate deployments)."""
	global _backend
	_backend = backend


class StoreClient:
	def __init__(self, backend: DocumentBackend, user: Optional[AuthenticatedUser]) -> None:
		self.backend = backend
		self.user = user
		self._cache: Dict[str, Optional[dict]] = {}

	@property
	def uid(self) -> Optional[str]:
		return self.user.id if self.user else None

	def _remember(self, snapshot: DocumentSnapshot) -> None:
		self._cache[snapshot.path] = copy.deepcopy(snapshot.data)

	def cache_document(self, path: str, data: Optional[dict]) -> None:
		"""Seed the local cache, as a previously observed snapshot would."""
		self._cache[path] = copy.deepcopy(data)

	def cached(self, path: str) -> Optional[DocumentSnapshot]:
		if path not in self._cache:
			return None
		return DocumentSnapshot(path, copy.deepcopy(self._cache[path]))

	async def get(self, path: str, *, source: Source = Source.DEFAULT) -> DocumentSnapshot:
		if source is Source.CACHE:
			cached = self.cached(path)
			if cached is None:
				raise StoreUnavailable("not_in_cache")
			return cached
		try:
			snapshot = await self.backend.get(path, self.user)
		except StoreUnavailable:
			if source is Source.SERVER:
				raise
			cached = self.cached(path)
			if cached is None:
				raise
			logger.debug("Serving cached snapshot while offline", extra={"path": path})
			return cached
		self._remember(snapshot)
		return snapshot

	async def query(self, query: Query) -> QuerySnapshot:
		snapshot = await self.backend.run_query(query, self.user)
		for doc in snapshot:
			self._remember(doc)
		return snapshot

	def batch(self) -> WriteBatch:
		return WriteBatch()

	async def commit(self, batch: WriteBatch) -> datetime:
		commit_time = await self.backend.commit(list(batch.writes), self.user)
		# Local copies of written records are stale until re-read.
		for path in batch.paths():
			self._cache.pop(path, None)
		return commit_time

	async def listen(
		self,
		query: Query,
		on_snapshot: SnapshotCallback,
		on_error: Optional[ErrorCallback] = None,
	) -> ListenerRegistration:
		async def _deliver(snapshot: QuerySnapshot) -> None:
			for doc in snapshot:
				self._remember(doc)
			await maybe_await(on_snapshot(snapshot))

		return await self.backend.listen(query, self.user, _deliver, on_error)
