"""Live query listener shared by the document backends."""

from __future__ import annotations

import copy
import inspect
import logging
from datetime import datetime
from typing import Awaitable, List, Optional, Protocol, Tuple

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.store import (
	DocumentSnapshot,
	ErrorCallback,
	Query,
	QuerySnapshot,
	SnapshotCallback,
	StoreError,
	StoreUnavailable,
)

logger = logging.getLogger(__name__)


async def maybe_await(result) -> None:
	if inspect.isawaitable(result):
		await result


class QueryEvaluator(Protocol):
	def _evaluate(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
	) -> Awaitable[Tuple[List[Tuple[str, dict]], datetime]]:
		...

	def _detach(self, listener: "QueryListener") -> None:
		...


class QueryListener:
	"""Re-evaluates one query and pushes a snapshot whenever its result changes."""

	def __init__(
		self,
		backend: QueryEvaluator,
		query: Query,
		actor: Optional[AuthenticatedUser],
		on_snapshot: SnapshotCallback,
		on_error: Optional[ErrorCallback],
	) -> None:
		self._backend = backend
		self.query = query
		self._actor = actor
		self._on_snapshot = on_snapshot
		self._on_error = on_error
		self._last: Optional[List[Tuple[str, dict]]] = None
		self.removed = False

	def remove(self) -> None:
		if self.removed:
			return
		self.removed = True
		self._backend._detach(self)

	async def refresh(self) -> None:
		if self.removed:
			return
		try:
			rows, read_time = await self._backend._evaluate(self.query, self._actor)
		except StoreUnavailable:
			logger.debug("Listener refresh skipped while store offline", extra={"collection": self.query.collection})
			return
		except StoreError as exc:
			# A rejected listener is terminated, as the store would do.
			self.remove()
			if self._on_error is not None:
				await maybe_await(self._on_error(exc))
			return
		if self.removed or rows == self._last:
			return
		self._last = rows
		snapshot = QuerySnapshot(
			docs=tuple(DocumentSnapshot(path, copy.deepcopy(data), read_time) for path, data in rows),
			read_time=read_time,
		)
		try:
			await maybe_await(self._on_snapshot(snapshot))
		except Exception:
			logger.exception("Snapshot listener raised", extra={"collection": self.query.collection})
