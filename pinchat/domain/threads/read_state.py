"""Per-participant read markers and the unread predicate."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Union

from pinchat.domain.threads.exceptions import Unauthenticated
from pinchat.domain.threads.models import (
	READ_MARKER_FIELDS,
	ROLE_OWNER,
	ROLE_RESPONDER,
	Thread,
	responder_suffix,
	to_micros,
)
from pinchat.domain.threads.schemas import ThreadSummary
from pinchat.infra.client import StoreClient
from pinchat.infra.store import (
	SERVER_TIMESTAMP,
	StoreError,
	StoreNotFound,
	StorePermissionDenied,
	StoreUnavailable,
)
from pinchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

ThreadLike = Union[Thread, Mapping[str, Any]]


def _as_thread(thread: ThreadLike) -> Thread:
	if isinstance(thread, Thread):
		return thread
	return Thread.from_record(str(thread.get("id") or ""), thread)


def is_unread(thread: ThreadLike, uid: str) -> bool:
	"""``lastMessageAt > own marker``, compared in integer microseconds."""
	data = _as_thread(thread)
	last = to_micros(data.last_message_at)
	if last is None:
		return False
	marker = to_micros(data.read_marker_for(uid))
	if marker is None:
		return True
	return last > marker


def unread_count(threads: Iterable[ThreadLike], uid: str) -> int:
	return sum(1 for thread in threads if is_unread(thread, uid))


def summarize(thread: ThreadLike, viewer_uid: str, nicknames: Optional[Mapping[str, str]] = None) -> ThreadSummary:
	data = _as_thread(thread)
	last_at = data.last_message_at
	return ThreadSummary(
		thread_id=data.id,
		post_id=data.post_id,
		counterpart_uid=data.counterpart_of(viewer_uid) or "",
		nickname=(nicknames or {}).get(data.id),
		last_message_preview=data.last_message_preview,
		last_sender_uid=data.last_sender_uid,
		last_message_at=last_at if isinstance(last_at, datetime) else None,
		unread=is_unread(data, viewer_uid),
	)


class ReadStateTracker:
	"""Moves the caller's own read marker; never the counterpart's.

	The role comes from one read of the thread record. Guessing it from the
	thread id suffix is kept only for when the store cannot be reached, and any
	rejection stays best-effort: logged, counted and reported as ``False``.
	"""

	def __init__(self, client: StoreClient) -> None:
		self._client = client

	async def _role(self, thread_id: str, uid: str) -> Optional[str]:
		try:
			snapshot = await self._client.get(f"threads/{thread_id}")
		except StoreUnavailable:
			inferred = ROLE_RESPONDER if responder_suffix(thread_id) == uid else ROLE_OWNER
			logger.debug("Read marker role inferred from thread id", extra={"thread_id": thread_id})
			return inferred
		if not snapshot.exists:
			return None
		thread = Thread.from_record(thread_id, snapshot.data)
		return thread.role_of(uid)

	async def mark_read(self, thread_id: str) -> bool:
		user = self._client.user
		if user is None:
			raise Unauthenticated()
		try:
			role = await self._role(thread_id, user.id)
			if role is None:
				obs_metrics.inc_read_marker("skipped")
				return False
			batch = self._client.batch().update(f"threads/{thread_id}", {READ_MARKER_FIELDS[role]: SERVER_TIMESTAMP})
			await self._client.commit(batch)
		except (StorePermissionDenied, StoreNotFound, StoreUnavailable) as exc:
			obs_metrics.inc_read_marker("unavailable" if isinstance(exc, StoreUnavailable) else "rejected")
			logger.info("Read marker not updated", extra={"thread_id": thread_id, "reason": exc.reason})
			return False
		except StoreError as exc:
			obs_metrics.inc_read_marker("error")
			logger.warning("Read marker update failed", extra={"thread_id": thread_id, "reason": exc.reason})
			return False
		obs_metrics.inc_read_marker("updated")
		return True
