"""Reciprocal blocking and thread teardown."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from pinchat.domain.social import audit
from pinchat.domain.threads.exceptions import (
	InvalidRecipient,
	Unauthenticated,
	ValidationFailed,
	translate_store_error,
)
from pinchat.infra.client import StoreClient
from pinchat.infra.store import ArrayRemove, ArrayUnion, FieldFilter, Query, StoreError
from pinchat.obs import metrics as obs_metrics
from pinchat.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BlockResult:
	target_uid: str
	threads_deleted: List[str]
	audit_id: str


class BlockService:
	"""Blocks are reciprocal and destructive.

	Both profiles gain the other's uid in one batch, then every thread the pair
	shares is deleted. Message records under those threads stay behind until the
	administrative orphan sweep removes them.
	"""

	def __init__(self, client: StoreClient) -> None:
		self._client = client

	def _require_uid(self) -> str:
		if self._client.user is None:
			raise Unauthenticated()
		return self._client.user.id

	async def shared_threads(self, target_uid: str) -> List[str]:
		uid = self._require_uid()
		query = Query("threads").where(FieldFilter("participants", "array_contains", uid))
		try:
			snapshot = await self._client.query(query)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		return [doc.id for doc in snapshot if target_uid in (doc.get("participants") or [])]

	async def block(self, target_uid: str, reason: Optional[str] = None) -> BlockResult:
		uid = self._require_uid()
		if not target_uid:
			raise ValidationFailed("missing_target")
		if target_uid == uid:
			raise InvalidRecipient("cannot_block_self")

		batch = self._client.batch()
		batch.set(f"users/{uid}", {"blockedUids": ArrayUnion([target_uid])}, merge=True)
		batch.set(f"users/{target_uid}", {"blockedUids": ArrayUnion([uid])}, merge=True)
		try:
			await self._client.commit(batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		obs_metrics.inc_block("block")

		thread_ids = await self.shared_threads(target_uid)
		chunk = max(1, int(settings.store_max_batch_writes))
		deleted: List[str] = []
		for start in range(0, len(thread_ids), chunk):
			batch = self._client.batch()
			for thread_id in thread_ids[start : start + chunk]:
				batch.delete(f"threads/{thread_id}")
			try:
				await self._client.commit(batch)
			except StoreError as exc:
				logger.warning(
					"Thread teardown interrupted",
					extra={"target_uid": target_uid, "deleted": len(deleted), "reason": exc.reason},
				)
				raise translate_store_error(exc) from exc
			deleted.extend(thread_ids[start : start + chunk])
		obs_metrics.inc_threads_deleted(len(deleted))

		audit_id, audit_batch = audit.stage_audit(
			self._client,
			"block",
			{
				"targetUid": target_uid,
				"reason": reason or "user_block",
				"threadsDeleted": len(deleted),
				"threadIds": deleted,
			},
		)
		try:
			await self._client.commit(audit_batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		logger.info("User blocked", extra={"target_uid": target_uid, "threads_deleted": len(deleted)})
		return BlockResult(target_uid=target_uid, threads_deleted=deleted, audit_id=audit_id)

	async def unblock(self, target_uid: str) -> None:
		"""Remove ``target_uid`` from the caller's own block list only."""
		uid = self._require_uid()
		batch = self._client.batch().set(f"users/{uid}", {"blockedUids": ArrayRemove([target_uid])}, merge=True)
		try:
			await self._client.commit(batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		obs_metrics.inc_block("unblock")
