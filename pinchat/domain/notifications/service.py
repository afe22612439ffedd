"""Fire-and-forget notification records."""

from __future__ import annotations

import logging
from typing import Iterable, List

import ulid

from pinchat.domain.threads.exceptions import Unauthenticated, ValidationFailed, translate_store_error
from pinchat.domain.threads.models import Notification, to_micros
from pinchat.infra.client import StoreClient
from pinchat.infra.store import (
	SERVER_TIMESTAMP,
	DocumentSnapshot,
	FieldFilter,
	Query,
	StoreError,
	StoreNotFound,
	StorePermissionDenied,
	StoreUnavailable,
)

logger = logging.getLogger(__name__)


def notifications_query(uid: str) -> Query:
	return Query("notifications").where(FieldFilter("targetUid", "==", uid))


def newest_first(docs: Iterable[DocumentSnapshot]) -> List[Notification]:
	items = [Notification.from_record(doc.id, doc.data) for doc in docs if doc.exists]
	items.sort(key=lambda item: (to_micros(item.created_at) or 0, item.id), reverse=True)
	return items


class NotificationService:
	def __init__(self, client: StoreClient) -> None:
		self._client = client

	async def notify(self, target_uid: str, message: str, type: str = "info") -> str:  # noqa: A002
		if self._client.user is None:
			raise Unauthenticated()
		if not target_uid or not (message or "").strip():
			raise ValidationFailed("invalid_notification")
		notification_id = str(ulid.new())
		batch = self._client.batch().create(
			f"notifications/{notification_id}",
			{
				"targetUid": target_uid,
				"message": message.strip(),
				"type": type,
				"read": False,
				"createdAt": SERVER_TIMESTAMP,
			},
		)
		try:
			await self._client.commit(batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		return notification_id

	async def mark_notifications_as_read(self) -> int:
		"""Flag every unread notification of the caller; failures are per record and non-fatal."""
		user = self._client.user
		if user is None:
			raise Unauthenticated()
		try:
			snapshot = await self._client.query(notifications_query(user.id).where(FieldFilter("read", "==", False)))
		except (StorePermissionDenied, StoreUnavailable) as exc:
			logger.warning("Unread notifications unavailable", extra={"reason": exc.reason})
			return 0
		updated = 0
		for doc in snapshot:
			batch = self._client.batch().update(doc.path, {"read": True, "readAt": SERVER_TIMESTAMP})
			try:
				await self._client.commit(batch)
			except (StoreNotFound, StorePermissionDenied, StoreUnavailable) as exc:
				logger.info("Notification left unread", extra={"notification_id": doc.id, "reason": exc.reason})
				continue
			updated += 1
		return updated
