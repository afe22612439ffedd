"""Thread identity resolution from a live read of the post."""

from __future__ import annotations

import logging
from typing import Optional

from pinchat.domain.threads.exceptions import (
	InvalidRecipient,
	NoRecipientSpecified,
	PostNotFound,
	Unauthenticated,
	translate_store_error,
)
from pinchat.domain.threads.models import ThreadIdentity
from pinchat.infra.client import StoreClient
from pinchat.infra.store import Source, StoreError

logger = logging.getLogger(__name__)


class IdentityResolver:
	def __init__(self, client: StoreClient) -> None:
		self._client = client

	async def resolve(self, post_id: str, target_responder_uid: Optional[str] = None) -> ThreadIdentity:
		"""Work out ``(owner, responder, thread id)`` for the acting user on ``post_id``.

		The owner is always taken from a server read; the rules compare the thread's
		``ownerUid`` with the stored post, so a cached owner would get the write
		rejected. An owner must name the responder they are replying to.
		"""
		user = self._client.user
		if user is None:
			raise Unauthenticated()
		if not post_id:
			raise PostNotFound("missing_post_id")
		try:
			snapshot = await self._client.get(f"posts/{post_id}", source=Source.SERVER)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		if not snapshot.exists:
			raise PostNotFound()
		owner_uid = snapshot.get("ownerUid")
		if not owner_uid:
			raise PostNotFound("post_owner_missing")
		if user.id != owner_uid:
			responder_uid = user.id
		elif target_responder_uid:
			responder_uid = target_responder_uid
		else:
			raise NoRecipientSpecified()
		if responder_uid == owner_uid:
			raise InvalidRecipient("self_message")
		identity = ThreadIdentity(
			post_id=post_id,
			owner_uid=owner_uid,
			responder_uid=responder_uid,
			owner_email=snapshot.get("ownerEmail"),
		)
		logger.debug("Resolved thread identity", extra={"thread_id": identity.thread_id, "post_id": post_id})
		return identity
