"""Atomic message commit protocol for post-anchored threads."""

from __future__ import annotations

import logging
import time
from typing import Optional

from pinchat.domain.threads.exceptions import (
	InvalidRecipient,
	NotFound,
	PermissionDenied,
	Unauthenticated,
	ValidationFailed,
	translate_store_error,
)
from pinchat.domain.threads.identity import IdentityResolver
from pinchat.domain.threads.models import (
	READ_MARKER_FIELDS,
	ROLE_RESPONDER,
	ThreadIdentity,
	new_message_id,
	normalize_content,
	preview,
)
from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.client import StoreClient
from pinchat.infra.store import SERVER_TIMESTAMP, Source, StoreConflict, StoreError, WriteBatch
from pinchat.moderation import gating
from pinchat.obs import logging as obs_logging
from pinchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _thread_path(thread_id: str) -> str:
	return f"threads/{thread_id}"


def _message_path(thread_id: str, message_id: str) -> str:
	return f"threads/{thread_id}/messages/{message_id}"


class ThreadService:
	def __init__(self, client: StoreClient, resolver: Optional[IdentityResolver] = None) -> None:
		self._client = client
		self._resolver = resolver or IdentityResolver(client)

	def _require_user(self) -> AuthenticatedUser:
		user = self._client.user
		if user is None:
			raise Unauthenticated()
		return user

	async def _read(self, path: str, source: Source = Source.SERVER):
		try:
			return await self._client.get(path, source=source)
		except StoreError as exc:
			raise translate_store_error(exc) from exc

	def _stage(
		self,
		identity: ThreadIdentity,
		user: AuthenticatedUser,
		role: str,
		content: str,
		message_id: str,
		*,
		create_thread: bool,
	) -> WriteBatch:
		batch = self._client.batch()
		summary = {
			"lastMessageAt": SERVER_TIMESTAMP,
			"lastMessagePreview": preview(content),
			"lastSenderUid": user.id,
			"updatedAt": SERVER_TIMESTAMP,
		}
		if create_thread:
			batch.create(
				_thread_path(identity.thread_id),
				{
					"postId": identity.post_id,
					"ownerUid": identity.owner_uid,
					"ownerEmail": identity.owner_email if role == ROLE_RESPONDER else (user.email or identity.owner_email),
					"responderUid": identity.responder_uid,
					"responderEmail": user.email if role == ROLE_RESPONDER else None,
					"participants": list(identity.participants),
					"ownerLastReadAt": SERVER_TIMESTAMP,
					"responderLastReadAt": SERVER_TIMESTAMP,
					"createdAt": SERVER_TIMESTAMP,
					**summary,
				},
			)
		else:
			# Only the sender's own marker moves; the counterpart's unread state is theirs.
			summary[READ_MARKER_FIELDS[role]] = SERVER_TIMESTAMP
			batch.update(_thread_path(identity.thread_id), summary)
		batch.create(
			_message_path(identity.thread_id, message_id),
			{
				"content": content,
				"senderUid": user.id,
				"senderEmail": user.email,
				"createdAt": SERVER_TIMESTAMP,
				"participants": list(identity.participants),
			},
		)
		return batch

	async def send_message(self, identity: ThreadIdentity, content: str) -> str:
		"""Persist one message and its thread summary atomically; returns the message id."""
		user = self._require_user()
		text = normalize_content(content)
		if not text:
			raise ValidationFailed("empty_content")
		if identity.owner_uid == identity.responder_uid:
			raise InvalidRecipient("self_message")
		role = identity.role_of(user.id)
		if role is None:
			raise PermissionDenied("not_a_participant")

		tokens = obs_logging.bind_context(user_id=user.id, thread_id=identity.thread_id)
		try:
			existing = await self._read(_thread_path(identity.thread_id))
			create_thread = not existing.exists
			message_id = new_message_id(user.id)
			started = time.perf_counter()
			try:
				try:
					await self._client.commit(
						self._stage(identity, user, role, text, message_id, create_thread=create_thread)
					)
				except StoreConflict:
					if not create_thread:
						raise
					# The counterpart's first message created the thread after our read.
					logger.info("Thread created concurrently; retrying as update")
					create_thread = False
					await self._client.commit(
						self._stage(identity, user, role, text, message_id, create_thread=False)
					)
			except StoreError as exc:
				obs_metrics.inc_commit_reject(exc.reason)
				logger.warning("Message commit rejected", extra={"reason": exc.reason})
				raise translate_store_error(exc) from exc
			obs_metrics.observe_commit_latency(time.perf_counter() - started)
			obs_metrics.inc_message_sent(role)
			if create_thread:
				obs_metrics.inc_thread_created()
			logger.info("Message sent", extra={"message_id": message_id, "created_thread": create_thread})
			return message_id
		finally:
			obs_logging.reset_context(tokens)

	async def identity_for_thread(self, thread_id: str) -> ThreadIdentity:
		snapshot = await self._read(_thread_path(thread_id))
		if not snapshot.exists:
			raise NotFound("thread_not_found")
		return ThreadIdentity(
			post_id=snapshot.get("postId"),
			owner_uid=snapshot.get("ownerUid"),
			responder_uid=snapshot.get("responderUid"),
			owner_email=snapshot.get("ownerEmail"),
		)

	async def send_to_thread(self, thread_id: str, content: str) -> str:
		"""Reply inside an existing thread. The post must still exist."""
		self._require_user()
		stored = await self.identity_for_thread(thread_id)
		identity = await self._resolver.resolve(stored.post_id, stored.responder_uid)
		await gating.enforce_send_gate(self._client, identity)
		return await self.send_message(identity, content)

	async def send_to_post(
		self,
		post_id: str,
		content: str,
		*,
		target_responder_uid: Optional[str] = None,
	) -> str:
		"""Resolve identity from the live post, apply moderation gates, then commit."""
		if not normalize_content(content):
			raise ValidationFailed("empty_content")
		identity = await self._resolver.resolve(post_id, target_responder_uid)
		await gating.enforce_send_gate(self._client, identity)
		return await self.send_message(identity, content)

	async def edit_message(self, thread_id: str, message_id: str, content: str) -> None:
		user = self._require_user()
		text = normalize_content(content)
		if not text:
			raise ValidationFailed("empty_content")
		path = _message_path(thread_id, message_id)
		snapshot = await self._read(path)
		if not snapshot.exists:
			raise NotFound("message_not_found")
		if snapshot.get("senderUid") != user.id:
			raise PermissionDenied("not_message_sender")
		batch = self._client.batch().update(path, {"content": text, "updatedAt": SERVER_TIMESTAMP})
		try:
			await self._client.commit(batch)
		except StoreError as exc:
			obs_metrics.inc_commit_reject(exc.reason)
			raise translate_store_error(exc) from exc
		obs_metrics.inc_message_edited()
		logger.info("Message edited", extra={"thread_id": thread_id, "message_id": message_id})
