"""Per-user entry point bundling the messaging core behind one object."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from pinchat.domain.notifications.service import NotificationService
from pinchat.domain.posts.service import PostService
from pinchat.domain.ratings.service import RatingService
from pinchat.domain.social.blocking import BlockResult, BlockService
from pinchat.domain.social.nicknames import set_thread_nickname
from pinchat.domain.threads.composer import Composer
from pinchat.domain.threads.exceptions import ValidationFailed
from pinchat.domain.threads.identity import IdentityResolver
from pinchat.domain.threads.models import ThreadIdentity
from pinchat.domain.threads.read_state import ReadStateTracker
from pinchat.domain.threads.service import ThreadService
from pinchat.domain.threads.subscriptions import Callback, Subscription, SubscriptionManager
from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.client import StoreClient, get_backend
from pinchat.infra.store import DocumentBackend

logger = logging.getLogger(__name__)


class MessagingSession:
	def __init__(self, user: Optional[AuthenticatedUser], backend: Optional[DocumentBackend] = None) -> None:
		self.client = StoreClient(backend or get_backend(), user)
		self.resolver = IdentityResolver(self.client)
		self.threads = ThreadService(self.client, self.resolver)
		self.read_state = ReadStateTracker(self.client)
		self.subscriptions = SubscriptionManager(self.client)
		self.blocking = BlockService(self.client)
		self.posts = PostService(self.client)
		self.ratings = RatingService(self.client)
		self.notifications = NotificationService(self.client)

	@property
	def user(self) -> Optional[AuthenticatedUser]:
		return self.client.user

	async def __aenter__(self) -> "MessagingSession":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	# Threads and messages

	async def resolve_identity(self, post_id: str, target_responder_uid: Optional[str] = None) -> ThreadIdentity:
		return await self.resolver.resolve(post_id, target_responder_uid)

	async def send_message(self, thread_id: str, content: str) -> str:
		return await self.threads.send_to_thread(thread_id, content)

	async def send_to_post(self, post_id: str, content: str, *, target_responder_uid: Optional[str] = None) -> str:
		return await self.threads.send_to_post(post_id, content, target_responder_uid=target_responder_uid)

	async def edit_message(self, thread_id: str, message_id: str, content: str) -> None:
		await self.threads.edit_message(thread_id, message_id, content)

	def composer(
		self,
		*,
		thread_id: Optional[str] = None,
		post_id: Optional[str] = None,
		target_responder_uid: Optional[str] = None,
		draft: str = "",
	) -> Composer:
		if thread_id:
			return Composer(lambda text: self.send_message(thread_id, text), draft)
		if post_id:
			return Composer(
				lambda text: self.send_to_post(post_id, text, target_responder_uid=target_responder_uid),
				draft,
			)
		raise ValidationFailed("composer_target_missing")

	async def mark_read(self, thread_id: str) -> bool:
		return await self.read_state.mark_read(thread_id)

	# Live views

	async def subscribe_threads(self, callback: Callback) -> Subscription:
		return await self.subscriptions.threads(callback)

	async def subscribe_messages(self, thread_id: str, callback: Callback) -> Subscription:
		return await self.subscriptions.messages(thread_id, callback)

	async def subscribe_posts(self, callback: Callback) -> Subscription:
		return await self.subscriptions.posts(callback)

	async def subscribe_notifications(self, callback: Callback) -> Subscription:
		return await self.subscriptions.notifications(callback)

	async def subscribe_ratings(self, callback: Callback) -> Subscription:
		return await self.subscriptions.ratings(callback)

	# Social

	async def block(self, target_uid: str, reason: Optional[str] = None) -> BlockResult:
		return await self.blocking.block(target_uid, reason)

	async def unblock(self, target_uid: str) -> None:
		await self.blocking.unblock(target_uid)

	async def set_thread_nickname(self, thread_id: str, nickname: Optional[str]) -> None:
		await set_thread_nickname(self.client, thread_id, nickname)

	# Posts, ratings, notifications

	async def create_post(self, title: str, **fields: Any) -> str:
		return await self.posts.create_post(title, **fields)

	async def update_post(self, post_id: str, changes: Mapping[str, Any]) -> None:
		await self.posts.update_post(post_id, changes)

	async def remove_post(self, post_id: str) -> None:
		await self.posts.remove_post(post_id)

	async def rate_post(self, post_id: str, rating: int) -> str:
		return await self.ratings.rate_post(post_id, rating)

	async def notify(self, target_uid: str, message: str, type: str = "info") -> str:  # noqa: A002
		return await self.notifications.notify(target_uid, message, type)

	async def mark_notifications_as_read(self) -> int:
		return await self.notifications.mark_notifications_as_read()

	async def close(self) -> None:
		self.subscriptions.cancel_all()
		logger.debug("Messaging session closed", extra={"user_id": self.client.uid})
