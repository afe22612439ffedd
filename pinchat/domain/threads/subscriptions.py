"""Live, cancellable views over threads, messages and the global feeds.

Each kind of view owns one slot; opening a view for a new key (another user,
another thread) tears down whatever occupied the slot. Cancellation is
idempotent and anything the store pushes after it is dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pinchat.domain.notifications.service import newest_first, notifications_query
from pinchat.domain.posts.service import visible_posts
from pinchat.domain.ratings.service import group_ratings
from pinchat.domain.threads.exceptions import Unauthenticated
from pinchat.domain.threads.models import Message, Post, Thread, to_micros
from pinchat.infra.client import StoreClient
from pinchat.infra.listeners import maybe_await
from pinchat.infra.store import (
	FieldFilter,
	ListenerRegistration,
	Or,
	Query,
	QuerySnapshot,
	StoreError,
)
from pinchat.obs import logging as obs_logging
from pinchat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

KIND_THREADS = "threads"
KIND_MESSAGES = "messages"
KIND_POSTS = "posts"
KIND_NOTIFICATIONS = "notifications"
KIND_RATINGS = "ratings"

Callback = Callable[[Any], Union[None, Awaitable[None]]]
Transform = Callable[[QuerySnapshot], Any]

_EMPTY = QuerySnapshot(docs=())


def sort_threads(threads: List[Thread]) -> List[Thread]:
	"""Most recent activity first; threads without activity sink to the bottom."""

	def key(thread: Thread):
		stamp = to_micros(thread.last_message_at)
		return (stamp is None, -(stamp or 0), thread.id)

	return sorted(threads, key=key)


def sort_messages(messages: List[Message]) -> List[Message]:
	return sorted(messages, key=lambda message: (to_micros(message.created_at) or 0, message.id))


class Subscription:
	__slots__ = ("kind", "key", "cancelled", "delivered", "_callback", "_registration", "_on_cancel")

	def __init__(self, kind: str, key: str, callback: Callback, on_cancel: Callable[["Subscription"], None]) -> None:
		self.kind = kind
		self.key = key
		self.cancelled = False
		self.delivered = 0
		self._callback = callback
		self._registration: Optional[ListenerRegistration] = None
		self._on_cancel = on_cancel

	@property
	def live(self) -> bool:
		return self._registration is not None and not self.cancelled

	def attach(self, registration: ListenerRegistration) -> None:
		if self.cancelled:
			registration.remove()
			return
		self._registration = registration

	async def deliver(self, value: Any) -> None:
		if self.cancelled:
			obs_metrics.subscription_event(self.kind, "suppressed")
			return
		self.delivered += 1
		obs_metrics.subscription_event(self.kind, "push")
		tokens = obs_logging.bind_context(subscription=f"{self.kind}:{self.key}")
		try:
			await maybe_await(self._callback(value))
		except Exception:
			logger.exception("Subscription callback raised")
		finally:
			obs_logging.reset_context(tokens)

	def cancel(self) -> None:
		if self.cancelled:
			return
		self.cancelled = True
		if self._registration is not None:
			self._registration.remove()
			self._registration = None
		self._on_cancel(self)

	__call__ = cancel


class SubscriptionManager:
	def __init__(self, client: StoreClient) -> None:
		self._client = client
		self._slots: Dict[str, Subscription] = {}

	def active(self, kind: str) -> Optional[Subscription]:
		return self._slots.get(kind)

	@property
	def active_kinds(self) -> List[str]:
		return sorted(self._slots)

	def _uid(self) -> str:
		if self._client.user is None:
			raise Unauthenticated()
		return self._client.user.id

	def _forget(self, subscription: Subscription) -> None:
		if self._slots.get(subscription.kind) is subscription:
			del self._slots[subscription.kind]
		obs_metrics.subscription_cancelled(subscription.kind)
		logger.debug("Subscription cancelled", extra={"subscription": subscription.kind})

	def _claim(self, kind: str, key: str, callback: Callback) -> Subscription:
		previous = self._slots.get(kind)
		if previous is not None:
			previous.cancel()
		subscription = Subscription(kind, key, callback, self._forget)
		self._slots[kind] = subscription
		obs_metrics.subscription_opened(kind)
		return subscription

	async def _open(self, subscription: Subscription, query: Query, transform: Transform) -> Subscription:
		kind = subscription.kind

		async def on_snapshot(snapshot: QuerySnapshot) -> None:
			await subscription.deliver(transform(snapshot))

		async def on_error(exc: StoreError) -> None:
			obs_metrics.subscription_event(kind, "error")
			logger.warning("Live query rejected; delivering empty result", extra={"subscription": kind, "reason": exc.reason})
			await subscription.deliver(transform(_EMPTY))

		try:
			registration = await self._client.listen(query, on_snapshot, on_error)
		except StoreError as exc:
			await on_error(exc)
			return subscription
		subscription.attach(registration)
		return subscription

	async def threads(self, callback: Callback) -> Subscription:
		uid = self._uid()
		query = Query("threads").where(Or(FieldFilter("ownerUid", "==", uid), FieldFilter("responderUid", "==", uid)))

		def transform(snapshot: QuerySnapshot) -> List[Thread]:
			return sort_threads([Thread.from_record(doc.id, doc.data) for doc in snapshot])

		return await self._open(self._claim(KIND_THREADS, uid, callback), query, transform)

	async def messages(self, thread_id: str, callback: Callback) -> Subscription:
		self._uid()
		subscription = self._claim(KIND_MESSAGES, thread_id, callback)
		try:
			thread = await self._client.get(f"threads/{thread_id}")
		except StoreError as exc:
			logger.warning("Thread check failed", extra={"thread_id": thread_id, "reason": exc.reason})
			thread = None
		if subscription.cancelled:
			# Another thread was opened while this one was being checked.
			return subscription
		if thread is None or not thread.exists:
			await subscription.deliver([])
			return subscription

		def transform(snapshot: QuerySnapshot) -> List[Message]:
			return sort_messages([Message.from_record(thread_id, doc.id, doc.data) for doc in snapshot])

		query = Query(f"threads/{thread_id}/messages").order("createdAt")
		return await self._open(subscription, query, transform)

	async def posts(self, callback: Callback) -> Subscription:
		uid = self._uid()
		is_admin = self._client.user.is_admin

		def transform(snapshot: QuerySnapshot) -> List[Post]:
			posts = [Post.from_record(doc.id, doc.data) for doc in snapshot]
			return visible_posts(posts, uid, is_admin=is_admin)

		query = Query("posts").order("createdAt", descending=True)
		return await self._open(self._claim(KIND_POSTS, uid, callback), query, transform)

	async def notifications(self, callback: Callback) -> Subscription:
		uid = self._uid()
		return await self._open(self._claim(KIND_NOTIFICATIONS, uid, callback), notifications_query(uid), newest_first)

	async def ratings(self, callback: Callback) -> Subscription:
		uid = self._uid()
		return await self._open(self._claim(KIND_RATINGS, uid, callback), Query("ratings"), group_ratings)

	def cancel_all(self) -> None:
		for subscription in list(self._slots.values()):
			subscription.cancel()
