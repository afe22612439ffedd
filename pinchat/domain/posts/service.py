"""Post lifecycle: creation, owner edits and removal."""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional

import ulid

from pinchat.domain.threads.exceptions import (
	NotFound,
	PermissionDenied,
	Unauthenticated,
	ValidationFailed,
	translate_store_error,
)
from pinchat.domain.threads.models import POST_STATUS_HIDDEN, POST_STATUS_PUBLIC, Post
from pinchat.infra.auth import AuthenticatedUser, normalise_email
from pinchat.infra.client import StoreClient
from pinchat.infra.store import SERVER_TIMESTAMP, Source, StoreError

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"title", "description", "location", "status"})
_STATUSES = (POST_STATUS_PUBLIC, POST_STATUS_HIDDEN)


def visible_posts(posts: Iterable[Post], viewer_uid: Optional[str], *, is_admin: bool = False) -> List[Post]:
	"""Hidden posts only show up for their owner (and admins)."""
	return [post for post in posts if not post.is_hidden or is_admin or post.owner_uid == viewer_uid]


class PostService:
	def __init__(self, client: StoreClient) -> None:
		self._client = client

	def _require_user(self) -> AuthenticatedUser:
		if self._client.user is None:
			raise Unauthenticated()
		return self._client.user

	async def _commit(self, batch) -> None:
		try:
			await self._client.commit(batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc

	async def _load_owned(self, post_id: str, user: AuthenticatedUser) -> Post:
		try:
			snapshot = await self._client.get(f"posts/{post_id}", source=Source.SERVER)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		if not snapshot.exists:
			raise NotFound("post_not_found")
		post = Post.from_record(post_id, snapshot.data)
		if user.is_admin:
			return post
		if post.owner_uid != user.id:
			raise PermissionDenied("not_post_owner")
		if post.is_reported:
			raise PermissionDenied("post_under_review")
		return post

	async def create_post(
		self,
		title: str,
		*,
		description: Optional[str] = None,
		location: Optional[Mapping[str, Any]] = None,
		status: str = POST_STATUS_PUBLIC,
	) -> str:
		user = self._require_user()
		title = (title or "").strip()
		if not title:
			raise ValidationFailed("empty_title")
		if status not in _STATUSES:
			raise ValidationFailed("invalid_status")
		post_id = str(ulid.new())
		batch = self._client.batch().create(
			f"posts/{post_id}",
			{
				"ownerUid": user.id,
				"ownerEmail": normalise_email(user.email),
				"title": title,
				"description": description,
				"location": dict(location) if location else None,
				"status": status,
				"isReported": False,
				"createdAt": SERVER_TIMESTAMP,
			},
		)
		await self._commit(batch)
		logger.info("Post created", extra={"post_id": post_id})
		return post_id

	async def update_post(self, post_id: str, changes: Mapping[str, Any]) -> None:
		user = self._require_user()
		unknown = set(changes) - EDITABLE_FIELDS
		if unknown or not changes:
			raise ValidationFailed("invalid_post_fields")
		if "status" in changes and changes["status"] not in _STATUSES:
			raise ValidationFailed("invalid_status")
		await self._load_owned(post_id, user)
		await self._commit(self._client.batch().update(f"posts/{post_id}", {**changes, "updatedAt": SERVER_TIMESTAMP}))

	async def remove_post(self, post_id: str) -> None:
		"""Delete the post record only; threads anchored to it are left in place."""
		user = self._require_user()
		await self._load_owned(post_id, user)
		await self._commit(self._client.batch().delete(f"posts/{post_id}"))
		logger.info("Post removed", extra={"post_id": post_id})
