"""Server-evaluated authorization rules for every record the core touches.

Rules run inside the backend, against the stored record (``before``) and the
record as it would look once the whole batch is applied (``after``). Lookups of
other records see the post-commit state, so a message created in the same
batch as its thread validates against that new thread.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.store import Query, StorePermissionDenied, changed_fields, split_path


Lookup = Callable[[str], Awaitable[Optional[dict]]]

THREAD_IMMUTABLE_FIELDS = frozenset({"postId", "ownerUid", "responderUid", "participants"})
USER_PROTECTED_FIELDS = frozenset({"isAdmin", "isSuspended", "suspendedUntil", "reviewStatus", "reviewExpiresAt"})
MESSAGE_EDITABLE_FIELDS = frozenset({"content", "updatedAt"})
NOTIFICATION_EDITABLE_FIELDS = frozenset({"read", "readAt"})


def _deny(reason: str) -> None:
	raise StorePermissionDenied(reason)


def _participants(data: Optional[Mapping[str, Any]]) -> list:
	value = (data or {}).get("participants")
	return list(value) if isinstance(value, (list, tuple)) else []


class SecurityRules:
	"""Per-record policy shared by the in-memory and Redis backends."""

	async def authorize_read(
		self,
		actor: Optional[AuthenticatedUser],
		path: str,
		data: Optional[Mapping[str, Any]],
	) -> None:
		if actor is None:
			_deny("unauthenticated")
		if actor.is_admin or data is None:
			return
		parts = split_path(path)
		root = parts[0]
		if root in ("posts", "ratings"):
			return
		if root == "threads":
			if actor.id not in _participants(data):
				_deny("not_a_participant")
			return
		if root == "users" and len(parts) == 2:
			if parts[1] != actor.id:
				_deny("not_profile_owner")
			return
		if root == "notifications":
			if data.get("targetUid") != actor.id:
				_deny("not_notification_target")
			return
		_deny("read_not_allowed")

	async def authorize_list(
		self,
		actor: Optional[AuthenticatedUser],
		query: Query,
		lookup: Lookup,
	) -> None:
		if actor is None:
			_deny("unauthenticated")
		if actor.is_admin:
			return
		parts = split_path(query.collection)
		if len(parts) == 3 and parts[0] == "threads" and parts[2] == "messages":
			thread = await lookup(f"threads/{parts[1]}")
			if thread is None or actor.id not in _participants(thread):
				_deny("thread_not_readable")

	async def authorize_write(
		self,
		actor: Optional[AuthenticatedUser],
		path: str,
		before: Optional[dict],
		after: Optional[dict],
		lookup_after: Lookup,
	) -> None:
		if actor is None:
			_deny("unauthenticated")
		if actor.is_admin:
			return
		if before is None and after is None:
			return
		parts = split_path(path)
		root = parts[0]
		if root == "posts" and len(parts) == 2:
			self._check_post(actor, before, after)
		elif root == "threads" and len(parts) == 2:
			await self._check_thread(actor, parts[1], before, after, lookup_after)
		elif root == "threads" and len(parts) == 4 and parts[2] == "messages":
			await self._check_message(actor, parts[1], before, after, lookup_after)
		elif root == "users" and len(parts) == 2:
			self._check_user(actor, parts[1], before, after)
		elif root == "notifications" and len(parts) == 2:
			self._check_notification(actor, before, after)
		elif root == "ratings" and len(parts) == 2:
			self._check_rating(actor, parts[1], before, after)
		elif root == "audit_logs" and len(parts) == 2:
			if before is not None or after is None or after.get("actorUid") != actor.id:
				_deny("audit_append_only")
		else:
			_deny("write_not_allowed")

	def _check_post(self, actor: AuthenticatedUser, before: Optional[dict], after: Optional[dict]) -> None:
		if before is None:
			if after.get("ownerUid") != actor.id:
				_deny("post_owner_mismatch")
			return
		if before.get("ownerUid") != actor.id:
			_deny("not_post_owner")
		if after is not None and "ownerUid" in changed_fields(before, after):
			_deny("post_owner_immutable")

	async def _check_thread(
		self,
		actor: AuthenticatedUser,
		thread_id: str,
		before: Optional[dict],
		after: Optional[dict],
		lookup_after: Lookup,
	) -> None:
		if after is None:
			if actor.id not in _participants(before):
				_deny("not_a_participant")
			return
		if before is None:
			owner_uid = after.get("ownerUid")
			responder_uid = after.get("responderUid")
			if not owner_uid or not responder_uid or owner_uid == responder_uid:
				_deny("invalid_thread_pair")
			if _participants(after) != [owner_uid, responder_uid]:
				_deny("participants_mismatch")
			if actor.id not in (owner_uid, responder_uid):
				_deny("not_a_participant")
			if thread_id != f"{after.get('postId')}_{responder_uid}":
				_deny("thread_id_mismatch")
			post = await lookup_after(f"posts/{after.get('postId')}")
			if post is None or post.get("ownerUid") != owner_uid:
				_deny("stale_owner")
			return
		if actor.id not in _participants(before):
			_deny("not_a_participant")
		changed = changed_fields(before, after)
		if changed & THREAD_IMMUTABLE_FIELDS:
			_deny("thread_pair_immutable")
		if actor.id == before.get("ownerUid") and "responderLastReadAt" in changed:
			_deny("counterpart_read_marker")
		if actor.id == before.get("responderUid") and "ownerLastReadAt" in changed:
			_deny("counterpart_read_marker")

	async def _check_message(
		self,
		actor: AuthenticatedUser,
		thread_id: str,
		before: Optional[dict],
		after: Optional[dict],
		lookup_after: Lookup,
	) -> None:
		if after is None:
			_deny("message_delete_admin_only")
		if before is None:
			if after.get("senderUid") != actor.id:
				_deny("sender_mismatch")
			participants = _participants(after)
			if actor.id not in participants:
				_deny("not_a_participant")
			thread = await lookup_after(f"threads/{thread_id}")
			if thread is None or set(_participants(thread)) != set(participants):
				_deny("thread_participants_mismatch")
			return
		if before.get("senderUid") != actor.id:
			_deny("not_message_sender")
		if not changed_fields(before, after) <= MESSAGE_EDITABLE_FIELDS:
			_deny("message_immutable_fields")

	def _check_user(self, actor: AuthenticatedUser, uid: str, before: Optional[dict], after: Optional[dict]) -> None:
		changed = changed_fields(before, after)
		if actor.id == uid:
			if changed & USER_PROTECTED_FIELDS:
				_deny("protected_profile_fields")
			return
		if before is not None and after is not None and not changed:
			return
		if before is None and after is not None and set(after) == {"blockedUids"} and after["blockedUids"] == [actor.id]:
			# A block against a user who never wrote a profile creates it.
			return
		if before is None or after is None or changed != {"blockedUids"}:
			_deny("foreign_profile_write")
		previous = set(before.get("blockedUids") or [])
		current = set(after.get("blockedUids") or [])
		if current - previous != {actor.id} or previous - current:
			_deny("foreign_block_mismatch")

	def _check_notification(self, actor: AuthenticatedUser, before: Optional[dict], after: Optional[dict]) -> None:
		if before is None:
			if not isinstance(after.get("targetUid"), str):
				_deny("notification_target_missing")
			return
		if before.get("targetUid") != actor.id:
			_deny("not_notification_target")
		if after is not None and not changed_fields(before, after) <= NOTIFICATION_EDITABLE_FIELDS:
			_deny("notification_immutable_fields")

	def _check_rating(self, actor: AuthenticatedUser, rating_id: str, before: Optional[dict], after: Optional[dict]) -> None:
		if after is None:
			if before.get("userId") != actor.id:
				_deny("not_rating_owner")
			return
		if after.get("userId") != actor.id or rating_id != f"{actor.id}_{after.get('postId')}":
			_deny("rating_owner_mismatch")
