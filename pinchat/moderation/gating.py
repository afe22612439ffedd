"""Moderation gates applied before a message is committed.

Suspension and probation are pure predicates over the user's own profile
record compared with the current time. A restricted user may keep answering
in a thread that already exists where they are the responder; everything else
(new threads, replies as a post owner) is refused. Blocked pairs may not
message each other at all.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Union

from pinchat.domain.threads.exceptions import (
	ModerationRestricted,
	RecipientBlocked,
	Unauthenticated,
	translate_store_error,
)
from pinchat.domain.threads.models import ThreadIdentity, UserProfile, to_micros
from pinchat.infra.client import StoreClient
from pinchat.infra.store import Source, StoreError

logger = logging.getLogger(__name__)

REVIEW_RESTRICTED_STATUSES = frozenset({"pending", "probation"})

ProfileLike = Union[UserProfile, Mapping[str, Any], None]


def _now_micros(now: Any = None) -> int:
	if now is None:
		return int(time.time() * 1_000_000)
	return to_micros(now) or 0


def _profile(value: ProfileLike) -> UserProfile:
	if isinstance(value, UserProfile):
		return value
	return UserProfile.from_record("", value)


def is_suspended(profile: ProfileLike, now: Any = None) -> bool:
	"""Suspended with no end date, or with an end date still in the future."""
	data = _profile(profile)
	if not data.is_suspended:
		return False
	until = to_micros(data.suspended_until)
	if until is None:
		return True
	return until > _now_micros(now)


def is_under_review(profile: ProfileLike, now: Any = None) -> bool:
	data = _profile(profile)
	if (data.review_status or "").lower() not in REVIEW_RESTRICTED_STATUSES:
		return False
	expires = to_micros(data.review_expires_at)
	if expires is None:
		return True
	return expires > _now_micros(now)


def is_restricted(profile: ProfileLike, now: Any = None) -> bool:
	return is_suspended(profile, now) or is_under_review(profile, now)


def can_start_new_thread(
	profile: ProfileLike,
	identity: ThreadIdentity,
	uid: str,
	*,
	thread_exists: bool,
	now: Any = None,
) -> bool:
	if not is_restricted(profile, now):
		return True
	return thread_exists and identity.responder_uid == uid


async def enforce_send_gate(client: StoreClient, identity: ThreadIdentity, *, now: Any = None) -> None:
	"""Raise unless the client's user may send into ``identity``'s thread."""
	user = client.user
	if user is None:
		raise Unauthenticated()
	if user.is_admin:
		return
	try:
		profile_snapshot = await client.get(f"users/{user.id}")
	except StoreError as exc:
		raise translate_store_error(exc) from exc
	profile = UserProfile.from_record(user.id, profile_snapshot.data)
	counterpart = identity.counterpart_of(user.id)
	if counterpart and profile.has_blocked(counterpart):
		raise RecipientBlocked()
	if not is_restricted(profile, now):
		return
	try:
		thread_snapshot = await client.get(f"threads/{identity.thread_id}", source=Source.SERVER)
	except StoreError as exc:
		raise translate_store_error(exc) from exc
	if not can_start_new_thread(profile, identity, user.id, thread_exists=thread_snapshot.exists, now=now):
		logger.info(
			"Send refused by moderation gate",
			extra={"thread_id": identity.thread_id, "suspended": profile.is_suspended},
		)
		raise ModerationRestricted()
