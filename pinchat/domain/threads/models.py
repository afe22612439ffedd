"""Domain models for threads, messages and the records they depend on."""

from __future__ import annotations

import itertools
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from pinchat.settings import settings

POST_STATUS_PUBLIC = "public"
POST_STATUS_HIDDEN = "hidden"

ROLE_OWNER = "owner"
ROLE_RESPONDER = "responder"

READ_MARKER_FIELDS = {
	ROLE_OWNER: "ownerLastReadAt",
	ROLE_RESPONDER: "responderLastReadAt",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MESSAGE_COUNTER = itertools.count()


def thread_id_for(post_id: str, responder_uid: str) -> str:
	return f"{post_id}_{responder_uid}"


def responder_suffix(thread_id: str, post_id: Optional[str] = None) -> str:
	"""Responder uid encoded in a thread id.

	With the post id known the split is exact; otherwise the last ``_`` wins,
	which is only a guess when uids themselves contain underscores.
	"""
	if post_id and thread_id.startswith(f"{post_id}_"):
		return thread_id[len(post_id) + 1 :]
	return thread_id.rsplit("_", 1)[-1]


def new_message_id(sender_uid: str, sent_at_ms: Optional[int] = None) -> str:
	"""Client-side message id: ``senderUid_sendMillis_entropy``.

	Entropy combines a per-process counter with random hex so two sends from
	the same sender inside one millisecond never collide.
	"""
	millis = int(time.time() * 1000) if sent_at_ms is None else int(sent_at_ms)
	entropy = f"{next(_MESSAGE_COUNTER):x}{secrets.token_hex(4)}"
	return f"{sender_uid}_{millis}_{entropy}"


def normalize_content(content: Optional[str]) -> str:
	"""Trim and cap message content; empty results are left for callers to reject."""
	text = (content or "").strip()
	return text[: settings.message_max_length]


def preview(content: str, length: Optional[int] = None) -> str:
	limit = settings.message_preview_length if length is None else length
	return content[:limit]


def to_micros(value: Any) -> Optional[int]:
	"""Normalise store timestamps and plain epoch values to integer microseconds.

	Accepts datetimes, epoch numbers (seconds, milliseconds or microseconds,
	guessed by magnitude), objects exposing ``timestamp()``, serialized
	``{"seconds", "nanoseconds"}`` mappings and ISO-8601 strings.
	"""
	if value is None or isinstance(value, bool):
		return None
	if isinstance(value, datetime):
		aware = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
		delta = aware - _EPOCH
		return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
	if isinstance(value, (int, float)):
		magnitude = abs(value)
		if magnitude < 1e11:
			return int(round(value * 1_000_000))
		if magnitude < 1e14:
			return int(round(value * 1_000))
		return int(value)
	if isinstance(value, Mapping):
		seconds = value.get("seconds", value.get("_seconds"))
		if seconds is None:
			return None
		nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
		return int(seconds) * 1_000_000 + int(nanos) // 1_000
	if isinstance(value, str):
		text = value.strip()
		if not text:
			return None
		if text.endswith("Z"):
			text = text[:-1] + "+00:00"
		try:
			return to_micros(datetime.fromisoformat(text))
		except ValueError:
			return None
	stamp = getattr(value, "timestamp", None)
	if callable(stamp):
		return int(round(float(stamp()) * 1_000_000))
	return None


@dataclass(slots=True, frozen=True)
class ThreadIdentity:
	"""Resolved pairing for one post: who owns it and who is responding."""

	post_id: str
	owner_uid: str
	responder_uid: str
	owner_email: Optional[str] = None

	@property
	def thread_id(self) -> str:
		return thread_id_for(self.post_id, self.responder_uid)

	@property
	def participants(self) -> Tuple[str, str]:
		return (self.owner_uid, self.responder_uid)

	def role_of(self, uid: str) -> Optional[str]:
		if uid == self.owner_uid:
			return ROLE_OWNER
		if uid == self.responder_uid:
			return ROLE_RESPONDER
		return None

	def counterpart_of(self, uid: str) -> Optional[str]:
		if uid == self.owner_uid:
			return self.responder_uid
		if uid == self.responder_uid:
			return self.owner_uid
		return None


@dataclass(slots=True)
class Post:
	id: str
	owner_uid: str
	owner_email: Optional[str] = None
	title: Optional[str] = None
	description: Optional[str] = None
	location: Optional[dict] = None
	status: str = POST_STATUS_PUBLIC
	is_reported: bool = False
	created_at: Any = None

	@classmethod
	def from_record(cls, post_id: str, data: Mapping[str, Any]) -> "Post":
		return cls(
			id=post_id,
			owner_uid=str(data.get("ownerUid") or ""),
			owner_email=data.get("ownerEmail"),
			title=data.get("title"),
			description=data.get("description"),
			location=data.get("location"),
			status=data.get("status") or POST_STATUS_PUBLIC,
			is_reported=bool(data.get("isReported", False)),
			created_at=data.get("createdAt"),
		)

	@property
	def is_hidden(self) -> bool:
		return self.status == POST_STATUS_HIDDEN


@dataclass(slots=True)
class Thread:
	id: str
	post_id: str
	owner_uid: str
	responder_uid: str
	participants: Tuple[str, ...]
	owner_email: Optional[str] = None
	responder_email: Optional[str] = None
	last_message_at: Any = None
	last_message_preview: str = ""
	last_sender_uid: Optional[str] = None
	owner_last_read_at: Any = None
	responder_last_read_at: Any = None
	updated_at: Any = None

	@classmethod
	def from_record(cls, thread_id: str, data: Mapping[str, Any]) -> "Thread":
		return cls(
			id=thread_id,
			post_id=str(data.get("postId") or ""),
			owner_uid=str(data.get("ownerUid") or ""),
			responder_uid=str(data.get("responderUid") or ""),
			participants=tuple(data.get("participants") or ()),
			owner_email=data.get("ownerEmail"),
			responder_email=data.get("responderEmail"),
			last_message_at=data.get("lastMessageAt"),
			last_message_preview=data.get("lastMessagePreview") or "",
			last_sender_uid=data.get("lastSenderUid"),
			owner_last_read_at=data.get("ownerLastReadAt"),
			responder_last_read_at=data.get("responderLastReadAt"),
			updated_at=data.get("updatedAt"),
		)

	def role_of(self, uid: str) -> Optional[str]:
		if uid == self.owner_uid:
			return ROLE_OWNER
		if uid == self.responder_uid:
			return ROLE_RESPONDER
		return None

	def read_marker_for(self, uid: str) -> Any:
		role = self.role_of(uid)
		if role == ROLE_OWNER:
			return self.owner_last_read_at
		if role == ROLE_RESPONDER:
			return self.responder_last_read_at
		return None

	def counterpart_of(self, uid: str) -> Optional[str]:
		if uid == self.owner_uid:
			return self.responder_uid
		if uid == self.responder_uid:
			return self.owner_uid
		return None


@dataclass(slots=True)
class Message:
	id: str
	thread_id: str
	sender_uid: str
	content: str
	participants: Tuple[str, ...] = ()
	sender_email: Optional[str] = None
	created_at: Any = None
	updated_at: Any = None

	@classmethod
	def from_record(cls, thread_id: str, message_id: str, data: Mapping[str, Any]) -> "Message":
		return cls(
			id=message_id,
			thread_id=thread_id,
			sender_uid=str(data.get("senderUid") or ""),
			content=data.get("content") or "",
			participants=tuple(data.get("participants") or ()),
			sender_email=data.get("senderEmail"),
			created_at=data.get("createdAt"),
			updated_at=data.get("updatedAt"),
		)

	@property
	def edited(self) -> bool:
		return self.updated_at is not None


@dataclass(slots=True)
class UserProfile:
	uid: str
	email: Optional[str] = None
	name: Optional[str] = None
	is_admin: bool = False
	blocked_uids: frozenset = field(default_factory=frozenset)
	nicknames: dict = field(default_factory=dict)
	is_suspended: bool = False
	suspended_until: Any = None
	review_status: Optional[str] = None
	review_expires_at: Any = None

	@classmethod
	def from_record(cls, uid: str, data: Optional[Mapping[str, Any]]) -> "UserProfile":
		data = data or {}
		return cls(
			uid=uid,
			email=data.get("email"),
			name=data.get("name"),
			is_admin=bool(data.get("isAdmin", False)),
			blocked_uids=frozenset(data.get("blockedUids") or ()),
			nicknames=dict(data.get("nicknames") or {}),
			is_suspended=bool(data.get("isSuspended", False)),
			suspended_until=data.get("suspendedUntil"),
			review_status=data.get("reviewStatus"),
			review_expires_at=data.get("reviewExpiresAt"),
		)

	def has_blocked(self, uid: str) -> bool:
		return uid in self.blocked_uids


@dataclass(slots=True)
class Notification:
	id: str
	target_uid: str
	message: str
	type: str = "info"
	read: bool = False
	created_at: Any = None

	@classmethod
	def from_record(cls, notification_id: str, data: Mapping[str, Any]) -> "Notification":
		return cls(
			id=notification_id,
			target_uid=str(data.get("targetUid") or ""),
			message=data.get("message") or "",
			type=data.get("type") or "info",
			read=bool(data.get("read", False)),
			created_at=data.get("createdAt"),
		)
