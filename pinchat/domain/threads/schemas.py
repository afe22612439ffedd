"""Pydantic payloads exchanged with collaborators outside the core."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field

PUSH_PREVIEW_LENGTH = 100


class MessageCreatedEvent(BaseModel):
	"""Shape consumed by the push dispatcher when a message record appears."""

	type: str = Field(default="new_message")
	thread_id: str
	message_id: str
	sender_uid: str
	sender_email: Optional[str] = None
	recipient_uid: str
	preview: str = Field(..., max_length=PUSH_PREVIEW_LENGTH)
	created_at: Optional[datetime] = None

	@classmethod
	def from_record(cls, thread_id: str, message_id: str, data: Mapping[str, Any]) -> Optional["MessageCreatedEvent"]:
		"""Build the event, or ``None`` when no recipient can be derived."""
		sender_uid = data.get("senderUid")
		participants: List[str] = list(data.get("participants") or [])
		recipient = next((uid for uid in participants if uid != sender_uid), None)
		if not sender_uid or recipient is None:
			return None
		created_at = data.get("createdAt")
		return cls(
			thread_id=thread_id,
			message_id=message_id,
			sender_uid=sender_uid,
			sender_email=data.get("senderEmail"),
			recipient_uid=recipient,
			preview=str(data.get("content") or "")[:PUSH_PREVIEW_LENGTH],
			created_at=created_at if isinstance(created_at, datetime) else None,
		)

	def push_data(self) -> dict:
		return {"threadId": self.thread_id, "type": self.type}


class ThreadSummary(BaseModel):
	"""Thread list row as rendered for one viewer."""

	thread_id: str
	post_id: str
	counterpart_uid: str
	nickname: Optional[str] = None
	last_message_preview: str = ""
	last_sender_uid: Optional[str] = None
	last_message_at: Optional[datetime] = None
	unread: bool = False
