"""Private per-thread nicknames stored on the caller's own profile."""

from __future__ import annotations

from pinchat.domain.threads.exceptions import Unauthenticated, ValidationFailed, translate_store_error
from pinchat.infra.client import StoreClient
from pinchat.infra.store import DELETE_FIELD, StoreError

NICKNAME_MAX_LENGTH = 40


async def set_thread_nickname(client: StoreClient, thread_id: str, nickname: str | None) -> None:
	if client.user is None:
		raise Unauthenticated()
	if not thread_id or "." in thread_id:
		raise ValidationFailed("invalid_thread_id")
	value = (nickname or "").strip()[:NICKNAME_MAX_LENGTH]
	payload = {"nicknames": {thread_id: value or DELETE_FIELD}}
	batch = client.batch().set(f"users/{client.user.id}", payload, merge=True)
	try:
		await client.commit(batch)
	except StoreError as exc:
		raise translate_store_error(exc) from exc
