"""Audit trail records for social actions."""

from __future__ import annotations

from typing import Any, Dict, Optional

import ulid

from pinchat.infra.client import StoreClient
from pinchat.infra.store import SERVER_TIMESTAMP, WriteBatch


def stage_audit(
	client: StoreClient,
	action: str,
	fields: Dict[str, Any],
	batch: Optional[WriteBatch] = None,
) -> tuple[str, WriteBatch]:
	"""Append an ``audit_logs`` record for the client's user to ``batch`` (or a new one)."""
	audit_id = str(ulid.new())
	batch = batch if batch is not None else client.batch()
	batch.create(
		f"audit_logs/{audit_id}",
		{"action": action, "actorUid": client.uid, **fields, "createdAt": SERVER_TIMESTAMP},
	)
	return audit_id, batch
