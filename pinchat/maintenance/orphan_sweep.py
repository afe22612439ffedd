"""Administrative sweep of message records left behind by thread deletion.

Blocking deletes thread records but not their ``messages`` sub-records. Block
audit entries carry the deleted thread ids; the sweep walks them, confirms each
thread is still gone and removes its messages in bounded batches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from pinchat.domain.threads.exceptions import PermissionDenied, translate_store_error
from pinchat.infra.client import StoreClient
from pinchat.infra.store import FieldFilter, Query, Source, StoreError
from pinchat.obs import metrics as obs_metrics
from pinchat.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
	threads_checked: int = 0
	threads_live: int = 0
	messages_deleted: int = 0
	swept_threads: List[str] = field(default_factory=list)


async def candidate_threads(client: StoreClient) -> List[str]:
	snapshot = await client.query(Query("audit_logs").where(FieldFilter("action", "==", "block")))
	seen: List[str] = []
	for doc in snapshot:
		for thread_id in doc.get("threadIds") or []:
			if thread_id not in seen:
				seen.append(thread_id)
	return seen


async def _sweep_thread(client: StoreClient, thread_id: str, batch_size: int) -> int:
	removed = 0
	query = Query(f"threads/{thread_id}/messages").take(batch_size)
	while True:
		snapshot = await client.query(query)
		if snapshot.empty:
			return removed
		batch = client.batch()
		for doc in snapshot:
			batch.delete(doc.path)
		await client.commit(batch)
		removed += len(snapshot)


async def sweep_orphan_messages(
	client: StoreClient,
	thread_ids: Optional[Iterable[str]] = None,
	*,
	batch_size: Optional[int] = None,
) -> SweepReport:
	if client.user is None or not client.user.is_admin:
		raise PermissionDenied("admin_only")
	size = max(1, min(int(batch_size or settings.orphan_sweep_batch_size), settings.store_max_batch_writes))
	report = SweepReport()
	try:
		targets = list(thread_ids) if thread_ids is not None else await candidate_threads(client)
		for thread_id in targets:
			report.threads_checked += 1
			parent = await client.get(f"threads/{thread_id}", source=Source.SERVER)
			if parent.exists:
				report.threads_live += 1
				continue
			removed = await _sweep_thread(client, thread_id, size)
			if removed:
				report.messages_deleted += removed
				report.swept_threads.append(thread_id)
	except StoreError as exc:
		logger.warning("Orphan sweep aborted", extra={"reason": exc.reason, "deleted": report.messages_deleted})
		raise translate_store_error(exc) from exc
	finally:
		obs_metrics.inc_orphans_swept(report.messages_deleted)
	logger.info(
		"Orphan sweep finished",
		extra={"threads_checked": report.threads_checked, "messages_deleted": report.messages_deleted},
	)
	return report
