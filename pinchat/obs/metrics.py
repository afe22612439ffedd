"""Central registry for Prometheus metrics used across the messaging core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


MESSAGES_SENT = Counter(
	"pinchat_messages_sent_total",
	"Messages committed together with their thread summary",
	["role"],
)

THREADS_CREATED = Counter(
	"pinchat_threads_created_total",
	"Threads created lazily by a first message",
)

COMMIT_REJECTS = Counter(
	"pinchat_commit_rejects_total",
	"Message commits rejected by the store",
	["reason"],
)

COMMIT_LATENCY = Histogram(
	"pinchat_commit_duration_seconds",
	"Atomic message commit latency in seconds",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

MESSAGES_EDITED = Counter(
	"pinchat_messages_edited_total",
	"Messages edited by their sender",
)

SUBSCRIPTIONS_ACTIVE = Gauge(
	"pinchat_subscriptions_active",
	"Live subscriptions currently open per kind",
	["kind"],
)

SUBSCRIPTION_EVENTS = Counter(
	"pinchat_subscription_events_total",
	"Subscription lifecycle events per kind",
	["kind", "event"],
)

READ_MARKER_UPDATES = Counter(
	"pinchat_read_marker_updates_total",
	"Read marker updates by outcome",
	["result"],
)

BLOCKS_TOTAL = Counter(
	"pinchat_blocks_total",
	"Block operations",
	["action"],
)

THREADS_DELETED = Counter(
	"pinchat_threads_deleted_total",
	"Threads deleted by blocking teardown",
)

ORPHAN_MESSAGES_SWEPT = Counter(
	"pinchat_orphan_messages_swept_total",
	"Message records removed by the orphan sweep",
)

STORE_COMMIT_RETRIES = Counter(
	"pinchat_store_commit_retries_total",
	"Optimistic store commits retried after a concurrent change",
	["backend"],
)


def inc_message_sent(role: str) -> None:
	MESSAGES_SENT.labels(role=role).inc()


def inc_thread_created() -> None:
	THREADS_CREATED.inc()


def inc_commit_reject(reason: str) -> None:
	COMMIT_REJECTS.labels(reason=reason).inc()


def observe_commit_latency(seconds: float) -> None:
	COMMIT_LATENCY.observe(max(0.0, seconds))


def inc_message_edited() -> None:
	MESSAGES_EDITED.inc()


def subscription_opened(kind: str) -> None:
	SUBSCRIPTIONS_ACTIVE.labels(kind=kind).inc()
	SUBSCRIPTION_EVENTS.labels(kind=kind, event="open").inc()


def subscription_cancelled(kind: str) -> None:
	SUBSCRIPTIONS_ACTIVE.labels(kind=kind).dec()
	SUBSCRIPTION_EVENTS.labels(kind=kind, event="cancel").inc()


def subscription_event(kind: str, event: str) -> None:
	SUBSCRIPTION_EVENTS.labels(kind=kind, event=event).inc()


def inc_read_marker(result: str) -> None:
	READ_MARKER_UPDATES.labels(result=result).inc()


def inc_block(action: str) -> None:
	BLOCKS_TOTAL.labels(action=action).inc()


def inc_threads_deleted(count: int = 1) -> None:
	if count > 0:
		THREADS_DELETED.inc(count)


def inc_orphans_swept(count: int) -> None:
	if count > 0:
		ORPHAN_MESSAGES_SWEPT.inc(count)


def inc_store_retry(backend: str) -> None:
	STORE_COMMIT_RETRIES.labels(backend=backend).inc()
