"""Document store primitives shared by every backend.

The messaging core talks to a replicated document store: records keyed by a
slash-separated path (``threads/{id}/messages/{mid}``), atomic multi-record
batches, server-assigned commit timestamps and live queries. Backends implement
:class:`DocumentBackend`; the pure helpers here (write application, query
matching, ordering) are shared so every backend agrees on semantics.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from pinchat.infra.auth import AuthenticatedUser


class StoreError(Exception):
	"""Base class for document store failures."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class StorePermissionDenied(StoreError):
	reason = "permission_denied"


class StoreNotFound(StoreError):
	reason = "not_found"


class StoreConflict(StoreError):
	reason = "already_exists"


class StoreUnavailable(StoreError):
	reason = "unavailable"


class StoreInvalidArgument(StoreError):
	reason = "invalid_argument"


class _Sentinel:
	__slots__ = ("_name",)

	def __init__(self, name: str) -> None:
		self._name = name

	def __repr__(self) -> str:
		return self._name

	def __deepcopy__(self, memo):  # sentinels are compared by identity
		return self


SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE_FIELD = _Sentinel("DELETE_FIELD")
_MISSING = _Sentinel("MISSING")


@dataclass(frozen=True)
class ArrayUnion:
	values: Tuple[Any, ...]

	def __init__(self, values: Iterable[Any]) -> None:
		object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayRemove:
	values: Tuple[Any, ...]

	def __init__(self, values: Iterable[Any]) -> None:
		object.__setattr__(self, "values", tuple(values))


class Source(str, Enum):
	"""Where a point read is served from."""

	DEFAULT = "default"
	SERVER = "server"
	CACHE = "cache"


def split_path(path: str) -> List[str]:
	parts = [segment for segment in str(path).strip("/").split("/")]
	if not parts or any(not segment for segment in parts):
		raise StoreInvalidArgument("empty_path_segment")
	return parts


def document_path(*segments: str) -> str:
	path = "/".join(str(segment) for segment in segments)
	if len(split_path(path)) % 2 != 0:
		raise StoreInvalidArgument("not_a_document_path")
	return path


def collection_path(*segments: str) -> str:
	path = "/".join(str(segment) for segment in segments)
	if len(split_path(path)) % 2 != 1:
		raise StoreInvalidArgument("not_a_collection_path")
	return path


def parent_collection(path: str) -> str:
	parts = split_path(path)
	if len(parts) % 2 != 0:
		raise StoreInvalidArgument("not_a_document_path")
	return "/".join(parts[:-1])


def document_id(path: str) -> str:
	return split_path(path)[-1]


def watched_paths(collection: str) -> List[str]:
	"""Paths whose changes can alter a live query on ``collection``.

	A subcollection query also depends on its parent document, since the rules
	for reading it are evaluated against that record.
	"""
	parts = split_path(collection)
	if len(parts) == 1:
		return ["/".join(parts)]
	return ["/".join(parts), "/".join(parts[:-1])]


def get_field(data: Mapping[str, Any] | None, dotted: str, default: Any = None) -> Any:
	node: Any = data
	for part in dotted.split("."):
		if not isinstance(node, Mapping) or part not in node:
			return default
		node = node[part]
	return node


@dataclass(slots=True, frozen=True)
class DocumentSnapshot:
	path: str
	data: Optional[dict]
	read_time: Optional[datetime] = None

	@property
	def id(self) -> str:
		return document_id(self.path)

	@property
	def exists(self) -> bool:
		return self.data is not None

	def get(self, dotted: str, default: Any = None) -> Any:
		return get_field(self.data, dotted, default)

	def to_dict(self) -> Optional[dict]:
		return copy.deepcopy(self.data)


@dataclass(slots=True, frozen=True)
class QuerySnapshot:
	docs: Tuple[DocumentSnapshot, ...]
	read_time: Optional[datetime] = None

	def __iter__(self) -> Iterator[DocumentSnapshot]:
		return iter(self.docs)

	def __len__(self) -> int:
		return len(self.docs)

	@property
	def empty(self) -> bool:
		return not self.docs


_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "not_in", "array_contains", "array_contains_any")


@dataclass(frozen=True)
class FieldFilter:
	field: str
	op: str
	value: Any

	def __post_init__(self) -> None:
		if self.op not in _OPERATORS:
			raise StoreInvalidArgument(f"unsupported_operator:{self.op}")

	def matches(self, data: Mapping[str, Any]) -> bool:
		current = get_field(data, self.field, _MISSING)
		if current is _MISSING:
			return False
		if self.op == "==":
			return current == self.value
		if self.op == "!=":
			return current != self.value
		if self.op == "in":
			return current in self.value
		if self.op == "not_in":
			return current not in self.value
		if self.op == "array_contains":
			return isinstance(current, list) and self.value in current
		if self.op == "array_contains_any":
			return isinstance(current, list) and any(item in current for item in self.value)
		if _type_rank(current) != _type_rank(self.value):
			return False
		if self.op == "<":
			return current < self.value
		if self.op == "<=":
			return current <= self.value
		if self.op == ">":
			return current > self.value
		return current >= self.value


@dataclass(frozen=True)
class Or:
	filters: Tuple["Filter", ...]

	def __init__(self, *filters: "Filter") -> None:
		object.__setattr__(self, "filters", tuple(filters))

	def matches(self, data: Mapping[str, Any]) -> bool:
		return any(item.matches(data) for item in self.filters)


@dataclass(frozen=True)
class And:
	filters: Tuple["Filter", ...]

	def __init__(self, *filters: "Filter") -> None:
		object.__setattr__(self, "filters", tuple(filters))

	def matches(self, data: Mapping[str, Any]) -> bool:
		return all(item.matches(data) for item in self.filters)


Filter = Union[FieldFilter, Or, And]


@dataclass(frozen=True)
class Query:
	"""Immutable query over a single collection."""

	collection: str
	filter: Optional[Filter] = None
	order_by: Tuple[Tuple[str, bool], ...] = ()
	limit: Optional[int] = None

	def where(self, condition: Filter) -> "Query":
		combined = condition if self.filter is None else And(self.filter, condition)
		return replace(self, filter=combined)

	def order(self, field_name: str, *, descending: bool = False) -> "Query":
		return replace(self, order_by=self.order_by + ((field_name, descending),))

	def take(self, count: int) -> "Query":
		return replace(self, limit=int(count))


class WriteKind(str, Enum):
	CREATE = "create"
	SET = "set"
	UPDATE = "update"
	DELETE = "delete"


@dataclass(slots=True)
class Write:
	kind: WriteKind
	path: str
	data: Optional[dict] = None
	merge: bool = False


@dataclass
class WriteBatch:
	"""Ordered set of writes committed as one atomic unit."""

	writes: List[Write] = field(default_factory=list)

	def create(self, path: str, data: Mapping[str, Any]) -> "WriteBatch":
		self.writes.append(Write(WriteKind.CREATE, document_path(path), dict(data)))
		return self

	def set(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> "WriteBatch":  # noqa: A003
		self.writes.append(Write(WriteKind.SET, document_path(path), dict(data), merge=merge))
		return self

	def update(self, path: str, data: Mapping[str, Any]) -> "WriteBatch":
		if not data:
			raise StoreInvalidArgument("empty_update")
		self.writes.append(Write(WriteKind.UPDATE, document_path(path), dict(data)))
		return self

	def delete(self, path: str) -> "WriteBatch":
		self.writes.append(Write(WriteKind.DELETE, document_path(path)))
		return self

	def __len__(self) -> int:
		return len(self.writes)

	def paths(self) -> List[str]:
		seen: List[str] = []
		for write in self.writes:
			if write.path not in seen:
				seen.append(write.path)
		return seen


def _resolve_value(value: Any, existing: Any, commit_time: datetime) -> Any:
	if value is SERVER_TIMESTAMP:
		return commit_time
	if isinstance(value, ArrayUnion):
		base = list(existing) if isinstance(existing, list) else []
		for item in value.values:
			if item not in base:
				base.append(item)
		return base
	if isinstance(value, ArrayRemove):
		base = list(existing) if isinstance(existing, list) else []
		return [item for item in base if item not in value.values]
	if isinstance(value, Mapping):
		return {
			str(key): _resolve_value(nested, None, commit_time)
			for key, nested in value.items()
			if nested is not DELETE_FIELD
		}
	if isinstance(value, (list, tuple)):
		return copy.deepcopy(list(value))
	return value


def _merge_into(target: dict, patch: Mapping[str, Any], commit_time: datetime) -> None:
	for key, value in patch.items():
		if value is DELETE_FIELD:
			target.pop(key, None)
			continue
		current = target.get(key)
		if isinstance(value, Mapping) and isinstance(current, dict):
			_merge_into(current, value, commit_time)
		else:
			target[key] = _resolve_value(value, current, commit_time)


def _update_path(target: dict, dotted: str, value: Any, commit_time: datetime) -> None:
	parts = dotted.split(".")
	node = target
	for part in parts[:-1]:
		child = node.get(part)
		if not isinstance(child, dict):
			if value is DELETE_FIELD:
				return
			child = {}
			node[part] = child
		node = child
	leaf = parts[-1]
	if value is DELETE_FIELD:
		node.pop(leaf, None)
	else:
		node[leaf] = _resolve_value(value, node.get(leaf), commit_time)


def apply_write(current: Optional[dict], write: Write, commit_time: datetime) -> Optional[dict]:
	"""Return the record state after ``write``; raises on violated preconditions."""
	if write.kind is WriteKind.DELETE:
		return None
	payload = write.data or {}
	if write.kind is WriteKind.CREATE:
		if current is not None:
			raise StoreConflict("already_exists")
		return _resolve_value(payload, None, commit_time)
	if write.kind is WriteKind.SET:
		if write.merge and current is not None:
			merged = copy.deepcopy(current)
			_merge_into(merged, payload, commit_time)
			return merged
		return _resolve_value(payload, None, commit_time)
	if current is None:
		raise StoreNotFound("update_missing_document")
	updated = copy.deepcopy(current)
	for dotted, value in payload.items():
		_update_path(updated, dotted, value, commit_time)
	return updated


def apply_writes(
	before: Mapping[str, Optional[dict]],
	writes: Sequence[Write],
	commit_time: datetime,
) -> dict[str, Optional[dict]]:
	after = {path: copy.deepcopy(data) for path, data in before.items()}
	for write in writes:
		after[write.path] = apply_write(after.get(write.path), write, commit_time)
	return after


def changed_fields(before: Optional[Mapping[str, Any]], after: Optional[Mapping[str, Any]]) -> set[str]:
	before = before or {}
	after = after or {}
	keys = set(before) | set(after)
	return {key for key in keys if before.get(key, _MISSING) != after.get(key, _MISSING)}


def _type_rank(value: Any) -> int:
	if value is None:
		return 0
	if isinstance(value, bool):
		return 1
	if isinstance(value, (int, float)):
		return 2
	if isinstance(value, datetime):
		return 3
	if isinstance(value, str):
		return 4
	if isinstance(value, list):
		return 6
	if isinstance(value, Mapping):
		return 7
	return 8


def _sort_key(value: Any) -> Tuple[int, Any]:
	rank = _type_rank(value)
	if rank in (1, 2, 3, 4):
		return (rank, value)
	if rank == 0:
		return (rank, 0)
	return (rank, repr(value))


class _Reversed:
	__slots__ = ("key",)

	def __init__(self, key: Tuple[int, Any]) -> None:
		self.key = key

	def __lt__(self, other: "_Reversed") -> bool:
		return other.key < self.key

	def __eq__(self, other: object) -> bool:
		return isinstance(other, _Reversed) and other.key == self.key


def run_query(query: Query, records: Iterable[Tuple[str, dict]]) -> List[Tuple[str, dict]]:
	"""Filter, order and limit ``records`` (``(path, data)`` pairs) for ``query``."""
	prefix = query.collection.strip("/") + "/"
	depth = len(split_path(query.collection)) + 1
	matched: List[Tuple[str, dict]] = []
	for path, data in records:
		if data is None or not path.startswith(prefix) or len(split_path(path)) != depth:
			continue
		if query.filter is not None and not query.filter.matches(data):
			continue
		if any(get_field(data, name, _MISSING) is _MISSING for name, _ in query.order_by):
			continue
		matched.append((path, data))

	def key(item: Tuple[str, dict]):
		path, data = item
		parts: list = []
		for name, descending in query.order_by:
			value_key = _sort_key(get_field(data, name))
			parts.append(_Reversed(value_key) if descending else value_key)
		parts.append(document_id(path))
		return tuple(parts)

	matched.sort(key=key)
	if query.limit is not None:
		matched = matched[: max(0, query.limit)]
	return matched


SnapshotCallback = Callable[[QuerySnapshot], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[StoreError], Union[None, Awaitable[None]]]


class ListenerRegistration(Protocol):
	def remove(self) -> None:
		...


class DocumentBackend(Protocol):
	"""Server side of the store: evaluates rules and owns the records."""

	name: str

	async def get(self, path: str, actor: Optional[AuthenticatedUser]) -> DocumentSnapshot:
		...

	async def run_query(self, query: Query, actor: Optional[AuthenticatedUser]) -> QuerySnapshot:
		...

	async def commit(self, writes: Sequence[Write], actor: Optional[AuthenticatedUser]) -> datetime:
		...

	async def listen(
		self,
		query: Query,
		actor: Optional[AuthenticatedUser],
		on_snapshot: SnapshotCallback,
		on_error: Optional[ErrorCallback] = None,
	) -> ListenerRegistration:
		...

	async def close(self) -> None:
		...
