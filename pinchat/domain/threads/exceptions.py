"""Domain-level exceptions for threads and messages."""

from __future__ import annotations

from pinchat.infra.store import (
	StoreConflict,
	StoreError,
	StoreInvalidArgument,
	StoreNotFound,
	StorePermissionDenied,
	StoreUnavailable,
)


class ThreadError(Exception):
	"""Base class for messaging core errors."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class Unauthenticated(ThreadError):
	reason = "unauthenticated"


class PostNotFound(ThreadError):
	reason = "post_not_found"


class InvalidRecipient(ThreadError):
	reason = "invalid_recipient"


class NoRecipientSpecified(ThreadError):
	reason = "no_recipient_specified"


class ValidationFailed(ThreadError):
	reason = "validation_failed"


class PermissionDenied(ThreadError):
	reason = "permission_denied"


class ModerationRestricted(PermissionDenied):
	reason = "moderation_restricted"


class RecipientBlocked(PermissionDenied):
	reason = "recipient_blocked"


class NotFound(ThreadError):
	reason = "not_found"


class StorageUnavailable(ThreadError):
	reason = "storage_unavailable"


def translate_store_error(exc: StoreError) -> ThreadError:
	"""Map a store failure onto the domain taxonomy, keeping the store's reason."""
	if isinstance(exc, StorePermissionDenied):
		return PermissionDenied(exc.reason)
	if isinstance(exc, StoreNotFound):
		return NotFound(exc.reason)
	if isinstance(exc, StoreUnavailable):
		return StorageUnavailable(exc.reason)
	if isinstance(exc, StoreInvalidArgument):
		return ValidationFailed(exc.reason)
	if isinstance(exc, StoreConflict):
		return PermissionDenied(exc.reason)
	return ThreadError(exc.reason)
