"""Thread domain exports."""

from .exceptions import (  # noqa: F401
	InvalidRecipient,
	ModerationRestricted,
	NoRecipientSpecified,
	NotFound,
	PermissionDenied,
	PostNotFound,
	RecipientBlocked,
	StorageUnavailable,
	ThreadError,
	Unauthenticated,
	ValidationFailed,
)
from .models import Message, Post, Thread, ThreadIdentity, UserProfile, new_message_id, thread_id_for  # noqa: F401
