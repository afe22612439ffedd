"""Authenticated principal carried by every store client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from pinchat.settings import settings


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
	id: str
	email: Optional[str] = None
	display_name: Optional[str] = None
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_admin(self) -> bool:
		return self.has_role("admin") or self.id in settings.admin_uids


def normalise_email(value: Optional[str]) -> Optional[str]:
	if not value:
		return None
	return value.strip().lower() or None
