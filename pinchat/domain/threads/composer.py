"""Draft holder enforcing clear-then-restore around a send."""

from __future__ import annotations

from typing import Awaitable, Callable

from pinchat.domain.threads.exceptions import ValidationFailed
from pinchat.domain.threads.models import normalize_content


class Composer:
	"""One UI surface's draft; at most one send in flight at a time.

	``submit()`` clears the draft before awaiting the send. If the send fails
	(or is cancelled) the text is put back, unless the user already started a
	new draft, and the error propagates.
	"""

	def __init__(self, send: Callable[[str], Awaitable[str]], draft: str = "") -> None:
		self._send = send
		self.draft = draft
		self._in_flight = False

	@property
	def sending(self) -> bool:
		return self._in_flight

	async def submit(self) -> str:
		if self._in_flight:
			raise ValidationFailed("send_in_flight")
		text = self.draft
		if not normalize_content(text):
			raise ValidationFailed("empty_content")
		self._in_flight = True
		self.draft = ""
		try:
			return await self._send(text)
		except BaseException:
			if not self.draft:
				self.draft = text
			raise
		finally:
			self._in_flight = False
