"""One rating per user per post, plus the aggregate shown on each post."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping

from pinchat.domain.threads.exceptions import (
	ModerationRestricted,
	Unauthenticated,
	ValidationFailed,
	translate_store_error,
)
from pinchat.domain.threads.models import UserProfile
from pinchat.infra.client import StoreClient
from pinchat.infra.store import SERVER_TIMESTAMP, DocumentSnapshot, StoreError
from pinchat.moderation import gating

logger = logging.getLogger(__name__)

RATING_MIN = 1
RATING_MAX = 5


def rating_id(uid: str, post_id: str) -> str:
	return f"{uid}_{post_id}"


def group_ratings(docs: Iterable[DocumentSnapshot]) -> Dict[str, List[int]]:
	grouped: Dict[str, List[int]] = {}
	for doc in docs:
		post_id = doc.get("postId")
		value = doc.get("rating")
		if not post_id or not isinstance(value, (int, float)) or isinstance(value, bool):
			continue
		grouped.setdefault(post_id, []).append(value)
	return grouped


def average_rating(ratings: Mapping[str, List[int]], post_id: str) -> str:
	values = ratings.get(post_id) or []
	if not values:
		return "0.0"
	return f"{sum(values) / len(values):.1f}"


class RatingService:
	def __init__(self, client: StoreClient) -> None:
		self._client = client

	async def rate_post(self, post_id: str, rating: int) -> str:
		user = self._client.user
		if user is None:
			raise Unauthenticated()
		if isinstance(rating, bool) or not isinstance(rating, int) or not RATING_MIN <= rating <= RATING_MAX:
			raise ValidationFailed("rating_out_of_range")
		try:
			profile = await self._client.get(f"users/{user.id}")
			if not user.is_admin and gating.is_restricted(UserProfile.from_record(user.id, profile.data)):
				raise ModerationRestricted("rating_on_hold")
			record_id = rating_id(user.id, post_id)
			batch = self._client.batch().set(
				f"ratings/{record_id}",
				{"postId": post_id, "userId": user.id, "rating": rating, "updatedAt": SERVER_TIMESTAMP},
			)
			await self._client.commit(batch)
		except StoreError as exc:
			raise translate_store_error(exc) from exc
		logger.info("Post rated", extra={"post_id": post_id, "rating": rating})
		return record_id
