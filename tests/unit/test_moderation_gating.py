from datetime import datetime, timedelta, timezone

import pytest

from pinchat.domain.threads.exceptions import ModerationRestricted
from pinchat.domain.threads.models import ThreadIdentity, UserProfile
from pinchat.infra.store import StorePermissionDenied
from pinchat.moderation.gating import can_start_new_thread, is_restricted, is_suspended, is_under_review

POST_ID = "post-1"
NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def test_suspension_predicate_respects_end_date():
    assert not is_suspended({"isSuspended": False}, NOW)
    assert is_suspended({"isSuspended": True}, NOW)
    assert is_suspended({"isSuspended": True, "suspendedUntil": NOW + timedelta(hours=1)}, NOW)
    assert not is_suspended({"isSuspended": True, "suspendedUntil": NOW - timedelta(seconds=1)}, NOW)
    assert not is_suspended(None, NOW)


def test_probation_predicate():
    assert is_under_review({"reviewStatus": "probation", "reviewExpiresAt": NOW + timedelta(days=1)}, NOW)
    assert is_under_review({"reviewStatus": "PENDING"}, NOW)
    assert not is_under_review({"reviewStatus": "probation", "reviewExpiresAt": NOW - timedelta(days=1)}, NOW)
    assert not is_under_review({"reviewStatus": "cleared"}, NOW)
    assert is_restricted(UserProfile(uid="u", review_status="probation"), NOW)


def test_restricted_user_may_only_continue_as_responder():
    identity = ThreadIdentity(post_id="p", owner_uid="o", responder_uid="r")
    suspended = {"isSuspended": True}
    assert can_start_new_thread(suspended, identity, "r", thread_exists=True, now=NOW)
    assert not can_start_new_thread(suspended, identity, "r", thread_exists=False, now=NOW)
    assert not can_start_new_thread(suspended, identity, "o", thread_exists=True, now=NOW)
    assert can_start_new_thread({}, identity, "o", thread_exists=False, now=NOW)


@pytest.mark.asyncio
async def test_suspended_user_resolves_identity_but_send_is_gated(seeded, session_for, users, store_seed, store_read):
    await store_seed(f"users/{users['responder'].id}", {"email": users["responder"].email, "isSuspended": True})
    responder = session_for(users["responder"])

    identity = await responder.resolve_identity(POST_ID)
    assert identity.responder_uid == users["responder"].id

    with pytest.raises(ModerationRestricted):
        await responder.send_to_post(POST_ID, "hello")
    assert await store_read(f"threads/{identity.thread_id}") is None


@pytest.mark.asyncio
async def test_suspended_responder_keeps_existing_thread(seeded, session_for, users, store_seed):
    responder = session_for(users["responder"])
    await responder.send_to_post(POST_ID, "before suspension")
    thread_id = f"{POST_ID}_{users['responder'].id}"
    await store_seed(
        f"users/{users['responder'].id}",
        {"email": users["responder"].email, "isSuspended": True, "suspendedUntil": datetime.now(timezone.utc) + timedelta(days=2)},
    )

    assert await responder.send_message(thread_id, "still answering")


@pytest.mark.asyncio
async def test_suspended_owner_cannot_reply(seeded, session_for, users, store_seed):
    await session_for(users["responder"]).send_to_post(POST_ID, "hello")
    await store_seed(f"users/{users['owner'].id}", {"email": users["owner"].email, "reviewStatus": "probation"})
    owner = session_for(users["owner"])

    with pytest.raises(ModerationRestricted):
        await owner.send_message(f"{POST_ID}_{users['responder'].id}", "reply")


@pytest.mark.asyncio
async def test_profile_protected_fields_are_admin_only(seeded, session_for, users):
    responder = session_for(users["responder"])
    batch = responder.client.batch().set(f"users/{users['responder'].id}", {"isSuspended": False}, merge=True)
    with pytest.raises(StorePermissionDenied) as excinfo:
        await responder.client.commit(batch)
    assert excinfo.value.reason == "protected_profile_fields"
