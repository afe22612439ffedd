import asyncio

import pytest

from pinchat.domain.threads.composer import Composer
from pinchat.domain.threads.exceptions import ModerationRestricted, ValidationFailed


@pytest.mark.asyncio
async def test_draft_is_cleared_before_send_completes():
    observed = []
    composer = Composer(None, "hello")

    async def send(text):
        observed.append((text, composer.draft, composer.sending))
        return "m-1"

    composer._send = send
    assert await composer.submit() == "m-1"
    assert observed == [("hello", "", True)]
    assert composer.draft == ""
    assert not composer.sending


@pytest.mark.asyncio
async def test_failed_send_restores_draft():
    async def send(text):
        raise ModerationRestricted("account_restricted")

    composer = Composer(send, "hello")
    with pytest.raises(ModerationRestricted):
        await composer.submit()
    assert composer.draft == "hello"
    assert not composer.sending


@pytest.mark.asyncio
async def test_failed_send_keeps_newer_draft():
    composer = Composer(None, "first")

    async def send(text):
        composer.draft = "second"
        raise RuntimeError("network")

    composer._send = send
    with pytest.raises(RuntimeError):
        await composer.submit()
    assert composer.draft == "second"


@pytest.mark.asyncio
async def test_overlapping_submit_is_rejected():
    release = asyncio.Event()

    async def send(text):
        await release.wait()
        return "m-1"

    composer = Composer(send, "hello")
    first = asyncio.create_task(composer.submit())
    await asyncio.sleep(0)
    composer.draft = "again"

    with pytest.raises(ValidationFailed) as excinfo:
        await composer.submit()
    assert excinfo.value.reason == "send_in_flight"

    release.set()
    assert await first == "m-1"
    assert composer.draft == "again"


@pytest.mark.asyncio
async def test_empty_draft_is_rejected_without_sending():
    calls = []

    async def send(text):
        calls.append(text)
        return "m"

    composer = Composer(send, "   \n ")
    with pytest.raises(ValidationFailed) as excinfo:
        await composer.submit()
    assert excinfo.value.reason == "empty_content"
    assert calls == []
    assert composer.draft == "   \n "


@pytest.mark.asyncio
async def test_cancelled_send_restores_draft():
    async def send(text):
        await asyncio.sleep(10)

    composer = Composer(send, "hello")
    task = asyncio.create_task(composer.submit())
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert composer.draft == "hello"


@pytest.mark.asyncio
async def test_session_composer_sends_to_post_and_thread(seeded, session_for, users, store_read):
    responder = session_for(users["responder"])
    composer = responder.composer(post_id="post-1", draft="first contact")

    message_id = await composer.submit()

    thread_id = f"post-1_{users['responder'].id}"
    assert (await store_read(f"threads/{thread_id}/messages/{message_id}"))["content"] == "first contact"

    reply = session_for(users["owner"]).composer(thread_id=thread_id, draft="thanks")
    await reply.submit()
    assert (await store_read(f"threads/{thread_id}"))["lastSenderUid"] == users["owner"].id


@pytest.mark.asyncio
async def test_session_composer_requires_target(session_for, users):
    with pytest.raises(ValidationFailed):
        session_for(users["owner"]).composer(draft="hi")
