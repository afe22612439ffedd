import pytest

from pinchat.domain.posts.service import visible_posts
from pinchat.domain.ratings.service import average_rating, group_ratings
from pinchat.domain.threads.exceptions import ModerationRestricted, NotFound, PermissionDenied, ValidationFailed
from pinchat.domain.threads.models import Post
from pinchat.infra.store import DocumentSnapshot

POST_ID = "post-1"


def test_hidden_posts_visible_to_owner_and_admin_only():
    posts = [
        Post(id="a", owner_uid="o"),
        Post(id="b", owner_uid="o", status="hidden"),
        Post(id="c", owner_uid="x", status="hidden"),
    ]
    assert [post.id for post in visible_posts(posts, "o")] == ["a", "b"]
    assert [post.id for post in visible_posts(posts, "z")] == ["a"]
    assert [post.id for post in visible_posts(posts, "z", is_admin=True)] == ["a", "b", "c"]


def test_rating_aggregate():
    docs = [
        DocumentSnapshot("ratings/u1_p", {"postId": "p", "rating": 4}),
        DocumentSnapshot("ratings/u2_p", {"postId": "p", "rating": 5}),
        DocumentSnapshot("ratings/u3_p", {"postId": "p", "rating": True}),
        DocumentSnapshot("ratings/u1_q", {"postId": "q", "rating": 1}),
    ]
    grouped = group_ratings(docs)
    assert grouped == {"p": [4, 5], "q": [1]}
    assert average_rating(grouped, "p") == "4.5"
    assert average_rating(grouped, "missing") == "0.0"


@pytest.mark.asyncio
async def test_create_and_remove_post_keeps_threads(seeded, session_for, users, store_read):
    owner = session_for(users["owner"])
    post_id = await owner.create_post("Found keys", description="near the station", location={"lat": 1.0, "lng": 2.0})

    record = await store_read(f"posts/{post_id}")
    assert record["ownerUid"] == users["owner"].id
    assert record["ownerEmail"] == "owner@example.com"
    assert record["createdAt"] is not None

    await session_for(users["responder"]).send_to_post(post_id, "those are mine")
    await owner.remove_post(post_id)

    assert await store_read(f"posts/{post_id}") is None
    assert await store_read(f"threads/{post_id}_{users['responder'].id}") is not None


@pytest.mark.asyncio
async def test_post_edits_are_owner_only_and_blocked_under_review(seeded, session_for, users, store_seed, store_read):
    owner = session_for(users["owner"])
    await owner.update_post(POST_ID, {"title": "Lost blue scarf"})
    assert (await store_read(f"posts/{POST_ID}"))["title"] == "Lost blue scarf"

    with pytest.raises(PermissionDenied) as excinfo:
        await session_for(users["responder"]).update_post(POST_ID, {"title": "mine now"})
    assert excinfo.value.reason == "not_post_owner"
    with pytest.raises(ValidationFailed):
        await owner.update_post(POST_ID, {"ownerUid": users["responder"].id})

    reported = dict(await store_read(f"posts/{POST_ID}"), isReported=True)
    await store_seed(f"posts/{POST_ID}", reported)
    with pytest.raises(PermissionDenied) as excinfo:
        await owner.remove_post(POST_ID)
    assert excinfo.value.reason == "post_under_review"

    await session_for(users["admin"]).remove_post(POST_ID)
    with pytest.raises(NotFound):
        await owner.update_post(POST_ID, {"title": "gone"})


@pytest.mark.asyncio
async def test_posts_feed_hides_hidden_posts_from_others(seeded, session_for, users):
    owner = session_for(users["owner"])
    await owner.create_post("Visible")
    await owner.create_post("Private", status="hidden")
    seen = []

    await session_for(users["responder"]).subscribe_posts(seen.append)
    assert [post.title for post in seen[-1]] == ["Visible"]

    mine = []
    await owner.subscribe_posts(mine.append)
    assert sorted(post.title for post in mine[-1]) == ["Private", "Visible"]


@pytest.mark.asyncio
async def test_rate_post_upserts_one_rating_per_user(seeded, session_for, users):
    responder = session_for(users["responder"])
    pushes = []
    await session_for(users["owner"]).subscribe_ratings(pushes.append)

    first = await responder.rate_post(POST_ID, 3)
    second = await responder.rate_post(POST_ID, 5)

    assert first == second == f"{users['responder'].id}_{POST_ID}"
    assert pushes[-1] == {POST_ID: [5]}
    assert average_rating(pushes[-1], POST_ID) == "5.0"


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6, 2.5, True])
async def test_rate_post_rejects_out_of_range(seeded, session_for, users, rating):
    with pytest.raises(ValidationFailed):
        await session_for(users["responder"]).rate_post(POST_ID, rating)


@pytest.mark.asyncio
async def test_rating_on_hold_while_under_review(seeded, session_for, users, store_seed):
    await store_seed(f"users/{users['responder'].id}", {"email": users["responder"].email, "reviewStatus": "pending"})
    with pytest.raises(ModerationRestricted) as excinfo:
        await session_for(users["responder"]).rate_post(POST_ID, 4)
    assert excinfo.value.reason == "rating_on_hold"


@pytest.mark.asyncio
async def test_notifications_feed_and_mark_all_read(seeded, session_for, users, store_read):
    owner = session_for(users["owner"])
    responder = session_for(users["responder"])
    feed = []
    await owner.subscribe_notifications(feed.append)

    first = await responder.notify(users["owner"].id, "New reply on your post")
    second = await responder.notify(users["owner"].id, "Rated 5 stars", type="rating")

    assert [item.id for item in feed[-1]] == [second, first]
    assert all(not item.read for item in feed[-1])

    assert await owner.mark_notifications_as_read() == 2
    assert (await store_read(f"notifications/{first}"))["read"] is True
    assert all(item.read for item in feed[-1])
    assert await owner.mark_notifications_as_read() == 0


@pytest.mark.asyncio
async def test_notify_requires_target_and_message(seeded, session_for, users):
    with pytest.raises(ValidationFailed):
        await session_for(users["owner"]).notify("", "hello")
    with pytest.raises(ValidationFailed):
        await session_for(users["owner"]).notify(users["responder"].id, "   ")


@pytest.mark.asyncio
async def test_thread_nicknames_are_private_and_removable(seeded, session_for, users, store_read):
    owner = session_for(users["owner"])
    thread_id = f"{POST_ID}_{users['responder'].id}"

    await owner.set_thread_nickname(thread_id, "  Scarf finder  ")
    assert (await store_read(f"users/{users['owner'].id}"))["nicknames"] == {thread_id: "Scarf finder"}

    await owner.set_thread_nickname(thread_id, "")
    assert (await store_read(f"users/{users['owner'].id}"))["nicknames"] == {}

    with pytest.raises(ValidationFailed):
        await owner.set_thread_nickname("bad.id", "x")
