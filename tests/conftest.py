import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from pinchat.infra import client as store_client
from pinchat.infra.auth import AuthenticatedUser
from pinchat.infra.memory_store import InMemoryDocumentBackend
from pinchat.infra.store import Write, WriteKind
from pinchat.session import MessagingSession
from pinchat.settings import settings

ADMIN = AuthenticatedUser(id="admin-1", email="admin@example.com", roles=("admin",))
OWNER = AuthenticatedUser(id="owner-1", email="owner@example.com")
RESPONDER = AuthenticatedUser(id="resp-1", email="resp@example.com")
OTHER = AuthenticatedUser(id="other-1", email="other@example.com")

POST_ID = "post-1"


async def seed(backend, path: str, data: dict) -> None:
	await backend.commit([Write(WriteKind.SET, path, data)], ADMIN)


async def read_raw(backend, path: str):
	snapshot = await backend.get(path, ADMIN)
	return snapshot.data


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from pinchat.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	original_env = settings.environment
	original_admins = settings.admin_uids
	settings.environment = "dev"
	settings.admin_uids = ()
	try:
		yield
	finally:
		settings.environment = original_env
		settings.admin_uids = original_admins


@pytest_asyncio.fixture
async def backend():
	store = InMemoryDocumentBackend()
	store_client.set_backend(store)
	try:
		yield store
	finally:
		await store.close()
		store_client.set_backend(None)


@pytest_asyncio.fixture
async def seeded(backend):
	"""One public post owned by OWNER plus profiles for every test user."""
	for user in (OWNER, RESPONDER, OTHER):
		await seed(backend, f"users/{user.id}", {"email": user.email, "blockedUids": [], "nicknames": {}})
	await seed(
		backend,
		f"posts/{POST_ID}",
		{"ownerUid": OWNER.id, "ownerEmail": OWNER.email, "title": "Lost scarf", "status": "public", "isReported": False},
	)
	return backend


@pytest.fixture
def session_for(backend):
	sessions = []

	def _make(user):
		session = MessagingSession(user, backend)
		sessions.append(session)
		return session

	yield _make
	for session in sessions:
		session.subscriptions.cancel_all()


@pytest.fixture
def users():
	return {"admin": ADMIN, "owner": OWNER, "responder": RESPONDER, "other": OTHER}


@pytest.fixture
def store_seed(backend):
	async def _seed(path: str, data: dict) -> None:
		await seed(backend, path, data)

	return _seed


@pytest.fixture
def store_read(backend):
	async def _read(path: str):
		return await read_raw(backend, path)

	return _read
