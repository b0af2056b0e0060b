from typing import AsyncGenerator, List
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config.config import settings
from app.database.database import create_engine_for, create_session_factory, init_models
from app.models.models import Conversation
from app.schemas.notification_schemas import Notice
from app.schemas.tracking_schemas import AssignmentSchema
from app.schemas.user_schemas import Actor, UserRole
from app.sync.client import BackendClient
from app.sync.feed import InProcessChangeFeed
from app.utils.s3_service import ObjectStorage
from app.test.factories import AssignmentFactory, ConversationFactory, ShipmentFactory


@pytest.fixture(autouse=True)
def fast_reconnect(monkeypatch):
    """Keep reconnect backoff out of test run time."""
    monkeypatch.setattr(settings, "RECONNECT_INITIAL_DELAY", 0.0)
    monkeypatch.setattr(settings, "RECONNECT_MAX_ATTEMPTS", 3)


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Fresh in-memory database per test. Every session shares the one
    connection, so committed rows are visible across sessions.
    """
    test_engine = create_engine_for(settings.TEST_DATABASE_URL)
    await init_models(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def feed() -> AsyncGenerator[InProcessChangeFeed, None]:
    change_feed = InProcessChangeFeed()
    yield change_feed
    await change_feed.close()


@pytest.fixture
def s3_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def storage(s3_client: MagicMock) -> ObjectStorage:
    return ObjectStorage(bucket_name="koligo-test", client=s3_client)


@pytest.fixture
def backend(session_factory, feed, storage) -> BackendClient:
    return BackendClient(session_factory=session_factory, feed=feed, storage=storage)


@pytest.fixture
def sender() -> Actor:
    return Actor(id=uuid4())


@pytest.fixture
def traveler() -> Actor:
    return Actor(id=uuid4())


@pytest.fixture
def outsider() -> Actor:
    return Actor(id=uuid4())


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def notices() -> List[Notice]:
    """Collects every notice raised through a notifier."""
    return []


@pytest.fixture
def persist(session_factory):
    """Insert model instances in their own committed session."""

    async def _persist(*rows):
        async with session_factory() as db:
            db.add_all(rows)
            await db.commit()
        return rows

    return _persist


@pytest_asyncio.fixture(scope="function")
async def assignment(persist, sender: Actor, traveler: Actor) -> AssignmentSchema:
    """A matched shipment whose payment has been released."""
    shipment = ShipmentFactory(sender_id=sender.id)
    row = AssignmentFactory(
        shipment_id=shipment.id, sender_id=sender.id, traveler_id=traveler.id
    )
    await persist(shipment, row)
    return AssignmentSchema.model_validate(row)


@pytest_asyncio.fixture(scope="function")
async def conversation(
    persist, assignment: AssignmentSchema, sender: Actor, traveler: Actor
) -> Conversation:
    row = ConversationFactory(
        assignment_id=assignment.id, sender_id=sender.id, traveler_id=traveler.id
    )
    await persist(row)
    return row
