from typing import Awaitable, Callable, TypeVar

from beanie import init_beanie
from pymongo import AsyncMongoClient
from pymongo.asynchronous.client_session import AsyncClientSession

from rpm_core.core.config import settings
from rpm_core.modules.alerts.models import Alert
from rpm_core.modules.checkins.models import SymptomCheckin
from rpm_core.modules.enrollments.models import Enrollment
from rpm_core.modules.interactions.models import InteractionLog
from rpm_core.modules.measurements.models import Measurement
from rpm_core.modules.time_entries.models import TimeEntry

T = TypeVar("T")

MONGO_CLIENT: AsyncMongoClient | None = None


async def init_db() -> AsyncMongoClient:
    """
    Create a single async Mongo client, initialize Beanie, and return the client.

    This should be called exactly once at app startup.
    """
    global MONGO_CLIENT

    client: AsyncMongoClient = AsyncMongoClient(
        settings.MONGODB_URL,
        uuidRepresentation="standard",
        serverSelectionTimeoutMS=5000,
        tz_aware=True,
    )

    await init_beanie(
        database=client[settings.MONGODB_DB_NAME],
        document_models=[
            Measurement,
            InteractionLog,
            Alert,
            SymptomCheckin,
            TimeEntry,
            Enrollment,
        ],
    )

    MONGO_CLIENT = client
    return client


async def run_in_transaction(
    callback: Callable[[AsyncClientSession | None], Awaitable[T]],
) -> T:
    """
    Run `callback` inside a multi-document transaction.

    Falls back to a plain call (session=None) when transactions are disabled or
    the client has not been initialised, e.g. standalone mongod in local dev.
    """
    if MONGO_CLIENT is None or not settings.MONGODB_TRANSACTIONS:
        return await callback(None)

    async with MONGO_CLIENT.start_session() as session:
        return await session.with_transaction(callback)
