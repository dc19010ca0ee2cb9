import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import IndexModel, ASCENDING, DESCENDING
from config import settings

logger = logging.getLogger(__name__)

client: AsyncIOMotorClient = None
_db_instance = None


class _DbProxy:
    """
    Proxy transparent vers l'instance Motor.
    Permet aux services de faire `from database import db` AVANT connect_db().
    db.collection → délégué à _db_instance.collection au moment de l'appel.
    """
    def __getattr__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return getattr(_db_instance, name)

    def __getitem__(self, name):
        if _db_instance is None:
            raise RuntimeError("Database not connected. Call connect_db() first.")
        return _db_instance[name]


db = _DbProxy()


def get_db():
    return _db_instance


def get_client() -> AsyncIOMotorClient:
    return client


async def connect_db():
    global client, _db_instance
    client = AsyncIOMotorClient(
        settings.MONGO_URL,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=10000,
        tz_aware=True,
    )
    _db_instance = client[settings.DB_NAME]
    logger.info(f"Connected to MongoDB: {settings.DB_NAME}")
    try:
        await create_indexes()
    except Exception as e:
        logger.warning(f"Could not create indexes (non-blocking): {e}")


async def close_db():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


async def create_indexes():
    collections_to_index = {
        "users": [
            IndexModel([("user_id", ASCENDING)], unique=True),
            IndexModel([("role", ASCENDING)]),
        ],
        "loyalty_profiles": [
            IndexModel([("user_id", ASCENDING)], unique=True),
            IndexModel([("card_number", ASCENDING)], unique=True, sparse=True),
            IndexModel([("phone", ASCENDING)], sparse=True),
            IndexModel([("current_token", ASCENDING)], sparse=True),
            IndexModel([("current_barcode", ASCENDING)], sparse=True),
        ],
        "loyalty_transactions": [
            IndexModel([("tx_id", ASCENDING)], unique=True),
            IndexModel([("user_id", ASCENDING), ("timestamp", DESCENDING)]),
            IndexModel([("order_id", ASCENDING)], sparse=True),
        ],
        "loyalty_issued_codes": [
            IndexModel([("code", ASCENDING)]),
            IndexModel([("user_id", ASCENDING)]),
            # Purge Mongo des codes expirés ; la validité reste vérifiée à la lecture
            IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0),
        ],
    }

    for collection_name, index_models in collections_to_index.items():
        try:
            await _db_instance[collection_name].create_indexes(index_models)
            logger.info(f"Indexes created for collection: {collection_name}")
        except Exception as e:
            logger.error(f"Failed to create indexes for collection {collection_name}: {e}")

    logger.info("All MongoDB indexes creation attempts completed.")
