"""
MongoDB-backed record of payments whose side effects have already run.
"""
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from course_pay.config import Settings
from course_pay.logger import db_logger
from course_pay.models import ProcessedPayment


def setup_database_connection(settings: Settings) -> Collection:
    """
    Set up MongoDB connection and return the processed payments collection.

    The client connects lazily, so this does not block when MongoDB is down;
    the first read or write will fail after ``MONGODB_TIMEOUT_MS`` instead.

    Raises:
        RuntimeError: If the connection string is rejected
    """
    try:
        mongo_client = MongoClient(
            settings.mongodb_url,
            serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
        )
        collection = mongo_client[settings.DATABASE_NAME][settings.COLLECTION_NAME]
        db_logger.info(f"Using MongoDB collection {settings.DATABASE_NAME}.{settings.COLLECTION_NAME}")
        return collection
    except Exception as e:
        db_logger.error("Failed to configure MongoDB client", error=e)
        raise RuntimeError(f"Could not connect to MongoDB: {e}")


class ProcessedPaymentStore:
    """Atomic check-and-set over (provider, resource_id)."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def ensure_indexes(self):
        self.collection.create_index(
            [("provider", ASCENDING), ("resource_id", ASCENDING)],
            unique=True,
            name="provider_resource_unique",
        )

    def claim(self, record: ProcessedPayment) -> bool:
        """
        Record that a payment's side effects are about to run.

        Returns:
            bool: True if this call made the claim, False if another delivery
            already did
        """
        try:
            self.collection.insert_one(record.model_dump())
        except DuplicateKeyError:
            db_logger.info(f"Payment {record.provider}:{record.resource_id} already processed")
            return False
        return True

    def is_processed(self, provider: str, resource_id: str) -> bool:
        return self.collection.count_documents(
            {"provider": provider, "resource_id": resource_id}, limit=1
        ) > 0
