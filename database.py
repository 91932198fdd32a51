"""
MongoDB access for the services marketplace.

Collections:
- Services: listings owned by a provider (serviceProvider.email)
- Purchase_Book: purchases made by a customer (currentUser.email)

``MarketplaceStore`` wraps a pymongo ``Database`` and holds every query the
API runs. It is built once at startup and handed to the route handlers.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.results import DeleteResult, InsertOneResult, UpdateResult
from pymongo.server_api import ServerApi

from settings import Settings

logger = logging.getLogger(__name__)

SERVICES = "Services"
PURCHASES = "Purchase_Book"

BANNER_LIMIT = 15
POPULAR_LIMIT = 4


def connect(settings: Settings) -> MongoClient:
    """Open a client against the configured cluster and log whether it answers.

    A failed ping is logged, not raised: the driver keeps reconnecting and
    requests made while the cluster is unreachable fail with a 500.
    """
    client = MongoClient(
        settings.mongo_uri,
        server_api=ServerApi("1", strict=True, deprecation_errors=True),
        serverSelectionTimeoutMS=settings.DATABASE_TIMEOUT_MS,
    )
    try:
        client.admin.command("ping")
        logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    except PyMongoError as e:
        logger.error("MongoDB: %s", e)
    return client


class MarketplaceStore:
    def __init__(self, db: Database):
        self.db = db

    @property
    def services(self):
        return self.db[SERVICES]

    @property
    def purchases(self):
        return self.db[PURCHASES]

    def ping(self) -> None:
        self.db.command("ping")

    def collection_names(self) -> List[str]:
        return self.db.list_collection_names()

    # ---------- SERVICES ----------
    def add_service(self, data: Dict[str, Any]) -> InsertOneResult:
        return self.services.insert_one(dict(data))

    def banner_services(self, limit: int = BANNER_LIMIT) -> List[Dict[str, Any]]:
        cursor = self.services.find({}, {"serviceImage": 1}).sort("servicePrice", DESCENDING).limit(limit)
        return list(cursor)

    def popular_services(self, limit: int = POPULAR_LIMIT) -> List[Dict[str, Any]]:
        cursor = self.services.find({}).sort("servicePrice", ASCENDING).limit(limit)
        return list(cursor)

    def search_services(self, search: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if search:
            query["serviceName"] = {"$regex": re.escape(search), "$options": "i"}
        return list(self.services.find(query))

    def get_service(self, service_id: str) -> Optional[Dict[str, Any]]:
        return self.services.find_one({"_id": ObjectId(service_id)})

    def services_by_provider(self, email: str) -> List[Dict[str, Any]]:
        return list(self.services.find({"serviceProvider.email": email}))

    def delete_service(self, service_id: str, provider_email: str) -> DeleteResult:
        return self.services.delete_one({"_id": ObjectId(service_id), "serviceProvider.email": provider_email})

    def replace_service(self, service_id: str, data: Dict[str, Any]) -> UpdateResult:
        update = {k: v for k, v in data.items() if k not in ("_id", "id")}
        return self.services.update_one({"_id": ObjectId(service_id)}, {"$set": update}, upsert=True)

    # ---------- PURCHASES ----------
    def find_purchase(self, email: str, service_id: str) -> Optional[Dict[str, Any]]:
        return self.purchases.find_one({"currentUser.email": email, "serviceId": service_id})

    def add_purchase(self, data: Dict[str, Any]) -> InsertOneResult:
        return self.purchases.insert_one(dict(data))

    def purchases_by_customer(self, email: str) -> List[Dict[str, Any]]:
        return list(self.purchases.find({"currentUser.email": email}))

    def purchases_by_provider(self, email: str) -> List[Dict[str, Any]]:
        return list(self.purchases.find({"serviceProvider.email": email}))

    def update_purchase_status(self, purchase_id: str, status: str, provider_email: str) -> UpdateResult:
        return self.purchases.update_one(
            {"_id": ObjectId(purchase_id), "serviceProvider.email": provider_email},
            {"$set": {"serviceStatus": status}},
        )
