# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with connection pooling and atomic update helpers.
"""

import os
import logging
from typing import List, Dict, Optional, Any
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)

logger = logging.getLogger(__name__)


class DuplicateDocumentError(ValueError):
    """Raised when an insert collides with an existing unique key."""


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


class MongoDBService:
    """MongoDB service with connection pooling and compare-and-set updates."""

    def __init__(self, connection_string: str = None, database_name: str = None,
                 client: MongoClient = None):
        """
        Initialize MongoDB service with connection pooling.

        Args:
            connection_string: MongoDB URI, defaults to MONGODB_URI
            database_name: Database name, defaults to MONGODB_DATABASE
            client: Pre-built client (e.g. an in-memory client for tests)
        """
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/escrow_ledger_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'escrow_ledger_dev')
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    # Reads

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        """Find a single document by its string ID."""
        return self.get_collection(collection).find_one({"_id": doc_id})

    def find_one(self, collection: str, query: Dict, sort: List = None,
                 projection: Dict = None) -> Optional[Dict]:
        """Find the first document matching a query."""
        return self.get_collection(collection).find_one(query, projection, sort=sort)

    def find_many(self, collection: str, query: Dict = None, sort: List = None,
                  limit: int = 0) -> List[Dict]:
        """Find all documents matching a query."""
        cursor = self.get_collection(collection).find(query or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def paginate(self, collection: str, query: Dict = None, page: int = 1, page_size: int = 20,
                 sort_by: str = "createdAt", sort_order: int = DESCENDING) -> PaginationResult:
        """Paginate documents with sorting and filtering."""
        try:
            query = query or {}
            collection_obj = self.get_collection(collection)

            skip = (page - 1) * page_size
            total = collection_obj.count_documents(query)

            cursor = collection_obj.find(query).sort(sort_by, sort_order).skip(skip).limit(page_size)
            documents = list(cursor)

            logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
            return PaginationResult(documents, total, page, page_size)

        except Exception as e:
            logger.error(f"Failed to paginate documents in {collection}: {e}")
            raise

    # Writes

    def insert(self, collection: str, document: Dict) -> str:
        """Insert a document that already carries its ``_id``."""
        try:
            result = self.get_collection(collection).insert_one(document)
            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)
        except DuplicateKeyError as e:
            logger.info(f"Duplicate key in {collection}: {document.get('_id')}")
            raise DuplicateDocumentError(f"Document {document.get('_id')} already exists") from e

    def update_one(self, collection: str, query: Dict, update: Dict, upsert: bool = False) -> bool:
        """Apply an atomic single-document update; returns whether a document matched."""
        result = self.get_collection(collection).update_one(query, update, upsert=upsert)
        return result.matched_count > 0 or result.upserted_id is not None

    def find_one_and_update(self, collection: str, query: Dict, update: Dict) -> Optional[Dict]:
        """Atomically update the first match and return the updated document."""
        return self.get_collection(collection).find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )

    def compare_and_set(self, collection: str, doc_id: str, expected_version: int,
                        update: Dict, guards: Dict = None) -> Optional[Dict]:
        """
        Update a versioned document only if it is still at ``expected_version``.

        The version is incremented as part of the same atomic update.

        Args:
            collection: Collection name
            doc_id: Document ID
            expected_version: Version the caller read
            update: MongoDB update document
            guards: Extra filter conditions that must still hold

        Returns:
            Updated document, or None if the version or a guard no longer matched
        """
        query = {"_id": doc_id, "version": expected_version}
        if guards:
            query.update(guards)

        update = dict(update)
        inc = dict(update.get("$inc", {}))
        inc["version"] = 1
        update["$inc"] = inc

        document = self.find_one_and_update(collection, query, update)
        if document is None:
            logger.info(f"Compare-and-set missed on {collection}/{doc_id} at version {expected_version}")
        return document

    def delete_one(self, collection: str, query: Dict) -> bool:
        """Delete the first document matching a query."""
        return self.get_collection(collection).delete_one(query).deleted_count > 0

    # Index Management

    def create_indexes(self, idempotency_ttl_seconds: int = 86400) -> None:
        """Create indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            orders = self.get_collection("orders")
            orders.create_index([("buyerId", ASCENDING), ("createdAt", DESCENDING)])
            orders.create_index([("sellerId", ASCENDING), ("createdAt", DESCENDING)])
            orders.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
            orders.create_index([("settlementState", ASCENDING), ("updatedAt", ASCENDING)])
            orders.create_index("disputeStatus")

            wallets = self.get_collection("wallets")
            wallets.create_index("userId", unique=True)
            wallets.create_index("postingIds")

            products = self.get_collection("products")
            products.create_index("sellerId")

            users = self.get_collection("users")
            users.create_index([("role", ASCENDING), ("createdAt", ASCENDING)])

            coupons = self.get_collection("coupons")
            coupons.create_index("expiresAt")

            messages = self.get_collection("dispute_messages")
            messages.create_index([("orderId", ASCENDING), ("timestamp", ASCENDING)])

            idempotency = self.get_collection("idempotency_keys")
            idempotency.create_index("createdAt", expireAfterSeconds=idempotency_ttl_seconds)

            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("timestamp", DESCENDING)])
            audit_logs.create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("entity", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            reports = self.get_collection("reconciliation_reports")
            reports.create_index([("createdAt", DESCENDING)])

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise
