# ==============================================
# MongoClient
# ==============================================
#
# PURPOSE:
#   Manages the MongoDB connection and the three operations the
#   reconciliation jobs need: filtered/sorted reads, one ID-ordered page
#   read, and atomic commit of a write-group.
#
# CLASS: MongoClient
# ------------------
#   Stateful: holds the connection to MongoDB.
#
#   Constructor:
#   ------------
#   - __init__(host, port, database, user=None, password=None,
#              uri=None, use_transactions=True, client=None)
#
#   Methods:
#   --------
#   - connect() -> None
#   - disconnect() -> None
#
#   - find(collection_name, query, sort=None, limit=None) -> list[dict]
#       Query documents matching filter.
#
#   - fetch_page(collection_name, start_after, page_size) -> list[dict]
#       Next `page_size` documents with `_id > start_after`, ascending.
#
#   - resolve_document_id(collection_name, raw_id) -> Any
#       Map an operator-typed ID string to the stored `_id` value.
#
#   - commit_write_group(collection_name, updates) -> int
#       Apply [(document_id, update_document), ...] all-or-nothing inside a
#       transaction. Every ID must match a document. Returns the modified
#       count.
#
#   Context Manager:
#   ----------------
#   - __enter__ / __exit__ for `with MongoClient(...) as db:` usage.
#
# ==============================================

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, UpdateOne
from pymongo import MongoClient as PyMongoClient
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ..errors import StoreError


logger = logging.getLogger(__name__)

SortSpec = Sequence[Tuple[str, int]]


class MongoClient:
    def __init__(
        self,
        host: str = "localhost",
        port: int = 27017,
        database: str = "app",
        user: Optional[str] = None,
        password: Optional[str] = None,
        uri: Optional[str] = None,
        use_transactions: bool = True,
        client: Optional[PyMongoClient] = None
    ):
        # Store connection params. Don't connect yet.
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.uri = uri
        self.use_transactions = use_transactions
        self.client = client  # Will hold the actual MongoDB client connection

    @classmethod
    def from_config(cls, mongo_config) -> "MongoClient":
        return cls(
            host=mongo_config.host,
            port=mongo_config.port,
            database=mongo_config.database,
            user=mongo_config.user,
            password=mongo_config.password,
            uri=mongo_config.uri,
            use_transactions=mongo_config.use_transactions
        )

    def _build_uri(self) -> str:
        if self.uri:
            return self.uri
        if self.user and self.password:
            return f"mongodb://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
        return f"mongodb://{self.host}:{self.port}/{self.database}"

    def connect(self) -> None:
        # Establish connection to MongoDB.
        if self.client is not None:
            return
        try:
            self.client = PyMongoClient(self._build_uri())
            # Test connection
            self.client.admin.command("ping")
            logger.info("Connected to MongoDB database '%s'", self.database)
        except ConnectionFailure as e:
            self.client = None
            raise StoreError(f"Could not connect to MongoDB: {e}") from e
        except OperationFailure as e:
            self.client = None
            raise StoreError(f"MongoDB authentication failed: {e}") from e

    def disconnect(self) -> None:
        # Close connection.
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")
            self.client = None

    def _collection(self, collection_name: str):
        if not self.client:
            raise StoreError("Not connected to MongoDB.")
        return self.client[self.database][collection_name]

    def find(
        self,
        collection_name: str,
        query: Dict[str, Any],
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None
    ) -> List[dict]:
        # Query documents matching filter.
        collection = self._collection(collection_name)
        try:
            cursor = collection.find(query)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise StoreError(f"Query on '{collection_name}' failed: {e}") from e

    def fetch_page(
        self,
        collection_name: str,
        start_after: Any,
        page_size: int
    ) -> List[dict]:
        """
        Read one page in `_id` order.

        Args:
            collection_name: Collection to scan
            start_after: Exclusive lower bound on `_id`, None for the first page
            page_size: Maximum documents to return

        Returns:
            Up to page_size documents, empty when the scan is exhausted
        """
        query = {"_id": {"$gt": start_after}} if start_after is not None else {}
        return self.find(collection_name, query, sort=[("_id", ASCENDING)], limit=page_size)

    def resolve_document_id(self, collection_name: str, raw_id: Optional[str]) -> Any:
        """
        Turn an operator-typed ID into the stored `_id` value.

        A 24-hex string names an ObjectId only when a document with that
        ObjectId exists; otherwise the string is used as-is.
        """
        if raw_id is None or not ObjectId.is_valid(raw_id) or len(raw_id) != 24:
            return raw_id
        if self.find(collection_name, {"_id": ObjectId(raw_id)}, limit=1):
            return ObjectId(raw_id)
        return raw_id

    def commit_write_group(
        self,
        collection_name: str,
        updates: List[Tuple[Any, Dict[str, Any]]]
    ) -> int:
        """
        Apply a write-group atomically.

        Args:
            collection_name: Target collection
            updates: (document_id, update_document) pairs, IDs as stored and
                     update documents already expressed with
                     $set / $unset / $currentDate

        Returns:
            Number of documents modified

        Raises:
            StoreError: The write failed or an ID matched no document
        """
        if not updates:
            return 0
        collection = self._collection(collection_name)
        operations = [UpdateOne({"_id": document_id}, update) for document_id, update in updates]
        try:
            if not self.use_transactions:
                result = collection.bulk_write(operations, ordered=True)
                self._check_matched(collection_name, result, len(updates))
                return result.modified_count
            with self.client.start_session() as session:
                with session.start_transaction():
                    result = collection.bulk_write(operations, ordered=True, session=session)
                    # Raising here aborts the transaction
                    self._check_matched(collection_name, result, len(updates))
            return result.modified_count
        except PyMongoError as e:
            raise StoreError(f"Write-group commit on '{collection_name}' failed: {e}") from e

    @staticmethod
    def _check_matched(collection_name: str, result, expected: int) -> None:
        if result.matched_count != expected:
            raise StoreError(
                f"Write-group on '{collection_name}' matched {result.matched_count} of {expected} documents"
            )

    def __enter__(self):
        # For `with MongoClient(...) as db:` usage.
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
