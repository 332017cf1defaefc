# ==============================================
# STORAGE (MongoDB)
# ==============================================
#
# Modules:
# --------
# - mongo_client.py → MongoDB connection, reads, atomic write-groups
# - scanner.py      → `_id`-ordered resumable pagination
# - batch_writer.py → Bounded write-group buffering and commit
#
# ==============================================

from .mongo_client import MongoClient
from .scanner import PaginatedScanner
from .batch_writer import BatchWriter, build_update_document

__all__ = [
    "MongoClient",
    "PaginatedScanner",
    "BatchWriter",
    "build_update_document"
]
