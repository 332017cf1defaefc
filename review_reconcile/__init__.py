# ==============================================
# Review Schema Reconciliation
# ==============================================
#
# Package Structure:
#
# review_reconcile/
# ├── normalization/       # ReviewRecord accessors + UpdatePlanner
# ├── analysis/            # SchemaClassifier + RecoveryEvaluator
# ├── storage/             # MongoClient, PaginatedScanner, BatchWriter
# ├── migration_driver.py  # Normalize job orchestrator
# ├── census.py            # Read-only census + query replay
# ├── probe.py             # Read-only feed probes
# ├── config.py            # Configuration management
# ├── errors.py            # Exception hierarchy
# └── cli.py               # Command line entry point
#
# ==============================================

__version__ = "0.1.0"
