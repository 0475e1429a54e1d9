import logging
import os

import lancedb

logger = logging.getLogger(__name__)

RESULTS_TABLE = "optimization_results"


def connect(db_path: str):
    """Open (and create on first run) the LanceDB directory at ``db_path``."""
    if os.path.isdir(db_path):
        logger.info(f"Database directory exists: {db_path}")
    else:
        logger.info(f"Database directory does not exist, creating: {db_path}")
        os.makedirs(db_path, exist_ok=True)
    return lancedb.connect(db_path)


def safe_create_table(db, name: str, schema):
    """
    Create table idempotently.
    Handles races where the table appears between the existence check and the
    create call.
    """
    try:
        if name in set(db.table_names()):
            db.open_table(name)
            return
    except Exception as e:
        logger.debug(f"Listing tables failed, falling back to create/open: {e}")

    try:
        db.create_table(name, schema=schema)
    except Exception as e:
        if "already exists" not in str(e).lower():
            raise
        db.open_table(name)


def init_tables(db):
    from .schema import OptimizationResult

    safe_create_table(db, RESULTS_TABLE, OptimizationResult)
    logger.info("Database initialized successfully")
