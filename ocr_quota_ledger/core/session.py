"""
Session identity for usage analytics.

A session is one process lifetime. Its id partitions ledger entries for
session-scoped queries and is never used for security or deduplication.
"""

import logging
import random
import string
import time

from ..storage.repository import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

SESSION_KEY = "quota_session_id"

_SUFFIX_ALPHABET = string.digits + string.ascii_lowercase


def generate_session_id() -> str:
    """Return ``session_<epoch ms>_<9 base-36 chars>``."""
    suffix = "".join(random.choices(_SUFFIX_ALPHABET, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def get_or_create_session_id(session_store: KeyValueStore) -> str:
    """Return the session id, generating and storing one on first use.

    If the session store cannot be written the generated id is still
    returned; it just won't be found by a later lookup.
    """
    try:
        existing = session_store.read(SESSION_KEY)
    except StorageError as e:
        logger.warning("Failed to read session id: %s", e)
        existing = None

    if existing:
        return existing

    session_id = generate_session_id()
    try:
        session_store.write(SESSION_KEY, session_id)
    except StorageError as e:
        logger.warning("Failed to persist session id: %s", e)
    return session_id
