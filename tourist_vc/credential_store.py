"""
Credential Store - persisted copies of issued credentials

Records live under credentials/{userId}/vcs/{recordId}. Each record is
written once; the credential payload is never mutated afterwards.
"""

import copy
import logging
import secrets
import string
import threading
import time
from typing import Optional, Dict, Any, List

from .exceptions import NotFoundError
from .key_manager import utc_now_iso

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_id(prefix: str) -> str:
    """<prefix>_<epoch millis>_<9 base36 chars>"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class DocumentStore:
    """
    Minimal in-process document database

    Documents are addressed by a path of alternating collection/document
    names. Single-document writes are atomic under the store lock.
    """

    def __init__(self):
        self._docs: Dict[tuple, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def set(self, path: tuple, data: Dict[str, Any]) -> None:
        with self._lock:
            self._docs[path] = copy.deepcopy(data)

    def get(self, path: tuple) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._docs.get(path)
            return copy.deepcopy(doc) if doc is not None else None

    def list(self, collection_path: tuple) -> List[Dict[str, Any]]:
        depth = len(collection_path) + 1
        with self._lock:
            return [
                copy.deepcopy(doc) for path, doc in self._docs.items()
                if len(path) == depth and path[:-1] == collection_path
            ]


class CredentialStore:
    """
    Saves and retrieves StoredCredentialRecords keyed by (userId, recordId)

    Reads run with admin access: a verifier does not need to own the
    credential it is checking.
    """

    COLLECTION = "credentials"
    SUBCOLLECTION = "vcs"

    def __init__(self, backend: Optional[DocumentStore] = None):
        self.backend = backend or DocumentStore()

    def _path(self, user_id: str, record_id: str = None) -> tuple:
        base = (self.COLLECTION, user_id, self.SUBCOLLECTION)
        return base + (record_id,) if record_id else base

    def save(self, user_id: str, credential: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> str:
        """
        Persist a credential for a user

        Every call creates a new record, identical input included.

        Returns:
            The generated record id (vc_<millis>_<base36>)
        """
        record_id = generate_id("vc")
        record = {
            "id": record_id,
            "userId": user_id,
            "credential": credential,
            "metadata": {
                **(metadata or {}),
                "createdAt": utc_now_iso(),
                "status": "active",
            },
        }

        self.backend.set(self._path(user_id, record_id), record)
        logger.info("Saved credential record %s", record_id, extra={"user_id": user_id, "vc_id": record_id})
        return record_id

    def get(self, user_id: str, record_id: str) -> Dict[str, Any]:
        """
        Fetch a stored record

        Raises:
            NotFoundError: if no record exists for (user_id, record_id)
        """
        record = self.backend.get(self._path(user_id, record_id))
        if record is None:
            raise NotFoundError(f"VC not found: {record_id}")
        return record

    def list(self, user_id: str) -> List[Dict[str, Any]]:
        """All records of a user, newest first"""
        records = self.backend.list(self._path(user_id))
        return sorted(records, key=lambda r: (r["metadata"]["createdAt"], r["id"]), reverse=True)
