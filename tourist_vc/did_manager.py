"""
DID Manager - Creates and resolves DID Documents (W3C DID Core 1.0)

DID Format: did:key:z<base58btc(multicodec-ed25519 || public key)>

The identifier is derived from the public key, so a did:key document can
always be rebuilt from its key. Resolution is a local registry lookup;
identities are only resolvable by the process (or key store) that made them.

Reference: https://w3c-ccg.github.io/did-method-key/
"""

import logging
import threading
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field
from enum import Enum

from .exceptions import NotFoundError
from .key_manager import KeyManager, KeyPair, encode_multibase_key, utc_now_iso

logger = logging.getLogger(__name__)


class DIDMethod(Enum):
    """Supported DID methods"""
    KEY = "key"  # did:key method


@dataclass
class DIDDocument:
    """
    W3C DID Document

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str  # The DID
    controller: Optional[str] = None
    verification_method: List[Dict] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    created: str = ""
    updated: str = ""

    def __post_init__(self):
        if not self.controller:
            self.controller = self.id
        if not self.created:
            self.created = utc_now_iso()
        if not self.updated:
            self.updated = self.created

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        return {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/ed25519-2020/v1"
            ],
            "id": self.id,
            "controller": self.controller,
            "verificationMethod": self.verification_method,
            "authentication": self.authentication,
            "assertionMethod": self.assertion_method,
            "created": self.created,
            "updated": self.updated
        }

    def find_verification_method(self, key_id: str) -> Optional[Dict]:
        for vm in self.verification_method:
            if vm.get("id") == key_id:
                return vm
        return None


def did_from_public_key(public_bytes: bytes, method: DIDMethod = DIDMethod.KEY) -> str:
    """Derive the did:key identifier for a raw Ed25519 public key"""
    return f"did:{method.value}:{encode_multibase_key(public_bytes)}"


class DIDManager:
    """
    Identity provider: creates and resolves DIDs

    Features:
    - Create new did:key identities backed by Ed25519 keys
    - Resolve DIDs to DID Documents
    - Rebuild documents for keys already held by a persistent key store
    """

    def __init__(self, key_manager: Optional[KeyManager] = None):
        self.key_manager = key_manager or KeyManager()
        self._documents: Dict[str, DIDDocument] = {}
        self._lock = threading.Lock()
        self._rebuild_from_store()

    # ==================== DID CREATION ====================

    def create_did(self, method: DIDMethod = DIDMethod.KEY) -> tuple[str, DIDDocument]:
        """
        Create a new DID with a fresh Ed25519 key pair

        Args:
            method: DID method to use

        Returns:
            Tuple of (did, did_document)

        Raises:
            KeyGenerationError: if no key material could be produced
        """
        public_bytes, private_key = self.key_manager.generate_ed25519()

        did = did_from_public_key(public_bytes, method)
        fragment = did.split(":", 2)[2]
        key = self.key_manager.register_ed25519_keypair(
            did=did,
            key_id=f"{did}#{fragment}",
            public_bytes=public_bytes,
            private_key=private_key
        )

        did_doc = self._document_for_key(key)
        did_doc = self._register(did_doc)

        logger.info("Created DID %s", did)
        return did, did_doc

    # ==================== DID RESOLUTION ====================

    def resolve(self, did: str) -> DIDDocument:
        """
        Resolve DID to DID Document

        Args:
            did: The DID to resolve

        Returns:
            DIDDocument

        Raises:
            NotFoundError: if the DID is unknown to this registry
        """
        doc = self._documents.get(did)
        if doc is None:
            raise NotFoundError(f"DID not found: {did}")
        return doc

    def get_public_keys(self, did: str) -> List[Dict[str, str]]:
        """Public key summaries (kid, type, hex) for a DID"""
        doc = self.resolve(did)
        summaries = []
        for vm in doc.verification_method:
            key = self.key_manager.get_key(vm["id"])
            if key:
                summaries.append(key.public_summary())
        return summaries

    # ==================== UTILITIES ====================

    def list_dids(self) -> List[str]:
        """List all managed DIDs"""
        return list(self._documents.keys())

    def get_statistics(self) -> Dict[str, int]:
        """Get statistics about managed DIDs"""
        return {
            "total": len(self._documents),
            "keys": len(self.key_manager.list_keys())
        }

    def _register(self, doc: DIDDocument) -> DIDDocument:
        # Insert-if-absent: an identifier never changes once registered
        with self._lock:
            return self._documents.setdefault(doc.id, doc)

    def _document_for_key(self, key: KeyPair) -> DIDDocument:
        return DIDDocument(
            id=key.controller,
            verification_method=[key.to_verification_method()],
            authentication=[key.key_id],
            assertion_method=[key.key_id],
            created=key.created_at
        )

    def _rebuild_from_store(self):
        for key_id in self.key_manager.list_keys():
            key = self.key_manager.get_key(key_id)
            if key and key.controller:
                self._register(self._document_for_key(key))
        if self._documents:
            logger.info("Restored %d DID documents from key store", len(self._documents))
