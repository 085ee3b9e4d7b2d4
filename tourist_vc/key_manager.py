"""
Key Manager - Cryptographic keys for the DID system

Supports:
- Ed25519: signing key behind every did:key identity (W3C recommended)

Private keys live in a KeyStore (in-memory or JSON file) and never leave
this module; DID documents only ever see the public half.
"""

import os
import json
import base64
import threading
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, asdict
from datetime import datetime, timezone

import base58
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from .exceptions import KeyGenerationError, SigningError

ED25519_KEY_TYPE = "Ed25519VerificationKey2020"

# Multicodec varint prefix for an Ed25519 public key
ED25519_MULTICODEC = b"\xed\x01"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def encode_multibase_key(public_bytes: bytes) -> str:
    """Multibase (base58btc, 'z' prefix) encoding of a multicodec Ed25519 key"""
    return "z" + base58.b58encode(ED25519_MULTICODEC + public_bytes).decode("utf-8")


def decode_multibase_key(value: str) -> bytes:
    """Inverse of encode_multibase_key; raises ValueError on foreign encodings"""
    if not value or not value.startswith("z"):
        raise ValueError(f"Unsupported multibase encoding: {value[:1]!r}")
    raw = base58.b58decode(value[1:])
    if not raw.startswith(ED25519_MULTICODEC):
        raise ValueError("Not an Ed25519 multicodec key")
    return raw[len(ED25519_MULTICODEC):]


@dataclass
class KeyPair:
    """Represents a cryptographic key pair"""
    key_id: str
    key_type: str  # Ed25519VerificationKey2020
    public_key: str  # Multibase encoded
    private_key: Optional[str] = None  # base64url, only stored locally, never shared
    created_at: str = ""
    controller: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = utc_now_iso()

    def to_verification_method(self) -> Dict[str, Any]:
        """Convert to W3C Verification Method format"""
        return {
            "id": self.key_id,
            "type": self.key_type,
            "controller": self.controller,
            "publicKeyMultibase": self.public_key
        }

    def public_summary(self) -> Dict[str, str]:
        return {
            "kid": self.key_id,
            "type": self.key_type,
            "publicKeyHex": decode_multibase_key(self.public_key).hex()
        }


# ==================== KEY STORES ====================

class KeyStore:
    """Storage interface for key pairs"""

    def put(self, keypair: KeyPair) -> None:
        raise NotImplementedError

    def get(self, key_id: str) -> Optional[KeyPair]:
        raise NotImplementedError

    def list(self) -> List[str]:
        raise NotImplementedError


class InMemoryKeyStore(KeyStore):
    """Process-local key store; keys are lost on restart"""

    def __init__(self):
        self._keys: Dict[str, KeyPair] = {}
        self._lock = threading.Lock()

    def put(self, keypair: KeyPair) -> None:
        with self._lock:
            self._keys[keypair.key_id] = keypair

    def get(self, key_id: str) -> Optional[KeyPair]:
        return self._keys.get(key_id)

    def list(self) -> List[str]:
        return list(self._keys.keys())


class FileKeyStore(InMemoryKeyStore):
    """
    Key store persisted to a JSON file

    WARNING: keys are written unencrypted. Restrict file permissions or
    use a proper KMS/HSM in production.
    """

    def __init__(self, filepath: str):
        super().__init__()
        self.filepath = filepath
        if os.path.exists(filepath):
            self._load()

    def put(self, keypair: KeyPair) -> None:
        with self._lock:
            self._keys[keypair.key_id] = keypair
            self._save()

    def _load(self):
        with open(self.filepath, 'r') as f:
            data = json.load(f)

        for key_id, key_data in data.items():
            self._keys[key_id] = KeyPair(**key_data)

    def _save(self):
        data = {
            key_id: asdict(keypair)
            for key_id, keypair in self._keys.items()
        }
        tmp_path = f"{self.filepath}.tmp"
        with open(tmp_path, 'w') as f:
            json.dump(data, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.filepath)


def build_key_store(path: Optional[str] = None) -> KeyStore:
    """FileKeyStore when a path is configured, InMemoryKeyStore otherwise"""
    if path:
        return FileKeyStore(path)
    return InMemoryKeyStore()


class KeyManager:
    """
    Manages cryptographic keys for DID operations

    Features:
    - Generate Ed25519 key pairs
    - Sign and verify messages
    - Export public keys
    """

    def __init__(self, store: Optional[KeyStore] = None):
        self.store = store or InMemoryKeyStore()

    # ==================== KEY GENERATION ====================

    def generate_ed25519(self) -> tuple[bytes, str]:
        """
        Generate a raw Ed25519 key pair

        Returns:
            Tuple of (raw public key bytes, base64url private key)
        """
        try:
            private_key = ed25519.Ed25519PrivateKey.generate()
        except (UnsupportedAlgorithm, ValueError) as e:
            raise KeyGenerationError(f"Ed25519 key generation failed: {e}") from e

        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption()
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

        if len(public_bytes) != 32 or len(private_bytes) != 32:
            raise KeyGenerationError("Ed25519 backend returned malformed key material")

        private_b64 = base64.urlsafe_b64encode(private_bytes).decode('utf-8').rstrip('=')
        return public_bytes, private_b64

    def register_ed25519_keypair(self, did: str, key_id: str, public_bytes: bytes, private_key: str) -> KeyPair:
        """
        Store an Ed25519 key pair under the DID that controls it

        Args:
            did: The DID that controls this key
            key_id: Fully qualified key id (did#fragment)
            public_bytes: Raw public key
            private_key: base64url private key

        Returns:
            The stored KeyPair
        """
        keypair = KeyPair(
            key_id=key_id,
            key_type=ED25519_KEY_TYPE,
            public_key=encode_multibase_key(public_bytes),
            private_key=private_key,
            controller=did
        )
        self.store.put(keypair)
        return keypair

    # ==================== SIGNING ====================

    def sign_ed25519(self, key_id: str, message: bytes) -> str:
        """
        Sign message with Ed25519 key

        Args:
            key_id: The key ID to use for signing
            message: Message bytes to sign

        Returns:
            base64url encoded signature
        """
        keypair = self.store.get(key_id)
        if not keypair or keypair.key_type != ED25519_KEY_TYPE:
            raise SigningError(f"Ed25519 key not found: {key_id}")

        if not keypair.private_key:
            raise SigningError(f"Private key not available for signing: {key_id}")

        try:
            private_bytes = base64.urlsafe_b64decode(keypair.private_key + '==')
            private_key = ed25519.Ed25519PrivateKey.from_private_bytes(private_bytes)
        except ValueError as e:
            raise SigningError(f"Unusable private key for {key_id}: {e}") from e

        signature = private_key.sign(message)

        return base64.urlsafe_b64encode(signature).decode('utf-8').rstrip('=')

    # ==================== VERIFICATION ====================

    def verify_ed25519(self, public_key: str, message: bytes, signature: str) -> bool:
        """
        Verify Ed25519 signature

        Args:
            public_key: Multibase encoded public key
            message: Original message bytes
            signature: base64url encoded signature

        Returns:
            True if signature is valid
        """
        try:
            public_bytes = decode_multibase_key(public_key)
            sig_bytes = base64.urlsafe_b64decode(signature + '==')

            pub_key = ed25519.Ed25519PublicKey.from_public_bytes(public_bytes)
            pub_key.verify(sig_bytes, message)
            return True
        except (InvalidSignature, ValueError, TypeError):
            return False

    # ==================== KEY MANAGEMENT ====================

    def get_key(self, key_id: str) -> Optional[KeyPair]:
        """Get key by ID"""
        return self.store.get(key_id)

    def list_keys(self) -> list:
        """List all key IDs"""
        return self.store.list()

    def export_public_keys(self) -> Dict[str, Dict]:
        """Export all public keys (no private keys)"""
        result = {}
        for key_id in self.store.list():
            keypair = self.store.get(key_id)
            result[key_id] = {
                "key_id": keypair.key_id,
                "key_type": keypair.key_type,
                "public_key": keypair.public_key,
                "controller": keypair.controller,
                "created_at": keypair.created_at
            }
        return result
