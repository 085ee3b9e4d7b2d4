"""
Tourist Identity Credentials
============================

Issues W3C Verifiable Credentials for tourists, bound to did:key
identities, and delivers them as QR codes and PDFs verifiable through
signed token links.

Components:
- KeyManager / KeyStore: Ed25519 key material
- DIDManager: Create and resolve DID Documents
- CredentialIssuer: Issue Verifiable Credentials
- CredentialVerifier: Verify Verifiable Credentials
- CredentialStore: Persist issued credentials
- AccessTokenService: Short-lived verification tokens
- QRArtifactGenerator: Verification QR codes
- PDFRenderer: Credential PDF snapshots
- IssuanceService: End-to-end issuance and verification

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .key_manager import KeyManager, KeyPair, KeyStore, InMemoryKeyStore, FileKeyStore
from .did_manager import DIDManager, DIDDocument, DIDMethod
from .credential_issuer import CredentialIssuer, VerifiableCredential, CredentialType, TouristClaims
from .credential_verifier import CredentialVerifier, VerificationResult, VerificationStatus
from .credential_store import CredentialStore, DocumentStore
from .access_token import AccessTokenService
from .qr_artifact import QRArtifactGenerator, VerificationArtifact
from .pdf_renderer import PDFRenderer
from .issuance_service import IssuanceService, IssuanceResult, IssuanceRun, IssuanceState

__version__ = "1.0.0"
__all__ = [
    # Keys
    "KeyManager",
    "KeyPair",
    "KeyStore",
    "InMemoryKeyStore",
    "FileKeyStore",

    # Core DID
    "DIDManager",
    "DIDDocument",
    "DIDMethod",

    # Credentials
    "CredentialIssuer",
    "CredentialVerifier",
    "VerifiableCredential",
    "VerificationResult",
    "VerificationStatus",
    "CredentialType",
    "TouristClaims",

    # Delivery
    "CredentialStore",
    "DocumentStore",
    "AccessTokenService",
    "QRArtifactGenerator",
    "VerificationArtifact",
    "PDFRenderer",

    # Service
    "IssuanceService",
    "IssuanceResult",
    "IssuanceRun",
    "IssuanceState"
]
