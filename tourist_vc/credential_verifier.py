"""
Verifiable Credentials Verifier
================================

Verifies Verifiable Credentials against their issuer's DID document

Checks:
- Credential structure
- Proof signature against the issuer's published key
"""

from typing import Optional, Dict, Any, List, Tuple, Union
from dataclasses import dataclass
from enum import Enum

from .exceptions import NotFoundError, ResolutionError
from .key_manager import KeyManager, ED25519_KEY_TYPE, utc_now_iso
from .did_manager import DIDManager
from .credential_issuer import VerifiableCredential


class VerificationStatus(Enum):
    """Credential verification status"""
    VALID = "valid"
    INVALID_SIGNATURE = "invalid_signature"
    KEY_NOT_FOUND = "key_not_found"
    MALFORMED = "malformed"


@dataclass
class VerificationResult:
    """Result of credential verification"""
    status: VerificationStatus
    credential_id: str
    issuer: str
    subject: str
    verified: bool
    checks: Dict[str, bool]
    errors: List[str]
    verified_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "credentialId": self.credential_id,
            "issuer": self.issuer,
            "subject": self.subject,
            "verified": self.verified,
            "checks": self.checks,
            "errors": self.errors,
            "verifiedAt": self.verified_at
        }


class CredentialVerifier:
    """
    Verifies Verifiable Credentials

    An invalid signature is a result (verified=False), not an error.
    Only an issuer that cannot be resolved at all raises ResolutionError.
    """

    def __init__(self, key_manager: KeyManager, did_manager: DIDManager):
        self.key_manager = key_manager
        self.did_manager = did_manager

    # ==================== VERIFICATION ====================

    def verify(self, credential: Union[VerifiableCredential, Dict[str, Any]]) -> VerificationResult:
        """
        Verify a Verifiable Credential

        Args:
            credential: The credential (object or W3C JSON dict)

        Returns:
            VerificationResult with detailed status

        Raises:
            ResolutionError: if the issuer DID cannot be resolved
        """
        if isinstance(credential, dict):
            credential = VerifiableCredential.from_dict(credential)

        errors = []
        checks = {
            "structure": False,
            "signature": False
        }

        # 1. Structure validation
        structure_valid, structure_errors = self._validate_structure(credential)
        checks["structure"] = structure_valid
        errors.extend(structure_errors)

        if not structure_valid:
            return self._create_result(VerificationStatus.MALFORMED, credential, checks, errors)

        # 2. Verify signature
        status, sig_error = self._verify_signature(credential)
        checks["signature"] = status == VerificationStatus.VALID

        if sig_error:
            errors.append(sig_error)

        return self._create_result(status, credential, checks, errors)

    # ==================== VALIDATION HELPERS ====================

    def _validate_structure(self, credential: VerifiableCredential) -> Tuple[bool, List[str]]:
        """Validate credential structure"""
        errors = []

        if not credential.id:
            errors.append("Missing credential ID")

        if not credential.type or "VerifiableCredential" not in credential.type:
            errors.append("Invalid or missing credential type")

        if not credential.issuer:
            errors.append("Missing issuer")

        if not credential.issuance_date:
            errors.append("Missing issuance date")

        if not credential.credential_subject:
            errors.append("Missing credential subject")

        if not credential.proof or not isinstance(credential.proof, dict):
            errors.append("Missing proof")

        return len(errors) == 0, errors

    def _verify_signature(self, credential: VerifiableCredential) -> Tuple[VerificationStatus, Optional[str]]:
        """Verify credential signature"""
        proof = credential.proof

        verification_method = proof.get("verificationMethod")
        if not verification_method:
            return VerificationStatus.INVALID_SIGNATURE, "No verification method in proof"

        proof_value = proof.get("proofValue")
        if not proof_value:
            return VerificationStatus.INVALID_SIGNATURE, "No proof value"

        try:
            issuer_doc = self.did_manager.resolve(credential.issuer)
        except NotFoundError as e:
            raise ResolutionError(f"Could not resolve issuer DID: {credential.issuer}") from e

        key_data = issuer_doc.find_verification_method(verification_method)
        if not key_data:
            return VerificationStatus.KEY_NOT_FOUND, f"Verification method not found: {verification_method}"

        if key_data.get("type") != ED25519_KEY_TYPE:
            return VerificationStatus.KEY_NOT_FOUND, f"Unsupported key type: {key_data.get('type')}"

        is_valid = self.key_manager.verify_ed25519(
            key_data.get("publicKeyMultibase", ""),
            credential.get_hash().encode(),
            proof_value
        )

        if not is_valid:
            return VerificationStatus.INVALID_SIGNATURE, "Signature verification failed"
        return VerificationStatus.VALID, None

    def _create_result(
        self,
        status: VerificationStatus,
        credential: VerifiableCredential,
        checks: Dict[str, bool],
        errors: List[str]
    ) -> VerificationResult:
        """Create verification result"""
        subject = credential.credential_subject.get("id", "") if credential.credential_subject else ""

        return VerificationResult(
            status=status,
            credential_id=credential.id,
            issuer=credential.issuer,
            subject=subject,
            verified=status == VerificationStatus.VALID,
            checks=checks,
            errors=errors,
            verified_at=utc_now_iso()
        )
