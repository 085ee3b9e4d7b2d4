"""
Verifiable Credentials Issuer
=============================

Issues Tourist Verifiable Credentials following the
W3C Verifiable Credentials Data Model 1.1

Reference: https://www.w3.org/TR/vc-data-model/
"""

import json
import hashlib
import logging
import uuid
from typing import Optional, Dict, Any, List, Mapping
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .exceptions import NotFoundError, SigningError, ValidationError
from .key_manager import KeyManager, ED25519_KEY_TYPE, utc_now_iso
from .did_manager import DIDManager

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ("fullName", "nationality", "emergencyContact")


class CredentialType(Enum):
    """Types of credentials we issue"""
    TOURIST = "TouristCredential"


class TouristClaims(BaseModel):
    """
    Claim schema for a tourist credential

    The three identity fields are required; any other field is kept as an
    extension claim and carried into credentialSubject unchanged.
    """
    model_config = ConfigDict(extra="allow")

    fullName: str = Field(min_length=1)
    nationality: str = Field(min_length=1)
    emergencyContact: str = Field(min_length=1)

    @classmethod
    def parse(cls, data: Any) -> "TouristClaims":
        """Validate caller input, reporting every required field on failure"""
        if not isinstance(data, Mapping):
            raise ValidationError("Missing required fields", required=list(REQUIRED_CLAIMS))

        missing = [name for name in REQUIRED_CLAIMS if not data.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                required=list(REQUIRED_CLAIMS)
            )

        try:
            return cls.model_validate(dict(data))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid claim fields: {e.error_count()} error(s)",
                required=list(REQUIRED_CLAIMS)
            ) from e

    def to_claims(self) -> Dict[str, Any]:
        return self.model_dump()


@dataclass
class CredentialProof:
    """Proof attached to a Verifiable Credential"""
    type: str  # Ed25519Signature2020
    created: str
    verification_method: str  # Key ID used for signing
    proof_purpose: str  # assertionMethod
    proof_value: str  # The actual signature

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
            "proofValue": self.proof_value
        }


@dataclass
class VerifiableCredential:
    """
    W3C Verifiable Credential

    A credential containing claims about a subject,
    signed by an issuer. Claims are immutable once signed:
    any change invalidates the proof.
    """
    context: List[str] = field(default_factory=lambda: [
        "https://www.w3.org/2018/credentials/v1"
    ])
    id: str = ""
    type: List[str] = field(default_factory=lambda: ["VerifiableCredential"])
    issuer: str = ""  # Issuer's DID
    issuance_date: str = ""
    credential_subject: Dict[str, Any] = field(default_factory=dict)
    proof: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"urn:uuid:{uuid.uuid4()}"
        if not self.issuance_date:
            self.issuance_date = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": self.context,
            "id": self.id,
            "type": self.type,
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": self.credential_subject
        }

        if self.proof:
            vc["proof"] = self.proof

        return vc

    def get_hash(self) -> str:
        """Get hash of credential (without proof)"""
        vc_dict = self.to_dict()
        vc_dict.pop("proof", None)
        canonical = json.dumps(vc_dict, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(canonical.encode()).hexdigest()

    @property
    def subject_id(self) -> str:
        return self.credential_subject.get("id", "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifiableCredential":
        issuer = data.get("issuer", "")
        if isinstance(issuer, dict):
            issuer = issuer.get("id", "")
        return cls(
            context=data.get("@context", []),
            id=data.get("id", ""),
            type=data.get("type", []),
            issuer=issuer,
            issuance_date=data.get("issuanceDate", ""),
            credential_subject=data.get("credentialSubject", {}),
            proof=data.get("proof")
        )


class CredentialIssuer:
    """
    Issues Verifiable Credentials linking an issuer DID and a subject DID

    Claims are merged verbatim; shape checks belong to the caller
    (see TouristClaims).
    """

    def __init__(self, key_manager: KeyManager, did_manager: DIDManager):
        self.key_manager = key_manager
        self.did_manager = did_manager

    # ==================== CREDENTIAL ISSUANCE ====================

    def issue(
        self,
        issuer_did: str,
        subject_did: str,
        claims: Mapping[str, Any],
        credential_type: CredentialType = CredentialType.TOURIST
    ) -> VerifiableCredential:
        """
        Issue a signed Verifiable Credential

        Args:
            issuer_did: DID whose assertion key signs the credential
            subject_did: DID the claims are about
            claims: Free-form claim fields
            credential_type: Type tag appended after "VerifiableCredential"

        Returns:
            Signed VerifiableCredential

        Raises:
            SigningError: if the issuer DID has no usable key material
        """
        credential_subject = {"id": subject_did}
        credential_subject.update(
            (key, value) for key, value in claims.items() if key != "id"
        )

        vc = VerifiableCredential(
            type=["VerifiableCredential", credential_type.value],
            issuer=issuer_did,
            credential_subject=credential_subject
        )

        signed_vc = self._sign_credential(vc)
        logger.info("Issued credential %s from %s", signed_vc.id, issuer_did)
        return signed_vc

    # ==================== SIGNING ====================

    def _sign_credential(self, vc: VerifiableCredential) -> VerifiableCredential:
        """Attach an Ed25519Signature2020 proof over the credential hash"""
        try:
            issuer_doc = self.did_manager.resolve(vc.issuer)
        except NotFoundError as e:
            raise SigningError(f"Issuer DID not found: {vc.issuer}") from e

        if not issuer_doc.assertion_method:
            raise SigningError("Issuer has no assertion method keys")

        key_id = issuer_doc.assertion_method[0]
        key = self.key_manager.get_key(key_id)

        if not key or key.key_type != ED25519_KEY_TYPE:
            raise SigningError(f"Key not found: {key_id}")

        signature = self.key_manager.sign_ed25519(key_id, vc.get_hash().encode())

        proof = CredentialProof(
            type="Ed25519Signature2020",
            created=utc_now_iso(),
            verification_method=key_id,
            proof_purpose="assertionMethod",
            proof_value=signature
        )

        vc.proof = proof.to_dict()
        return vc
