"""
Credential Issuance Service
===========================

Sequences the whole pipeline for one tourist credential:

    issuer DID -> subject DID -> sign -> self-verify -> persist
    -> access token -> QR code -> PDF

Steps run strictly in order. A failing step marks the run FAILED and the
remaining steps are skipped; completed steps are not rolled back (a
persisted record stays persisted). Runs are kept by id so a caller can
inspect them and retry with the same issuance id: a run that already
persisted its credential resumes at token minting instead of issuing a
duplicate. A run executes in one request at a time, and only the most
recent MAX_TRACKED_RUNS runs are kept.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List, Callable

from .access_token import AccessTokenService
from .config import settings
from .credential_issuer import CredentialIssuer, TouristClaims, VerifiableCredential
from .credential_store import CredentialStore, generate_id
from .credential_verifier import CredentialVerifier, VerificationResult
from .did_manager import DIDManager
from .exceptions import IssuanceError, IssuanceInProgressError, NotFoundError
from .key_manager import KeyManager, KeyStore, build_key_store, utc_now_iso
from .pdf_renderer import PDFRenderer
from .qr_artifact import QRArtifactGenerator, VerificationArtifact

logger = logging.getLogger(__name__)

FRAMEWORK = "tourist_vc"


class IssuanceState(Enum):
    STARTED = "started"
    ISSUER_IDENTITY_CREATED = "issuer_identity_created"
    SUBJECT_IDENTITY_CREATED = "subject_identity_created"
    CREDENTIAL_SIGNED = "credential_signed"
    CREDENTIAL_VERIFIED = "credential_verified"
    CREDENTIAL_PERSISTED = "credential_persisted"
    TOKEN_MINTED = "token_minted"
    ARTIFACT_GENERATED = "artifact_generated"
    DOCUMENT_RENDERED = "document_rendered"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IssuanceRun:
    """Queryable progress of one issuance request"""
    id: str
    user_id: str
    state: IssuanceState = IssuanceState.STARTED
    issuer_did: Optional[str] = None
    subject_did: Optional[str] = None
    vc_id: Optional[str] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None
    history: List[str] = field(default_factory=list)
    in_progress: bool = False
    started_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if not self.started_at:
            self.started_at = utc_now_iso()
        self.updated_at = self.started_at
        if not self.history:
            self.history.append(self.state.value)

    def advance(self, state: IssuanceState):
        self.state = state
        self.failed_step = None
        self.error = None
        self.history.append(state.value)
        self.updated_at = utc_now_iso()

    def fail(self, step: str, cause: Exception):
        self.state = IssuanceState.FAILED
        self.failed_step = step
        self.error = str(cause)
        self.history.append(IssuanceState.FAILED.value)
        self.updated_at = utc_now_iso()

    @property
    def persisted(self) -> bool:
        return self.vc_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issuanceId": self.id,
            "userId": self.user_id,
            "state": self.state.value,
            "issuerDid": self.issuer_did,
            "touristDid": self.subject_did,
            "vcId": self.vc_id,
            "failedStep": self.failed_step,
            "error": self.error,
            "history": list(self.history),
            "inProgress": self.in_progress,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at
        }


@dataclass
class IssuanceResult:
    """Everything produced by a completed issuance"""
    issuance_id: str
    user_id: str
    vc_id: str
    credential: Dict[str, Any]
    issuer_did: str
    subject_did: str
    verification: Dict[str, Any]
    artifact: VerificationArtifact
    pdf_bytes: bytes
    access_token: str
    verify_url: str
    metadata: Dict[str, Any]
    resumed: bool = False


class IssuanceService:
    """
    Main service class for credential issuance and verification

    Provides a unified interface for:
    - Issuing a tourist credential end to end
    - Verifying by access token or by stored record
    - Rendering the PDF download
    - Capability probing
    """

    def __init__(
        self,
        key_store: Optional[KeyStore] = None,
        credential_store: Optional[CredentialStore] = None,
        token_service: Optional[AccessTokenService] = None,
        renderer: Optional[PDFRenderer] = None,
        max_runs: Optional[int] = None
    ):
        self.key_manager = KeyManager(key_store or build_key_store(settings.KEY_STORE_PATH))
        self.did_manager = DIDManager(self.key_manager)

        self.credential_issuer = CredentialIssuer(self.key_manager, self.did_manager)
        self.credential_verifier = CredentialVerifier(self.key_manager, self.did_manager)
        self.credential_store = credential_store or CredentialStore()
        self.token_service = token_service or AccessTokenService()
        self.qr_generator = QRArtifactGenerator(self.token_service)
        self.renderer = renderer or PDFRenderer()

        self.max_runs = max_runs or settings.MAX_TRACKED_RUNS
        self._runs: "OrderedDict[str, IssuanceRun]" = OrderedDict()
        self._runs_lock = threading.Lock()

    # ==================== ISSUANCE ====================

    def issue_and_process(
        self,
        claims: Dict[str, Any],
        target_user_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        issuance_id: Optional[str] = None
    ) -> IssuanceResult:
        """
        Issue a tourist credential and produce its QR code and PDF

        Args:
            claims: fullName, nationality, emergencyContact plus any extension claims
            target_user_id: Owner of the stored record; generated when absent
            options: baseUrl, qrType, selfVerify (default True)
            issuance_id: Idempotency key; reusing it resumes an earlier run

        Returns:
            IssuanceResult

        Raises:
            ValidationError: required claims missing (nothing has been created)
            IssuanceError: a pipeline step failed; see .step and .cause
            IssuanceInProgressError: issuance_id is being processed by another request
        """
        tourist = TouristClaims.parse(claims)
        options = options or {}
        base_url = options.get("baseUrl") or settings.DEFAULT_BASE_URL
        qr_type = options.get("qrType") or settings.DEFAULT_QR_TYPE

        run = self._start_run(issuance_id, target_user_id)
        try:
            return self._process(run, tourist, options, base_url, qr_type)
        finally:
            self._release_run(run)

    def _process(
        self,
        run: IssuanceRun,
        tourist: TouristClaims,
        options: Dict[str, Any],
        base_url: str,
        qr_type: str
    ) -> IssuanceResult:
        log_ctx = {"run_id": run.id, "user_id": run.user_id}

        resumed = run.persisted
        if resumed:
            logger.info("Resuming issuance from stored record %s", run.vc_id, extra=log_ctx)
            record = self._step(run, "load_record", lambda: self.credential_store.get(run.user_id, run.vc_id))
            credential = record["credential"]
            metadata = record["metadata"]
            verification = metadata.get("verification", {})
        else:
            credential, metadata, verification = self._issue_new(run, tourist, options, log_ctx)

        # Token, QR code and PDF are regenerated on every attempt
        access_token = self._step(
            run, "mint_token", lambda: self.token_service.mint(run.user_id, run.vc_id)
        )
        run.advance(IssuanceState.TOKEN_MINTED)

        artifact = self._step(
            run, "generate_artifact",
            lambda: self.qr_generator.generate(run.vc_id, run.user_id, base_url, qr_type)
        )
        run.advance(IssuanceState.ARTIFACT_GENERATED)

        record = {
            "id": run.vc_id,
            "userId": run.user_id,
            "credential": credential,
            "metadata": metadata
        }
        pdf_bytes = self._step(
            run, "render_document", lambda: self.renderer.render(record, artifact.image_data)
        )
        run.advance(IssuanceState.DOCUMENT_RENDERED)

        run.advance(IssuanceState.COMPLETED)
        logger.info("Issuance completed for %s", run.vc_id, extra=log_ctx)

        return IssuanceResult(
            issuance_id=run.id,
            user_id=run.user_id,
            vc_id=run.vc_id,
            credential=credential,
            issuer_did=run.issuer_did,
            subject_did=run.subject_did,
            verification=verification,
            artifact=artifact,
            pdf_bytes=pdf_bytes,
            access_token=access_token,
            verify_url=f"/api/vc/verify?token={access_token}",
            metadata=metadata,
            resumed=resumed
        )

    def _issue_new(self, run: IssuanceRun, tourist: TouristClaims, options: Dict[str, Any], log_ctx: Dict[str, str]):
        issuer_did, _ = self._step(run, "create_issuer_identity", self.did_manager.create_did)
        run.issuer_did = issuer_did
        run.advance(IssuanceState.ISSUER_IDENTITY_CREATED)
        logger.info("Issuer DID created: %s", issuer_did, extra=log_ctx)

        subject_did, _ = self._step(run, "create_subject_identity", self.did_manager.create_did)
        run.subject_did = subject_did
        run.advance(IssuanceState.SUBJECT_IDENTITY_CREATED)
        logger.info("Tourist DID created: %s", subject_did, extra=log_ctx)

        credential_subject = tourist.to_claims()
        credential_subject["credentialType"] = "Tourist Verification"
        credential_subject["issuedAt"] = utc_now_iso()

        vc: VerifiableCredential = self._step(
            run, "sign_credential",
            lambda: self.credential_issuer.issue(issuer_did, subject_did, credential_subject)
        )
        run.advance(IssuanceState.CREDENTIAL_SIGNED)

        verification = {"verified": None, "issuer": issuer_did}
        if options.get("selfVerify", True):
            result: VerificationResult = self._step(
                run, "verify_credential", lambda: self.credential_verifier.verify(vc)
            )
            verification = {"verified": result.verified, "issuer": result.issuer}
            run.advance(IssuanceState.CREDENTIAL_VERIFIED)
            logger.info(
                "Self-verification result: %s", "VALID" if result.verified else "INVALID", extra=log_ctx
            )

        credential = vc.to_dict()
        metadata = {
            "issuerDid": issuer_did,
            "touristDid": subject_did,
            "issuerIdentifier": {
                "did": issuer_did,
                "keys": self.did_manager.get_public_keys(issuer_did)
            },
            "touristIdentifier": {
                "did": subject_did,
                "keys": self.did_manager.get_public_keys(subject_did)
            },
            "verification": verification,
            "framework": FRAMEWORK
        }

        def persist():
            vc_id = self.credential_store.save(run.user_id, credential, metadata)
            # Read back so the caller sees createdAt/status exactly as stored
            return self.credential_store.get(run.user_id, vc_id)

        stored = self._step(run, "persist_credential", persist)
        run.vc_id = stored["id"]
        run.advance(IssuanceState.CREDENTIAL_PERSISTED)

        return credential, stored["metadata"], verification

    def _step(self, run: IssuanceRun, name: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except Exception as e:
            run.fail(name, e)
            logger.error(
                "Issuance step %s failed: %s", name, e,
                extra={"run_id": run.id, "user_id": run.user_id, "step": name}
            )
            raise IssuanceError(name, e) from e

    # ==================== RUN TRACKING ====================

    def _start_run(self, issuance_id: Optional[str], target_user_id: Optional[str]) -> IssuanceRun:
        """Claim an existing run or register a new one"""
        with self._runs_lock:
            run = self._runs.get(issuance_id) if issuance_id else None
            if run is None:
                run = IssuanceRun(
                    id=issuance_id or generate_id("iss"),
                    user_id=target_user_id or generate_id("user")
                )
                self._runs[run.id] = run
            elif run.in_progress:
                raise IssuanceInProgressError(f"Issuance already in progress: {issuance_id}")
            else:
                self._runs.move_to_end(run.id)

            run.in_progress = True
            self._evict_runs()
            return run

    def _release_run(self, run: IssuanceRun):
        with self._runs_lock:
            run.in_progress = False

    def _evict_runs(self):
        """Trim to max_runs, oldest completed runs first; caller holds _runs_lock"""
        excess = len(self._runs) - self.max_runs
        if excess <= 0:
            return

        idle = [run for run in self._runs.values() if not run.in_progress]
        # Failed runs may still be resumed, so they outlive completed ones
        idle.sort(key=lambda run: run.state != IssuanceState.COMPLETED)
        for run in idle[:excess]:
            del self._runs[run.id]
            logger.debug("Evicted issuance run %s", run.id)

    def get_run(self, issuance_id: str) -> IssuanceRun:
        """
        Look up an issuance run

        Raises:
            NotFoundError: unknown or evicted issuance id
        """
        with self._runs_lock:
            run = self._runs.get(issuance_id)
        if run is None:
            raise NotFoundError(f"Issuance not found: {issuance_id}")
        return run

    # ==================== VERIFICATION ====================

    def verify_by_token(self, token: str) -> Dict[str, Any]:
        """
        Validate an access token and fetch the credential it points to

        Raises:
            InvalidTokenError: bad signature or expired
            MalformedPayloadError: token lacks userId/vcId
            NotFoundError: record no longer exists
        """
        payload = self.token_service.validate(token)
        record = self.credential_store.get(payload["userId"], payload["vcId"])

        return {
            "userId": payload["userId"],
            "vcId": payload["vcId"],
            "credential": record["credential"],
            "metadata": record["metadata"]
        }

    def verify_by_record(
        self,
        user_id: str,
        vc_id: str,
        supplied_credential: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Check a stored record, optionally against a submitted credential

        verified = credential matches (structurally) AND status is active.

        Raises:
            NotFoundError: no such record
        """
        record = self.credential_store.get(user_id, vc_id)
        metadata = record["metadata"]

        credential_match = True
        if supplied_credential is not None:
            credential_match = supplied_credential == record["credential"]

        return {
            "verified": credential_match and metadata.get("status") == "active",
            "credentialMatch": credential_match,
            "status": metadata.get("status"),
            "issuedAt": metadata.get("createdAt")
        }

    # ==================== DOCUMENTS ====================

    def render_document(
        self,
        user_id: str,
        vc_id: str,
        base_url: Optional[str] = None,
        kind: Optional[str] = None
    ) -> bytes:
        """Fetch a record, attach a fresh QR code and render the PDF"""
        record = self.credential_store.get(user_id, vc_id)
        artifact = self.qr_generator.generate(vc_id, user_id, base_url, kind)
        return self.renderer.render(record, artifact.image_data)

    def list_credentials(self, user_id: str) -> List[Dict[str, Any]]:
        return self.credential_store.list(user_id)

    # ==================== HEALTH ====================

    def probe(self) -> Dict[str, Any]:
        """Create and resolve a throwaway identity"""
        did, _ = self.did_manager.create_did()
        resolved = self.did_manager.resolve(did)
        keys = self.did_manager.get_public_keys(did)

        return {
            "didCreated": did,
            "didResolved": resolved.id == did,
            "keyCount": len(keys),
            "supportedKeyTypes": [key["type"] for key in keys]
        }

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "dids": self.did_manager.get_statistics(),
            "runs": len(self._runs)
        }
