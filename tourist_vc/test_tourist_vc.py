"""
Tourist Credential Tests
========================

Tests for keys, DIDs, credentials, storage, tokens, QR codes, PDFs and the
issuance pipeline.
"""

import io
import json
import logging
import re
import threading
import time

import jwt
import pytest
from PIL import Image
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from tourist_vc.access_token import AccessTokenService
from tourist_vc.credential_issuer import CredentialIssuer, TouristClaims, VerifiableCredential
from tourist_vc.credential_store import CredentialStore
from tourist_vc.credential_verifier import CredentialVerifier, VerificationStatus
from tourist_vc.did_manager import DIDManager, did_from_public_key
from tourist_vc.exceptions import (
    InvalidTokenError,
    IssuanceError,
    IssuanceInProgressError,
    KeyGenerationError,
    MalformedPayloadError,
    NotFoundError,
    RenderError,
    ResolutionError,
    SigningError,
    TokenExpiredError,
    ValidationError,
)
from tourist_vc.issuance_service import IssuanceService, IssuanceState
from tourist_vc.key_manager import FileKeyStore, KeyManager, decode_multibase_key
from tourist_vc.logging_config import JsonFormatter
from tourist_vc.pdf_renderer import (
    BODY_FONT,
    BODY_SIZE,
    BOTTOM_MARGIN,
    PAGE_HEIGHT,
    TEXT_WIDTH,
    PDFRenderer,
    humanize_key,
)
from tourist_vc.qr_artifact import QRArtifactGenerator

SECRET = "test-secret-that-is-long-enough-for-hs256-keys"

JANE = {
    "fullName": "Jane Roe",
    "nationality": "Kenyan",
    "emergencyContact": "+254700000000"
}


def tamper(token: str) -> str:
    """Flip one character in the middle of the JWT payload segment"""
    header, payload, signature = token.split(".")
    i = len(payload) // 2
    replacement = "A" if payload[i] != "A" else "B"
    payload = payload[:i] + replacement + payload[i + 1:]
    return ".".join([header, payload, signature])


class TestKeyManager:
    """Test KeyManager functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.did_manager = DIDManager(self.key_manager)

    def test_sign_and_verify_ed25519(self):
        did, doc = self.did_manager.create_did()
        key_id = doc.assertion_method[0]
        key = self.key_manager.get_key(key_id)
        message = b"Test message for signing"

        signature = self.key_manager.sign_ed25519(key_id, message)

        assert self.key_manager.verify_ed25519(key.public_key, message, signature) is True
        assert self.key_manager.verify_ed25519(key.public_key, b"other message", signature) is False

    def test_sign_with_unknown_key(self):
        with pytest.raises(SigningError):
            self.key_manager.sign_ed25519("did:key:zUnknown#zUnknown", b"msg")

    def test_public_export_has_no_private_keys(self):
        self.did_manager.create_did()
        exported = self.key_manager.export_public_keys()

        assert len(exported) == 1
        for entry in exported.values():
            assert "private_key" not in entry

    def test_file_key_store_survives_restart(self, tmp_path):
        path = str(tmp_path / "keys.json")
        first = DIDManager(KeyManager(FileKeyStore(path)))
        did, _ = first.create_did()

        # A new manager over the same file can resolve and sign
        second = DIDManager(KeyManager(FileKeyStore(path)))
        doc = second.resolve(did)
        signature = second.key_manager.sign_ed25519(doc.assertion_method[0], b"after restart")

        assert doc.id == did
        assert signature


class TestDIDManager:
    """Test DIDManager functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.did_manager = DIDManager(self.key_manager)

    def test_create_did_key(self):
        did, doc = self.did_manager.create_did()

        assert did.startswith("did:key:z6Mk")
        assert doc.id == did
        assert len(doc.verification_method) == 1
        assert doc.assertion_method == [f"{did}#{did.split(':')[2]}"]

    def test_identifier_derived_from_key(self):
        did, doc = self.did_manager.create_did()
        public_bytes = decode_multibase_key(doc.verification_method[0]["publicKeyMultibase"])

        assert did_from_public_key(public_bytes) == did

    def test_identities_are_distinct(self):
        first, _ = self.did_manager.create_did()
        second, _ = self.did_manager.create_did()

        assert first != second

    def test_resolve_did(self):
        did, _ = self.did_manager.create_did()
        resolved = self.did_manager.resolve(did)

        assert resolved.id == did
        assert resolved.to_dict()["verificationMethod"][0]["type"] == "Ed25519VerificationKey2020"

    def test_resolve_unknown_did(self):
        with pytest.raises(NotFoundError):
            self.did_manager.resolve("did:key:z6MkNotRegisteredHere")

    def test_public_keys(self):
        did, _ = self.did_manager.create_did()
        keys = self.did_manager.get_public_keys(did)

        assert len(keys) == 1
        assert len(keys[0]["publicKeyHex"]) == 64


class TestTouristClaims:
    """Test the claim schema"""

    def test_valid_claims_keep_extensions(self):
        claims = TouristClaims.parse({**JANE, "passportNumber": "A1234567"})

        assert claims.to_claims()["passportNumber"] == "A1234567"
        assert claims.fullName == "Jane Roe"

    def test_missing_field_lists_all_required(self):
        with pytest.raises(ValidationError) as exc_info:
            TouristClaims.parse({"fullName": "Jane Roe", "emergencyContact": "+254700000000"})

        assert exc_info.value.required == ["fullName", "nationality", "emergencyContact"]

    def test_empty_string_counts_as_missing(self):
        with pytest.raises(ValidationError):
            TouristClaims.parse({**JANE, "fullName": ""})

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError):
            TouristClaims.parse(["fullName"])


class TestCredentialIssuer:
    """Test CredentialIssuer functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.did_manager = DIDManager(self.key_manager)
        self.issuer = CredentialIssuer(self.key_manager, self.did_manager)

        self.issuer_did, _ = self.did_manager.create_did()
        self.subject_did, _ = self.did_manager.create_did()

    def test_credential_structure(self):
        credential = self.issuer.issue(self.issuer_did, self.subject_did, JANE)
        vc_dict = credential.to_dict()

        for required in ("@context", "id", "type", "issuer", "issuanceDate", "credentialSubject", "proof"):
            assert required in vc_dict

        assert "https://www.w3.org/2018/credentials/v1" in vc_dict["@context"]
        assert vc_dict["type"] == ["VerifiableCredential", "TouristCredential"]
        assert vc_dict["issuer"] == self.issuer_did
        assert vc_dict["proof"]["type"] == "Ed25519Signature2020"
        assert vc_dict["proof"]["verificationMethod"].startswith(self.issuer_did)

    def test_claims_merged_verbatim(self):
        claims = {**JANE, "favouriteColour": "teal"}
        credential = self.issuer.issue(self.issuer_did, self.subject_did, claims)

        assert credential.credential_subject["id"] == self.subject_did
        assert credential.credential_subject["favouriteColour"] == "teal"
        assert credential.credential_subject["fullName"] == "Jane Roe"

    def test_claims_cannot_override_subject(self):
        credential = self.issuer.issue(self.issuer_did, self.subject_did, {**JANE, "id": "did:key:zEvil"})

        assert credential.subject_id == self.subject_did

    def test_unknown_issuer_cannot_sign(self):
        with pytest.raises(SigningError):
            self.issuer.issue("did:key:z6MkUnknownIssuer", self.subject_did, JANE)


class TestCredentialVerifier:
    """Test CredentialVerifier functionality"""

    def setup_method(self):
        self.key_manager = KeyManager()
        self.did_manager = DIDManager(self.key_manager)
        self.issuer = CredentialIssuer(self.key_manager, self.did_manager)
        self.verifier = CredentialVerifier(self.key_manager, self.did_manager)

        self.issuer_did, _ = self.did_manager.create_did()
        self.subject_did, _ = self.did_manager.create_did()

    def test_verify_valid_credential(self):
        credential = self.issuer.issue(self.issuer_did, self.subject_did, JANE)
        result = self.verifier.verify(credential)

        assert result.verified is True
        assert result.status == VerificationStatus.VALID
        assert result.issuer == self.issuer_did

    def test_verify_from_json_dict(self):
        credential = self.issuer.issue(self.issuer_did, self.subject_did, JANE)

        assert self.verifier.verify(credential.to_dict()).verified is True

    def test_changed_claim_invalidates_proof(self):
        vc_dict = self.issuer.issue(self.issuer_did, self.subject_did, JANE).to_dict()
        vc_dict["credentialSubject"]["nationality"] = "Ugandan"

        result = self.verifier.verify(vc_dict)

        assert result.verified is False
        assert result.status == VerificationStatus.INVALID_SIGNATURE

    def test_proof_from_other_issuer_fails(self):
        other_did, _ = self.did_manager.create_did()
        vc_dict = self.issuer.issue(self.issuer_did, self.subject_did, JANE).to_dict()
        vc_dict["issuer"] = other_did

        result = self.verifier.verify(vc_dict)

        assert result.verified is False

    def test_unresolvable_issuer_raises(self):
        foreign = DIDManager(KeyManager())
        foreign_did, _ = foreign.create_did()
        credential = CredentialIssuer(foreign.key_manager, foreign).issue(foreign_did, self.subject_did, JANE)

        with pytest.raises(ResolutionError):
            self.verifier.verify(credential)

    def test_verify_malformed_credential(self):
        credential = VerifiableCredential(type=[], issuer="", credential_subject={})
        result = self.verifier.verify(credential)

        assert result.verified is False
        assert result.status == VerificationStatus.MALFORMED
        assert len(result.errors) > 0


class TestCredentialStore:
    """Test CredentialStore functionality"""

    def setup_method(self):
        self.store = CredentialStore()
        self.credential = {"id": "urn:uuid:1", "credentialSubject": dict(JANE)}

    def test_save_generates_record_id(self):
        vc_id = self.store.save("user_1", self.credential, {"issuerDid": "did:key:z1"})

        assert re.fullmatch(r"vc_\d+_[a-z0-9]+", vc_id)

    def test_identical_saves_are_not_deduplicated(self):
        first = self.store.save("user_1", self.credential, {})
        second = self.store.save("user_1", self.credential, {})

        assert first != second
        assert len(self.store.list("user_1")) == 2

    def test_get_returns_record_with_status(self):
        vc_id = self.store.save("user_1", self.credential, {"issuerDid": "did:key:z1"})
        record = self.store.get("user_1", vc_id)

        assert record["id"] == vc_id
        assert record["userId"] == "user_1"
        assert record["credential"] == self.credential
        assert record["metadata"]["status"] == "active"
        assert record["metadata"]["issuerDid"] == "did:key:z1"
        assert "createdAt" in record["metadata"]

    def test_get_unknown_record(self):
        with pytest.raises(NotFoundError):
            self.store.get("user_1", "vc_0_missing")

    def test_records_are_scoped_per_user(self):
        vc_id = self.store.save("user_1", self.credential, {})

        with pytest.raises(NotFoundError):
            self.store.get("user_2", vc_id)

    def test_stored_payload_is_immutable(self):
        vc_id = self.store.save("user_1", self.credential, {})
        record = self.store.get("user_1", vc_id)
        record["credential"]["credentialSubject"]["fullName"] = "Someone Else"

        assert self.store.get("user_1", vc_id)["credential"]["credentialSubject"]["fullName"] == "Jane Roe"


class TestAccessTokenService:
    """Test AccessTokenService functionality"""

    def setup_method(self):
        self.tokens = AccessTokenService(secret=SECRET)

    def test_validate_fresh_token(self):
        token = self.tokens.mint("user_1", "vc_1_abc")
        payload = self.tokens.validate(token)

        assert payload["userId"] == "user_1"
        assert payload["vcId"] == "vc_1_abc"
        assert payload["type"] == "vc_access"
        assert payload["exp"] - payload["iat"] == 3600

    def test_token_expires_after_ttl(self):
        token = self.tokens.mint("user_1", "vc_1_abc", ttl_seconds=60, issued_at=int(time.time()) - 61)

        with pytest.raises(TokenExpiredError):
            self.tokens.validate(token)

    def test_expired_is_an_invalid_token(self):
        token = self.tokens.mint("user_1", "vc_1_abc", ttl_seconds=60, issued_at=int(time.time()) - 120)

        with pytest.raises(InvalidTokenError):
            self.tokens.validate(token)

    def test_tampered_payload_rejected(self):
        token = self.tokens.mint("user_1", "vc_1_abc")

        with pytest.raises(InvalidTokenError):
            self.tokens.validate(tamper(token))

    def test_wrong_secret_rejected(self):
        token = AccessTokenService(secret="another-secret-that-is-long-enough-too").mint("user_1", "vc_1")

        with pytest.raises(InvalidTokenError):
            self.tokens.validate(token)

    def test_garbage_rejected(self):
        with pytest.raises(InvalidTokenError):
            self.tokens.validate("not-a-token")

    def test_missing_record_id_is_malformed(self):
        now = int(time.time())
        token = jwt.encode(
            {"userId": "user_1", "type": "vc_access", "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS256"
        )

        with pytest.raises(MalformedPayloadError):
            self.tokens.validate(token)

    def test_other_token_type_rejected(self):
        now = int(time.time())
        token = jwt.encode(
            {"userId": "user_1", "vcId": "vc_1", "type": "session", "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS256"
        )

        with pytest.raises(InvalidTokenError):
            self.tokens.validate(token)


class TestQRArtifactGenerator:
    """Test verification QR codes"""

    def setup_method(self):
        self.tokens = AccessTokenService(secret=SECRET)
        self.generator = QRArtifactGenerator(self.tokens, size_px=256)

    def test_generate_embeds_valid_token(self):
        artifact = self.generator.generate("vc_1_abc", "user_1", "https://example.org/", "presentation")

        assert artifact.plaintext_url == f"https://example.org/verify?token={artifact.token}"
        assert artifact.kind == "presentation"
        assert self.tokens.validate(artifact.token)["vcId"] == "vc_1_abc"

    def test_image_is_square_png(self):
        artifact = self.generator.generate("vc_1_abc", "user_1", "https://example.org")
        image = Image.open(io.BytesIO(artifact.image_data))

        assert image.format == "PNG"
        assert image.size == (256, 256)
        assert artifact.data_url.startswith("data:image/png;base64,")

    def test_same_url_same_image(self):
        url = "https://example.org/verify?token=abc.def.ghi"

        assert self.generator.encode(url) == self.generator.encode(url)

    def test_artifact_kind_defaults(self):
        artifact = self.generator.generate("vc_1_abc", "user_1")

        assert artifact.kind == "presentation"
        assert artifact.to_dict()["data"] == artifact.plaintext_url

    def test_url_too_long_for_qr(self):
        with pytest.raises(RenderError):
            self.generator.encode("https://example.org/" + "a" * 3000)


class TestPDFRenderer:
    """Test PDF rendering"""

    def setup_method(self):
        self.renderer = PDFRenderer()
        self.qr_png = QRArtifactGenerator(AccessTokenService(secret=SECRET)).encode("https://example.org")
        self.record = {
            "id": "vc_1_abc",
            "userId": "user_1",
            "credential": {"credentialSubject": {"id": "did:key:z6Mk1", **JANE}},
            "metadata": {"createdAt": "2026-01-01T00:00:00Z", "status": "active"}
        }

    def test_render_pdf(self):
        pdf = self.renderer.render(self.record, self.qr_png)

        assert pdf.startswith(b"%PDF")
        assert b"%%EOF" in pdf[-32:]

    def test_render_accepts_data_url(self):
        import base64
        data_url = "data:image/png;base64," + base64.b64encode(self.qr_png).decode()

        assert self.renderer.render(self.record, data_url).startswith(b"%PDF")

    def test_undecodable_image(self):
        with pytest.raises(RenderError):
            self.renderer.render(self.record, b"definitely not a png")

    def test_humanize_key(self):
        assert humanize_key("emergencyContact") == "Emergency Contact"
        assert humanize_key("fullName") == "Full Name"
        assert humanize_key("nationality") == "Nationality"

    def spy(self, monkeypatch, method):
        """Record the positional/keyword arguments of a Canvas method"""
        calls = []
        original = getattr(canvas.Canvas, method)

        def recorder(pdf, *args, **kwargs):
            calls.append((args, kwargs))
            return original(pdf, *args, **kwargs)

        monkeypatch.setattr(canvas.Canvas, method, recorder)
        return calls

    def test_usual_record_fits_one_page(self, monkeypatch):
        pages = self.spy(monkeypatch, "showPage")

        self.renderer.render(self.record, self.qr_png)

        assert len(pages) == 1

    def test_extension_claims_keep_qr_on_page(self, monkeypatch):
        images = self.spy(monkeypatch, "drawImage")
        subject = self.record["credential"]["credentialSubject"]
        subject.update({f"extraClaim{i}": f"value {i}" for i in range(12)})

        self.renderer.render(self.record, self.qr_png)

        assert len(images) == 1
        (_, x, y), kwargs = images[0]
        assert y >= BOTTOM_MARGIN
        assert y + kwargs["height"] <= PAGE_HEIGHT

    def test_overflowing_claims_continue_on_next_page(self, monkeypatch):
        pages = self.spy(monkeypatch, "showPage")
        texts = self.spy(monkeypatch, "drawString")
        subject = self.record["credential"]["credentialSubject"]
        subject.update({f"extraClaim{i}": f"value {i}" for i in range(40)})

        pdf = self.renderer.render(self.record, self.qr_png)

        assert pdf.startswith(b"%PDF")
        assert len(pages) > 1
        assert all(args[1] >= BOTTOM_MARGIN for args, _ in texts)
        assert "Extra Claim39: value 39" in [args[2] for args, _ in texts]

    def test_long_claim_value_wraps(self, monkeypatch):
        texts = self.spy(monkeypatch, "drawString")
        self.record["credential"]["credentialSubject"]["homeAddress"] = "Apartment 12, Riverside Road, " * 12

        self.renderer.render(self.record, self.qr_png)

        address_lines = [args[2] for args, _ in texts if "Riverside" in args[2]]
        assert len(address_lines) > 1
        for line in address_lines:
            assert stringWidth(line, BODY_FONT, BODY_SIZE) <= TEXT_WIDTH


class FailingRenderer(PDFRenderer):
    """Fails the first `failures` renders"""

    def __init__(self, failures: int = 1):
        self.failures = failures

    def render(self, record, artifact_image):
        if self.failures > 0:
            self.failures -= 1
            raise RenderError("printer on fire")
        return super().render(record, artifact_image)


class TestIssuanceService:
    """Test the end-to-end pipeline"""

    def setup_method(self):
        self.service = IssuanceService(token_service=AccessTokenService(secret=SECRET))

    def test_issue_jane_roe(self):
        result = self.service.issue_and_process(dict(JANE))

        assert re.fullmatch(r"vc_\d+_[a-z0-9]+", result.vc_id)
        assert result.credential["credentialSubject"]["fullName"] == "Jane Roe"
        assert result.credential["credentialSubject"]["id"] == result.subject_did
        assert result.credential["issuer"] == result.issuer_did
        assert result.verification["verified"] is True
        assert self.service.credential_verifier.verify(result.credential).verified is True
        assert result.pdf_bytes.startswith(b"%PDF")
        assert result.verify_url == f"/api/vc/verify?token={result.access_token}"
        assert result.metadata["status"] == "active"

    def test_issue_runs_every_state(self):
        result = self.service.issue_and_process(dict(JANE), target_user_id="user_42")
        run = self.service.get_run(result.issuance_id)

        assert result.user_id == "user_42"
        assert run.state == IssuanceState.COMPLETED
        assert run.history == [state.value for state in IssuanceState if state != IssuanceState.FAILED]

    def test_missing_claims_create_nothing(self):
        with pytest.raises(ValidationError) as exc_info:
            self.service.issue_and_process({"fullName": "Jane Roe", "emergencyContact": "+254700000000"})

        assert exc_info.value.required == ["fullName", "nationality", "emergencyContact"]
        assert self.service.did_manager.list_dids() == []

    def test_verify_by_token(self):
        result = self.service.issue_and_process(dict(JANE), target_user_id="user_1")
        data = self.service.verify_by_token(result.access_token)

        assert data["vcId"] == result.vc_id
        assert data["credential"] == result.credential
        assert data["metadata"]["status"] == "active"

    def test_verify_by_token_tampered(self):
        result = self.service.issue_and_process(dict(JANE))

        with pytest.raises(InvalidTokenError):
            self.service.verify_by_token(tamper(result.access_token))

    def test_verify_by_record(self):
        result = self.service.issue_and_process(dict(JANE), target_user_id="user_1")

        unchecked = self.service.verify_by_record("user_1", result.vc_id)
        matching = self.service.verify_by_record("user_1", result.vc_id, result.credential)
        altered = dict(result.credential, issuer="did:key:z6MkSomeoneElse")
        mismatch = self.service.verify_by_record("user_1", result.vc_id, altered)

        assert unchecked["verified"] is True
        assert matching == {**matching, "verified": True, "credentialMatch": True, "status": "active"}
        assert mismatch["verified"] is False
        assert mismatch["credentialMatch"] is False
        assert mismatch["status"] == "active"

    def test_verify_by_unknown_record(self):
        with pytest.raises(NotFoundError):
            self.service.verify_by_record("user_1", "vc_0_missing")

    def test_failed_render_keeps_record_and_resumes(self):
        service = IssuanceService(
            token_service=AccessTokenService(secret=SECRET),
            renderer=FailingRenderer(failures=1)
        )

        with pytest.raises(IssuanceError) as exc_info:
            service.issue_and_process(dict(JANE), target_user_id="user_1", issuance_id="iss_retry")

        assert exc_info.value.step == "render_document"
        run = service.get_run("iss_retry")
        assert run.state == IssuanceState.FAILED
        assert run.failed_step == "render_document"
        assert len(service.credential_store.list("user_1")) == 1

        result = service.issue_and_process(dict(JANE), issuance_id="iss_retry")

        assert result.resumed is True
        assert result.vc_id == run.vc_id
        assert len(service.credential_store.list("user_1")) == 1
        assert len(service.did_manager.list_dids()) == 2
        assert service.get_run("iss_retry").state == IssuanceState.COMPLETED

    def test_render_document(self):
        result = self.service.issue_and_process(dict(JANE), target_user_id="user_1")

        assert self.service.render_document("user_1", result.vc_id).startswith(b"%PDF")

    def test_unknown_run(self):
        with pytest.raises(NotFoundError):
            self.service.get_run("iss_nope")

    def test_key_generation_failure_stops_pipeline(self, monkeypatch):
        def no_entropy():
            raise KeyGenerationError("no entropy")

        monkeypatch.setattr(self.service.key_manager, "generate_ed25519", no_entropy)

        with pytest.raises(IssuanceError) as exc_info:
            self.service.issue_and_process(dict(JANE), target_user_id="user_1", issuance_id="iss_keys")

        assert exc_info.value.step == "create_issuer_identity"
        assert exc_info.value.code == "key_generation_failed"
        assert self.service.credential_store.list("user_1") == []
        assert self.service.get_run("iss_keys").state == IssuanceState.FAILED

    def test_concurrent_retry_is_rejected(self):
        entered = threading.Event()
        release = threading.Event()
        issue = self.service.credential_issuer.issue

        def slow_issue(*args, **kwargs):
            entered.set()
            release.wait(5)
            return issue(*args, **kwargs)

        self.service.credential_issuer.issue = slow_issue
        results = []
        worker = threading.Thread(
            target=lambda: results.append(
                self.service.issue_and_process(dict(JANE), target_user_id="user_1", issuance_id="iss_same")
            )
        )
        worker.start()
        assert entered.wait(5)

        try:
            with pytest.raises(IssuanceInProgressError):
                self.service.issue_and_process(dict(JANE), issuance_id="iss_same")
        finally:
            release.set()
            worker.join(5)

        assert len(results) == 1
        assert len(self.service.credential_store.list("user_1")) == 1
        assert self.service.get_run("iss_same").in_progress is False

        # Once the first request is done the same id may be retried
        again = self.service.issue_and_process(dict(JANE), issuance_id="iss_same")
        assert again.resumed is True
        assert again.vc_id == results[0].vc_id

    def test_tracked_runs_are_bounded(self):
        service = IssuanceService(token_service=AccessTokenService(secret=SECRET), max_runs=3)

        for i in range(5):
            service.issue_and_process(dict(JANE), issuance_id=f"iss_{i}")

        assert service.get_statistics()["runs"] == 3
        assert service.get_run("iss_4").state == IssuanceState.COMPLETED
        with pytest.raises(NotFoundError):
            service.get_run("iss_0")

    def test_failed_runs_outlive_completed_ones(self):
        service = IssuanceService(
            token_service=AccessTokenService(secret=SECRET),
            renderer=FailingRenderer(failures=1),
            max_runs=2
        )

        with pytest.raises(IssuanceError):
            service.issue_and_process(dict(JANE), issuance_id="iss_failed")
        service.issue_and_process(dict(JANE), issuance_id="iss_a")
        service.issue_and_process(dict(JANE), issuance_id="iss_b")

        assert service.get_run("iss_failed").state == IssuanceState.FAILED
        assert service.get_run("iss_b").state == IssuanceState.COMPLETED
        with pytest.raises(NotFoundError):
            service.get_run("iss_a")

    def test_probe(self):
        report = self.service.probe()

        assert report["didCreated"].startswith("did:key:")
        assert report["didResolved"] is True
        assert report["supportedKeyTypes"] == ["Ed25519VerificationKey2020"]


class TestJsonFormatter:
    """Test structured log output"""

    def test_context_fields_included(self):
        record = logging.LogRecord("tourist_vc", logging.INFO, __file__, 1, "Saved %s", ("vc_1",), None)
        record.run_id = "iss_1"
        record.vc_id = "vc_1"

        line = json.loads(JsonFormatter().format(record))

        assert line["msg"] == "Saved vc_1"
        assert line["level"] == "INFO"
        assert line["run_id"] == "iss_1"
        assert line["vc_id"] == "vc_1"
        assert "step" not in line
