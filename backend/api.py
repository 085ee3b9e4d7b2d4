import logging
from contextlib import asynccontextmanager
from typing import Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict
import uvicorn

from tourist_vc.config import settings
from tourist_vc.credential_issuer import REQUIRED_CLAIMS
from tourist_vc.exceptions import IssuanceError, NotFoundError, TouristVCError
from tourist_vc.issuance_service import IssuanceService
from tourist_vc.key_manager import utc_now_iso
from tourist_vc.logging_config import configure_logging

logger = logging.getLogger(__name__)

issuance_service: Optional[IssuanceService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global issuance_service
    configure_logging()
    logger.info("Starting Tourist Credential API...")

    issuance_service = IssuanceService()
    logger.info(
        "Issuance service initialized (key store: %s)",
        settings.KEY_STORE_PATH or "in-memory"
    )

    yield
    logger.info("Shutting down...")

app = FastAPI(title="Tourist Credential API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service() -> IssuanceService:
    if issuance_service is None:
        raise HTTPException(status_code=503, detail="Issuance service not initialized")
    return issuance_service


@app.exception_handler(TouristVCError)
async def handle_credential_error(request: Request, exc: TouristVCError):
    """Map pipeline errors to a JSON body with a stable code; no tracebacks leave the server"""
    log_extra = {"route": request.url.path}
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc, exc_info=exc, extra=log_extra)
    else:
        logger.info("Request rejected (%s): %s", exc.code, exc, extra=log_extra)

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, **exc.to_dict()}
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error("Unhandled error: %s", exc, exc_info=exc, extra={"route": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": TouristVCError.code}
    )


# ============================================================
# REQUEST MODELS
# ============================================================

class IssueOptions(BaseModel):
    qrType: Optional[str] = None
    baseUrl: Optional[str] = None
    selfVerify: bool = True


class IssueRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    fullName: Optional[str] = None
    nationality: Optional[str] = None
    emergencyContact: Optional[str] = None
    userId: Optional[str] = None
    issuanceId: Optional[str] = None
    options: Optional[IssueOptions] = None

    def claims(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"userId", "issuanceId", "options"}, exclude_none=True)


class VerifyRequest(BaseModel):
    vcId: Optional[str] = None
    userId: Optional[str] = None
    credential: Optional[Dict[str, Any]] = None


# ============================================================
# ISSUANCE ENDPOINTS
# ============================================================

@app.post("/api/issue-vc")
async def issue_vc(body: IssueRequest):
    """
    Issue a tourist Verifiable Credential

    Creates issuer and tourist DIDs, signs the credential, stores it and
    returns the QR code plus a PDF download link.
    """
    service = get_service()
    options = body.options or IssueOptions()

    try:
        result = service.issue_and_process(
            body.claims(),
            target_user_id=body.userId,
            options=options.model_dump(exclude_none=True),
            issuance_id=body.issuanceId
        )
    except IssuanceError as e:
        logger.error("Error issuing Verifiable Credential: %s", e, extra={"step": e.step})
        return JSONResponse(
            status_code=e.status_code,
            content={
                "success": False,
                "error": "Failed to issue Verifiable Credential",
                "code": e.code,
                "step": e.step,
                "issuanceId": body.issuanceId,
                "message": str(e.cause),
                "timestamp": utc_now_iso()
            }
        )

    return {
        "success": True,
        "message": "Verifiable Credential issued and processed successfully",
        "userId": result.user_id,
        "vcId": result.vc_id,
        "issuanceId": result.issuance_id,
        "resumed": result.resumed,
        "credential": result.credential,
        "issuerDid": result.issuer_did,
        "touristDid": result.subject_did,
        "storage": {
            "saved": True,
            "vcId": result.vc_id
        },
        "qrCode": result.artifact.to_dict(),
        "pdf": {
            # The PDF itself is served by the download endpoint
            "size": len(result.pdf_bytes),
            "mimeType": "application/pdf",
            "downloadUrl": f"/api/vc/{result.user_id}/{result.vc_id}/pdf"
        },
        "accessToken": result.access_token,
        "verification": {
            "verified": result.verification.get("verified"),
            "issuer": result.verification.get("issuer"),
            "verifyUrl": result.verify_url
        },
        "metadata": result.metadata,
        "issuedAt": utc_now_iso()
    }


@app.get("/api/issue-vc")
async def issuer_status():
    """Capability probe: create and resolve a throwaway DID"""
    service = get_service()

    try:
        test_results = service.probe()
    except Exception as e:
        logger.error("Capability probe failed: %s", e, exc_info=e)
        return JSONResponse(
            status_code=500,
            content={
                "status": "Error",
                "error": str(e),
                "capabilities": {
                    "didGeneration": False,
                    "didResolution": False,
                    "credentialIssuance": False,
                    "credentialVerification": False
                },
                "timestamp": utc_now_iso()
            }
        )

    return {
        "status": "Tourist VC Issuer API is running",
        "capabilities": {
            "didGeneration": True,
            "didResolution": test_results["didResolved"],
            "credentialIssuance": True,
            "credentialVerification": True
        },
        "testResults": test_results,
        "statistics": service.get_statistics(),
        "requiredFields": list(REQUIRED_CLAIMS),
        "timestamp": utc_now_iso()
    }


@app.get("/api/issuance/{issuance_id}")
async def issuance_status(issuance_id: str):
    """Progress of an issuance run, for retries after a failure"""
    return get_service().get_run(issuance_id).to_dict()


# ============================================================
# VERIFICATION ENDPOINTS
# ============================================================

@app.get("/api/vc/verify")
async def verify_by_token(token: Optional[str] = None):
    """
    Verify a credential via the signed token from its QR code

    Invalid and expired tokens both answer 401 without any record data.
    """
    if not token:
        return JSONResponse(status_code=400, content={"success": False, "error": "Missing verification token"})

    data = get_service().verify_by_token(token)

    return {
        "success": True,
        "verified": True,
        "vcId": data["vcId"],
        "userId": data["userId"],
        "credential": data["credential"],
        "metadata": data["metadata"],
        "verifiedAt": utc_now_iso()
    }


@app.post("/api/vc/verify")
async def verify_by_record(body: VerifyRequest):
    """
    Verify a credential by record id, optionally against a submitted copy

    A mismatch is a normal answer (verified: false), not an HTTP error.
    """
    if not body.vcId or not body.userId:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Missing required fields: vcId, userId"}
        )

    try:
        result = get_service().verify_by_record(body.userId, body.vcId, body.credential)
    except NotFoundError:
        return JSONResponse(
            status_code=404,
            content={"success": False, "verified": False, "error": "Credential not found in database"}
        )

    return {
        "success": True,
        "vcId": body.vcId,
        "userId": body.userId,
        **result,
        "verifiedAt": utc_now_iso()
    }


# ============================================================
# DOCUMENT ENDPOINTS
# ============================================================

@app.get("/api/vc/{user_id}/{vc_id}/pdf")
async def download_pdf(user_id: str, vc_id: str, qrType: Optional[str] = None, baseUrl: Optional[str] = None):
    """Download a stored credential as PDF with a freshly minted QR code"""
    pdf_bytes = get_service().render_document(user_id, vc_id, base_url=baseUrl, kind=qrType)

    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="vc_{vc_id}.pdf"'}
    )


@app.get("/api/vc/{user_id}")
async def list_credentials(user_id: str):
    """Stored credentials of a user, newest first"""
    records = get_service().list_credentials(user_id)
    return {
        "userId": user_id,
        "count": len(records),
        "credentials": records
    }


if __name__ == "__main__":
    uvicorn.run("backend.api:app", host="0.0.0.0", port=8000)
