"""
Verification QR codes

Encodes a verification URL (carrying a fresh access token) as a PNG QR
code: error correction M, black on white, fixed square size.
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import qrcode
from qrcode.exceptions import DataOverflowError
from PIL import Image

from .access_token import AccessTokenService
from .config import settings
from .exceptions import RenderError

logger = logging.getLogger(__name__)

# Tokens embedded in QR codes always live one hour
QR_TOKEN_TTL = 3600


@dataclass
class VerificationArtifact:
    """A scannable verification image and the URL it encodes"""
    image_data: bytes
    plaintext_url: str
    kind: str
    token: str = ""

    @property
    def data_url(self) -> str:
        return "data:image/png;base64," + base64.b64encode(self.image_data).decode("ascii")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dataURL": self.data_url,
            "data": self.plaintext_url,
            "type": self.kind
        }


def build_verify_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/verify?token={token}"


class QRArtifactGenerator:
    """Turns verification URLs into QR code PNGs"""

    def __init__(self, token_service: AccessTokenService, size_px: Optional[int] = None):
        self.token_service = token_service
        self.size_px = size_px or settings.QR_SIZE_PX

    def encode(self, url: str) -> bytes:
        """
        Encode a URL as a PNG QR code

        Same URL in, same bytes out.

        Raises:
            RenderError: if the URL is too long for any QR version
        """
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=1,
        )
        qr.add_data(url)
        try:
            qr.make(fit=True)
        except DataOverflowError as e:
            raise RenderError(f"Verification URL too long for a QR code ({len(url)} chars)") from e

        img = qr.make_image(fill_color="black", back_color="white").get_image()
        img = img.convert("RGB").resize((self.size_px, self.size_px), Image.NEAREST)

        buf = io.BytesIO()
        img.save(buf, format="PNG")
        return buf.getvalue()

    def generate(
        self,
        vc_id: str,
        user_id: str,
        base_url: Optional[str] = None,
        kind: Optional[str] = None
    ) -> VerificationArtifact:
        """
        Mint a one-hour token for (user_id, vc_id) and encode its verify URL

        Args:
            vc_id: Stored record id
            user_id: Record owner
            base_url: Application base URL, defaults to DEFAULT_BASE_URL
            kind: Artifact kind tag, defaults to DEFAULT_QR_TYPE

        Returns:
            VerificationArtifact
        """
        token = self.token_service.mint(user_id, vc_id, ttl_seconds=QR_TOKEN_TTL)
        url = build_verify_url(base_url or settings.DEFAULT_BASE_URL, token)

        artifact = VerificationArtifact(
            image_data=self.encode(url),
            plaintext_url=url,
            kind=kind or settings.DEFAULT_QR_TYPE,
            token=token
        )
        logger.debug("Generated %s QR code for %s", artifact.kind, vc_id)
        return artifact
