"""
PDF snapshot of a stored credential

A4 document: credential details, subject claims, verification QR code and
footer. Fits on one page for the usual claim set; extension claims that do
not fit continue on further pages. Pure transform from (record, QR image)
to bytes.
"""

import base64
import binascii
import io
import re
from datetime import datetime, timezone
from typing import Any, Dict, Union

from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from .exceptions import RenderError

PAGE_WIDTH, PAGE_HEIGHT = A4
LEFT_MARGIN = 20 * mm
TOP_MARGIN = 30 * mm
BOTTOM_MARGIN = 20 * mm
TEXT_WIDTH = PAGE_WIDTH - 2 * LEFT_MARGIN
LINE_HEIGHT = 8 * mm
QR_SIZE = 50 * mm

BODY_FONT = "Helvetica"
BODY_SIZE = 10

FOOTER_LINES = (
    "Scan the QR code above to verify this credential.",
    "This document contains a digitally verifiable credential.",
)

# Heading baseline down to the last footer baseline
QR_BLOCK_HEIGHT = 10 * mm + QR_SIZE + 10 * mm + 5 * mm * len(FOOTER_LINES) + 15 * mm + 5 * mm


def humanize_key(key: str) -> str:
    """emergencyContact -> Emergency Contact"""
    spaced = re.sub(r"([A-Z])", r" \1", key).strip()
    return spaced[:1].upper() + spaced[1:]


def _load_image(image: Union[bytes, str]) -> ImageReader:
    if isinstance(image, str):
        if not image.startswith("data:image"):
            raise RenderError("QR image must be PNG bytes or a data URL")
        try:
            image = base64.b64decode(image.split(",", 1)[1], validate=True)
        except (IndexError, binascii.Error) as e:
            raise RenderError(f"Invalid QR data URL: {e}") from e

    try:
        img = Image.open(io.BytesIO(image))
        img.load()
    except (OSError, ValueError) as e:
        raise RenderError(f"QR image could not be decoded: {e}") from e
    return ImageReader(img)


class PDFRenderer:
    """Renders StoredCredentialRecords as PDFs, one page unless the claims overflow"""

    title = "Verifiable Credential"
    footer = "Tourist Identity Credential Service"

    def render(self, record: Dict[str, Any], artifact_image: Union[bytes, str]) -> bytes:
        """
        Render a stored record with its verification QR code

        Long claim values wrap within the margins. Claims that do not fit
        continue on the next page, and the QR block (heading, image,
        instructions, footer) is never split across pages.

        Args:
            record: {id, userId, credential, metadata}
            artifact_image: PNG bytes or a data:image/png;base64 URL

        Returns:
            PDF bytes

        Raises:
            RenderError: if the QR image cannot be decoded or embedded
        """
        qr_image = _load_image(artifact_image)
        metadata = record.get("metadata") or {}

        buf = io.BytesIO()
        pdf = canvas.Canvas(buf, pagesize=A4)
        pdf.setTitle(f"{self.title} {record.get('id', '')}".strip())

        # Title
        pdf.setFont("Helvetica-Bold", 20)
        pdf.drawCentredString(PAGE_WIDTH / 2, PAGE_HEIGHT - 30 * mm, self.title)

        # Credential details
        y = PAGE_HEIGHT - 50 * mm
        y = self._heading(pdf, y, "Credential Details:")
        details = [
            f"Credential ID: {record.get('id') or 'N/A'}",
            f"User ID: {record.get('userId') or 'N/A'}",
            f"Issued At: {metadata.get('createdAt') or 'N/A'}",
            f"Status: {metadata.get('status') or 'active'}",
        ]
        for line in details:
            y = self._paragraph(pdf, y, line)

        # Subject claims, minus the subject DID
        subject = (record.get("credential") or {}).get("credentialSubject") or {}
        if subject:
            y = self._heading(pdf, y - 10 * mm, "Subject Information:")
            for key, value in subject.items():
                if key == "id":
                    continue
                y = self._paragraph(pdf, y, f"{humanize_key(key)}: {value}")

        # QR code
        y -= 20 * mm
        if y - QR_BLOCK_HEIGHT < BOTTOM_MARGIN:
            y = self._new_page(pdf)
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(LEFT_MARGIN, y, "Verification QR Code:")

        y -= 10 * mm + QR_SIZE
        try:
            pdf.drawImage(qr_image, (PAGE_WIDTH - QR_SIZE) / 2, y, width=QR_SIZE, height=QR_SIZE)
        except (OSError, ValueError) as e:
            raise RenderError(f"QR image could not be embedded: {e}") from e

        # Instructions and footer
        y -= 10 * mm
        pdf.setFont("Helvetica", 8)
        for line in FOOTER_LINES:
            pdf.drawCentredString(PAGE_WIDTH / 2, y, line)
            y -= 5 * mm

        y -= 15 * mm
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        pdf.drawCentredString(PAGE_WIDTH / 2, y, f"Generated on: {generated}")
        pdf.drawCentredString(PAGE_WIDTH / 2, y - 5 * mm, self.footer)

        pdf.showPage()
        pdf.save()
        return buf.getvalue()

    def _new_page(self, pdf: canvas.Canvas) -> float:
        pdf.showPage()
        return PAGE_HEIGHT - TOP_MARGIN

    def _heading(self, pdf: canvas.Canvas, y: float, text: str) -> float:
        # Keep a heading together with at least one line below it
        if y - 10 * mm - LINE_HEIGHT < BOTTOM_MARGIN:
            y = self._new_page(pdf)
        pdf.setFont("Helvetica-Bold", 14)
        pdf.drawString(LEFT_MARGIN, y, text)
        return y - 10 * mm

    def _paragraph(self, pdf: canvas.Canvas, y: float, text: str) -> float:
        """Draw text wrapped to the text width; returns the next baseline"""
        for line in simpleSplit(text, BODY_FONT, BODY_SIZE, TEXT_WIDTH):
            if y < BOTTOM_MARGIN:
                y = self._new_page(pdf)
            pdf.setFont(BODY_FONT, BODY_SIZE)
            pdf.drawString(LEFT_MARGIN, y, line)
            y -= LINE_HEIGHT
        return y
