"""Signature provider adapters.

A provider turns a rendered document into a signed artifact out of band:
`initiate` opens a transaction and hands back a continuation reference (where
the signer has to go), `resolve` reports how the transaction ended. Callers
must not assume `resolve` is ready right after `initiate`.
"""

import base64
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from typing import Optional
from urllib.parse import urlencode

import httpx
from minio.error import S3Error
from pypdf import PdfReader, PdfWriter
from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from sqlmodel import Session, select

from .config import (
    SIGNATURE_API_KEY,
    SIGNATURE_API_URL,
    SIGNATURE_PROVIDER,
    SIGNATURE_TIMEOUT,
    SIGNED_BUCKET,
    TEMP_SIGNATURES_BUCKET,
    WEB_BASE_URL,
)
from .errors import ProviderError
from .models import SignatureTransaction
from .storage import delete_object, get_bytes, public_url, put_bytes
from .utils import sha256_bytes, utcnow

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"
PENDING = "pending"
CANCELLED = "cancelled"


@dataclass
class Initiation:
    transaction_id: str
    continuation_ref: str


@dataclass
class Resolution:
    outcome: str
    artifact_ref: Optional[str] = None
    reason: Optional[str] = None


class SignatureProvider(ABC):
    name = "abstract"

    @abstractmethod
    def initiate(self, document_bytes: bytes, file_name: str, idempotency_key: str, metadata: Optional[dict] = None) -> Initiation:
        ...

    @abstractmethod
    def resolve(self, transaction_id: str) -> Resolution:
        ...

    def cancel(self, transaction_id: str) -> None:
        pass


def stamp_signature(original_pdf: bytes, signer_name: str, transaction_id: str, signed_at: str) -> bytes:
    """Append a signature certificate page to the document."""
    reader = PdfReader(BytesIO(original_pdf))
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)

    width, height = A4
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setFillColor(HexColor("#f0f8ff"))
    c.rect(0, 0, width, height, stroke=0, fill=1)
    c.setStrokeColor(HexColor("#3b82f6"))
    c.setLineWidth(4)
    c.rect(28, 28, width - 56, height - 56, stroke=1, fill=0)

    c.setFillColor(HexColor("#3b82f6"))
    c.circle(width / 2, height - 140, 56, stroke=0, fill=1)
    c.setFillColor(white)
    c.setFont("Helvetica-Bold", 28)
    c.drawCentredString(width / 2, height - 150, "OK")

    c.setFillColor(HexColor("#1f2937"))
    c.setFont("Helvetica-Bold", 22)
    c.drawCentredString(width / 2, height - 240, "DOCUMENTO FIRMADO DIGITALMENTE")
    c.setStrokeColor(HexColor("#3b82f6"))
    c.setLineWidth(1)
    c.line(85, height - 268, width - 85, height - 268)

    c.setFillColor(HexColor("#4b5563"))
    c.setFont("Helvetica", 14)
    c.drawCentredString(width / 2, height - 325, "CERTIFICADO DE FIRMA DIGITAL")
    c.setFont("Helvetica", 12)
    y = height - 380
    for line in (
        f"Firmante: {signer_name}",
        f"Fecha y Hora: {signed_at}",
        f"ID de Transacción: {transaction_id}",
        "Método: Cédula de Identidad Digital (MOCK)",
    ):
        c.drawString(85, y, line)
        y -= 28

    c.setFillColor(HexColor("#22c55e"))
    c.roundRect(85, y - 70, width - 170, 80, 8, stroke=0, fill=1)
    c.setFillColor(white)
    c.setFont("Helvetica-Bold", 14)
    c.drawCentredString(width / 2, y - 25, "FIRMA VÁLIDA")
    c.setFont("Helvetica", 10)
    c.drawCentredString(width / 2, y - 45, "Este documento ha sido firmado digitalmente")

    c.setFillColor(HexColor("#6b7280"))
    c.setFont("Helvetica-Bold", 9)
    y -= 110
    c.drawString(85, y, "INFORMACIÓN TÉCNICA DE LA FIRMA")
    c.setFont("Helvetica", 8)
    for info in (
        "Algoritmo: SHA-256 with RSA",
        "Formato: PAdES (PDF Advanced Electronic Signatures)",
        "Nivel: B-B (Basic Building Blocks)",
        "Emisor: Sistema CERTIA - Gestión de Certificados",
        f"Hash del documento: {sha256_bytes(original_pdf).upper()}",
    ):
        y -= 18
        c.drawString(95, y, f"- {info}")

    c.setFillColor(HexColor("#fff3cd"))
    c.roundRect(85, 50, width - 170, 30, 6, stroke=0, fill=1)
    c.setFillColor(HexColor("#b45309"))
    c.setFont("Helvetica-Bold", 8)
    c.drawCentredString(width / 2, 62, "FIRMA SIMULADA - SOLO PARA DESARROLLO")
    c.showPage()
    c.save()
    buf.seek(0)
    writer.append_pages_from_reader(PdfReader(buf))

    out = BytesIO()
    writer.write(out)
    return out.getvalue()


class MockSignatureProvider(SignatureProvider):
    """Development stand-in for the national e-signature service."""

    name = "mock"

    def __init__(self, session: Session):
        self.session = session

    def _by_key(self, idempotency_key: str) -> Optional[SignatureTransaction]:
        return self.session.exec(
            select(SignatureTransaction).where(SignatureTransaction.idempotency_key == idempotency_key)
        ).first()

    def _continuation(self, tx: SignatureTransaction) -> str:
        query = urlencode(
            {
                "transactionId": tx.id,
                "submissionId": tx.submission_id or "",
                "fileName": tx.document_key,
                "documentName": tx.file_name,
            }
        )
        return f"{WEB_BASE_URL}/mock-firma?{query}"

    def initiate(self, document_bytes, file_name, idempotency_key, metadata=None):
        existing = self._by_key(idempotency_key)
        if existing:
            logger.info("initiate replay for %s -> %s", idempotency_key, existing.id)
            return Initiation(existing.id, self._continuation(existing))
        metadata = metadata or {}
        tx_id = f"MOCK_{int(time.time() * 1000)}_{secrets.token_hex(5)}"
        document_key = f"temp_{tx_id}.pdf"
        put_bytes(TEMP_SIGNATURES_BUCKET, document_key, document_bytes, content_type="application/pdf")
        tx = SignatureTransaction(
            id=tx_id,
            idempotency_key=idempotency_key,
            submission_id=metadata.get("submission_id"),
            document_key=document_key,
            file_name=file_name,
            signer_name=metadata.get("signer_name"),
        )
        self.session.add(tx)
        self.session.commit()
        self.session.refresh(tx)
        return Initiation(tx.id, self._continuation(tx))

    def resolve(self, transaction_id):
        tx = self.session.get(SignatureTransaction, transaction_id)
        if not tx:
            return Resolution(FAILURE, reason=f"unknown transaction {transaction_id}")
        if tx.status == "completed":
            return Resolution(SUCCESS, artifact_ref=tx.artifact_url)
        if tx.status == "failed":
            return Resolution(FAILURE, reason="signature failed")
        if tx.status == "cancelled":
            return Resolution(CANCELLED)
        try:
            original = get_bytes(TEMP_SIGNATURES_BUCKET, tx.document_key)
            signed_at = tx.created_at.strftime("%d/%m/%Y %H:%M:%S UTC")
            signed = stamp_signature(original, tx.signer_name or "Firmante", tx.id, signed_at)
            signed_key = f"signed_{tx.submission_id or tx.id}_{tx.id}.pdf"
            put_bytes(SIGNED_BUCKET, signed_key, signed, content_type="application/pdf")
        except (S3Error, ValueError, OSError) as exc:
            logger.error("mock signature %s failed: %s", tx.id, exc)
            tx.status = "failed"
            tx.completed_at = utcnow()
            self.session.add(tx)
            self.session.commit()
            return Resolution(FAILURE, reason=str(exc))
        tx.status = "completed"
        tx.artifact_url = public_url(SIGNED_BUCKET, signed_key)
        tx.completed_at = utcnow()
        self.session.add(tx)
        self.session.commit()
        try:
            delete_object(TEMP_SIGNATURES_BUCKET, tx.document_key)
        except S3Error as exc:
            logger.warning("could not remove temp document %s: %s", tx.document_key, exc)
        return Resolution(SUCCESS, artifact_ref=tx.artifact_url)

    def cancel(self, transaction_id):
        tx = self.session.get(SignatureTransaction, transaction_id)
        if not tx or tx.status != "pending":
            return
        tx.status = "cancelled"
        tx.completed_at = utcnow()
        self.session.add(tx)
        self.session.commit()
        try:
            delete_object(TEMP_SIGNATURES_BUCKET, tx.document_key)
        except S3Error as exc:
            logger.warning("could not remove temp document %s: %s", tx.document_key, exc)


class HttpSignatureProvider(SignatureProvider):
    """REST signing service; every call is bounded by SIGNATURE_TIMEOUT."""

    name = "http"

    _STATUS_MAP = {"completed": SUCCESS, "signed": SUCCESS, "failed": FAILURE, "error": FAILURE, "cancelled": CANCELLED}

    def __init__(self, base_url: str = SIGNATURE_API_URL, api_key: str = SIGNATURE_API_KEY, timeout: float = SIGNATURE_TIMEOUT, client: Optional[httpx.Client] = None):
        if not base_url and client is None:
            raise ProviderError("SIGNATURE_API_URL is not configured")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)

    def initiate(self, document_bytes, file_name, idempotency_key, metadata=None):
        payload = {
            "file_name": file_name,
            "document": base64.b64encode(document_bytes).decode(),
            "metadata": metadata or {},
        }
        try:
            resp = self.client.post("/transactions", json=payload, headers={"Idempotency-Key": idempotency_key})
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"signature initiate failed, outcome unknown: {exc}") from exc
        try:
            return Initiation(body["transaction_id"], body.get("redirect_url") or body.get("continuation_ref") or "")
        except KeyError as exc:
            raise ProviderError(f"signature provider response missing {exc}") from exc

    def resolve(self, transaction_id):
        try:
            resp = self.client.get(f"/transactions/{transaction_id}")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"signature resolve failed: {exc}") from exc
        outcome = self._STATUS_MAP.get(str(body.get("status", "")).lower(), PENDING)
        return Resolution(outcome, artifact_ref=body.get("signed_document_url"), reason=body.get("reason"))

    def cancel(self, transaction_id):
        try:
            self.client.post(f"/transactions/{transaction_id}/cancel").raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("signature cancel for %s failed: %s", transaction_id, exc)


def get_signature_provider(session: Session) -> SignatureProvider:
    if SIGNATURE_PROVIDER == "http":
        return HttpSignatureProvider()
    return MockSignatureProvider(session)
