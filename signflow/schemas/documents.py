"""Document, field and signature schemas."""
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from signflow.services.capture import Capture, FontStyle
from signflow.services.coordinator import SignerSpec
from signflow.services.entities import (
    CaptureMethod,
    Document,
    DocumentStatus,
    FieldType,
    SignatureKind,
    SignerStatus,
)
from signflow.services.geometry import to_units


class SignerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    order: int = Field(..., ge=1)

    def to_spec(self) -> SignerSpec:
        return SignerSpec(name=self.name, email=str(self.email), order=self.order)


class DocumentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    size: int = Field(0, ge=0)
    # From the rendering collaborator
    page_count: int = Field(..., ge=1)
    page_width: float = Field(..., gt=0)
    page_height: float = Field(..., gt=0)
    signers: list[SignerCreate] = Field(..., min_length=1)
    public_link: str | None = Field(None, max_length=500)


class FieldPlaceRequest(BaseModel):
    page: int = Field(..., ge=1)
    x: float
    y: float
    type: FieldType = FieldType.signature
    assigned_to: str = Field(..., min_length=1)
    required: bool = True
    width: float | None = Field(None, gt=0)
    height: float | None = Field(None, gt=0)


class FieldMoveRequest(BaseModel):
    x: float
    y: float


class CaptureRequest(BaseModel):
    method: CaptureMethod
    text: str | None = Field(None, max_length=255)
    font: FontStyle = FontStyle.cursive
    # data URL, or bare base64 together with mime_type
    image_data: str | None = None
    mime_type: str | None = None

    def to_capture(self) -> Capture:
        return Capture(
            method=self.method,
            text=self.text,
            font=self.font,
            image_data=self.image_data,
            mime_type=self.mime_type,
        )


class SignatureSubmitRequest(BaseModel):
    signer_id: str = Field(..., min_length=1)
    capture: CaptureRequest


class RejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str | None) -> str | None:
        return (v or "").strip() or None


class PublicLinkRequest(BaseModel):
    signer_id: str = Field(..., min_length=1)


class PublicLinkResponse(BaseModel):
    document_id: str
    signer_id: str
    token: str
    url: str


class SignerResponse(BaseModel):
    id: str
    name: str
    email: str
    order: int
    status: SignerStatus
    signed_at: datetime | None = None
    confirmed: bool = False


class RelativePlacement(BaseModel):
    x: float
    y: float
    width: float
    height: float


class FieldResponse(BaseModel):
    id: str
    type: FieldType
    page: int
    # Page units, as reported by the rendering collaborator
    x: float
    y: float
    width: float
    height: float
    relative: RelativePlacement
    required: bool
    assigned_to: str
    signed: bool
    signature_type: CaptureMethod | None = None
    signature_text: str | None = None
    signature_image: str | None = None


class SignatureResponse(BaseModel):
    id: str
    signer_id: str
    document_id: str
    field_id: str
    page: int
    x: float
    y: float
    width: float
    height: float
    type: SignatureKind
    value: str | None = None
    image_data: str | None = None
    created_at: datetime


class AuditEntryResponse(BaseModel):
    id: str
    document_id: str
    document_name: str | None = None
    action: str
    user: str
    timestamp: datetime
    ip_address: str | None = None
    details: str


class DocumentResponse(BaseModel):
    id: str
    name: str
    status: DocumentStatus
    owner: str
    size: int
    page_count: int
    page_width: float
    page_height: float
    created_at: datetime
    updated_at: datetime
    signers: list[SignerResponse]
    fields: list[FieldResponse]
    signatures: list[SignatureResponse]
    audit_trail: list[AuditEntryResponse]
    public_link: str | None = None
    # False when the change is applied but the store write is still being retried
    persisted: bool = True

    @classmethod
    def from_document(cls, doc: Document, persisted: bool = True) -> "DocumentResponse":
        fields = []
        for f in doc.fields:
            p = f.placement
            fields.append(FieldResponse(
                id=f.id,
                type=f.type,
                page=p.page,
                **to_units(doc.page_size, p),
                relative=RelativePlacement(x=p.x, y=p.y, width=p.width, height=p.height),
                required=f.required,
                assigned_to=f.assigned_to,
                signed=f.signed,
                signature_type=f.signature_type,
                signature_text=f.signature_text,
                signature_image=f.signature_image,
            ))
        return cls(
            id=doc.id,
            name=doc.name,
            status=doc.status,
            owner=doc.owner,
            size=doc.size,
            page_count=doc.page_count,
            page_width=doc.page_size.width,
            page_height=doc.page_size.height,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            signers=[
                SignerResponse(
                    id=s.id, name=s.name, email=s.email, order=s.order,
                    status=s.status, signed_at=s.signed_at, confirmed=s.confirmed,
                )
                for s in doc.signers
            ],
            fields=fields,
            signatures=[
                SignatureResponse(
                    id=s.id,
                    signer_id=s.signer_id,
                    document_id=s.document_id,
                    field_id=s.field_id,
                    page=s.placement.page,
                    **to_units(doc.page_size, s.placement),
                    type=s.type,
                    value=s.value,
                    image_data=s.image_data,
                    created_at=s.created_at,
                )
                for s in doc.signatures
            ],
            audit_trail=[
                AuditEntryResponse(
                    id=e.id, document_id=e.document_id, document_name=doc.name, action=e.action.value,
                    user=e.user, timestamp=e.timestamp, ip_address=e.ip_address, details=e.details,
                )
                for e in doc.audit_trail
            ],
            public_link=doc.public_link,
            persisted=persisted,
        )


class DocumentSummary(BaseModel):
    id: str
    name: str
    status: DocumentStatus
    owner: str
    size: int
    created_at: datetime
    updated_at: datetime
    signer_count: int
    signed_count: int

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentSummary":
        return cls(
            id=doc.id,
            name=doc.name,
            status=doc.status,
            owner=doc.owner,
            size=doc.size,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            signer_count=len(doc.signers),
            signed_count=sum(1 for s in doc.signers if s.status == SignerStatus.signed),
        )


class DashboardStats(BaseModel):
    total: int
    by_status: dict[str, int]
    awaiting_me: int
