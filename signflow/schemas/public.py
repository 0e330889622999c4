"""Public signing link schemas (unauthenticated signer view)."""
from pydantic import BaseModel, Field

from signflow.schemas.documents import CaptureRequest, DocumentResponse, FieldResponse, SignerResponse
from signflow.services.entities import Document


class PublicDocumentResponse(BaseModel):
    """What a signer sees through their link: the document, who they are, and their own fields."""
    document: DocumentResponse
    signer: SignerResponse
    my_fields: list[FieldResponse]

    @classmethod
    def from_document(cls, doc: Document, signer_id: str, persisted: bool = True) -> "PublicDocumentResponse":
        full = DocumentResponse.from_document(doc, persisted=persisted)
        signer = next(s for s in full.signers if s.id == signer_id)
        return cls(
            document=full,
            signer=signer,
            my_fields=[f for f in full.fields if f.assigned_to == signer_id],
        )


class PublicSignRequest(BaseModel):
    capture: CaptureRequest


class PublicRejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)
