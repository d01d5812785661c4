from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Actor:
    email: str | None
    role: str
    supplier_id: int | None = None

    @property
    def is_supplier(self) -> bool:
        return self.role == "supplier"

    @property
    def is_manager(self) -> bool:
        return self.role in {"admin", "manager"}


@dataclass(frozen=True)
class QuoteItemInput:
    description: str
    quantity: float
    unit: str = "UN"
    category_id: int | None = None


@dataclass(frozen=True)
class QuoteCreateInput:
    title: str
    description: str | None
    deadline: str | None
    budget: float | None
    items: List[QuoteItemInput]


@dataclass(frozen=True)
class ProposalInput:
    quote_id: int
    supplier_id: int
    total_amount: float
    delivery_time_days: int
    payment_terms: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ApprovalLevelInput:
    name: str
    amount_threshold: float
    order_level: int
    approvers: List[str]
    active: bool = True


@dataclass(frozen=True)
class SupplierInput:
    name: str
    cnpj: str
    email: str | None = None
    trade_name: str | None = None
    phone: str | None = None
    city: str | None = None
    state: str | None = None
    specialties: List[str] = field(default_factory=list)
    notes: str | None = None


@dataclass(frozen=True)
class DocumentUploadInput:
    supplier_id: int
    document_type: str
    filename: str
    content: bytes
    mime_type: str | None = None
    expiry_date: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvitationLetterInput:
    title: str
    deadline: str
    supplier_ids: List[int]
    quote_id: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class CampaignInput:
    name: str
    subject: str
    html_content: str
    text_content: str | None = None
    target_segment: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthLoginInput:
    email: str
    password: str


@dataclass(frozen=True)
class AuthUser:
    email: str
    display_name: str
    tenant_id: str
    role: str = "collaborator"
    supplier_id: int | None = None
