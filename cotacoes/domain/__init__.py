from cotacoes.domain.contracts import (
    Actor,
    ApprovalLevelInput,
    AuthLoginInput,
    AuthUser,
    CampaignInput,
    DocumentUploadInput,
    InvitationLetterInput,
    ProposalInput,
    QuoteCreateInput,
    QuoteItemInput,
    ServiceOutput,
    SupplierInput,
)

__all__ = [
    "Actor",
    "ApprovalLevelInput",
    "AuthLoginInput",
    "AuthUser",
    "CampaignInput",
    "DocumentUploadInput",
    "InvitationLetterInput",
    "ProposalInput",
    "QuoteCreateInput",
    "QuoteItemInput",
    "ServiceOutput",
    "SupplierInput",
]
