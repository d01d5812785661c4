from .activity_repository import AuditLogRepository, NotificationRepository, StatusEventRepository
from .approval_repository import ApprovalLevelRepository, ApprovalRepository
from .campaign_repository import CampaignRepository, ContactRepository
from .category_repository import CategoryRepository
from .invitation_repository import InvitationLetterRepository, InvitationResponseRepository
from .payment_repository import DeliveryRepository, PaymentRepository
from .proposal_repository import ProposalRepository
from .quote_repository import QuoteRepository, QuoteResponseTokenRepository
from .supplier_repository import SupplierDocumentRepository, SupplierRepository

__all__ = [
    "ApprovalLevelRepository",
    "ApprovalRepository",
    "AuditLogRepository",
    "CampaignRepository",
    "CategoryRepository",
    "ContactRepository",
    "DeliveryRepository",
    "InvitationLetterRepository",
    "InvitationResponseRepository",
    "NotificationRepository",
    "PaymentRepository",
    "ProposalRepository",
    "QuoteRepository",
    "QuoteResponseTokenRepository",
    "StatusEventRepository",
    "SupplierDocumentRepository",
    "SupplierRepository",
]
