"""Project lifecycle and monetization core for Project Desk."""

from .access import CallerIdentity, ensure_access
from .billing import BillingOrchestrator, PaymentLedger, PaymentOutcome
from .config import GatewayConfig, MailConfig, load_gateway_config, load_mail_config
from .errors import (
    ConflictError,
    Forbidden,
    GatewayError,
    MissingProjectReference,
    NotFound,
    NotOwner,
    PaymentReconciliationError,
    PersistenceError,
    ProjectAlreadyLocked,
    ProjectDeskError,
    ProjectNotFound,
    ProjectNotLocked,
    RequestAlreadyPending,
    RequestAlreadyResolved,
    RequestNotFound,
    Unauthorized,
    UnresolvedPayer,
    ValidationFailure,
)
from .locking import LockManager
from .notifications import PaymentReceipt, ReceiptNotifier
from .paystack import CHARGE_SUCCESS_EVENT, SIGNATURE_HEADER, CheckoutSession, PaystackClient, verify_signature
from .progress import ProgressTracker, apply_milestone, calculate_progress_percentage
from .projects import ProjectService
from .store import OwnerRef, ProjectStore, StoreSession
from .topic_switch import TopicSwitchWorkflow

__all__ = [
    "BillingOrchestrator",
    "CHARGE_SUCCESS_EVENT",
    "CallerIdentity",
    "CheckoutSession",
    "ConflictError",
    "Forbidden",
    "GatewayConfig",
    "GatewayError",
    "LockManager",
    "MailConfig",
    "MissingProjectReference",
    "NotFound",
    "NotOwner",
    "OwnerRef",
    "PaymentLedger",
    "PaymentOutcome",
    "PaymentReceipt",
    "PaymentReconciliationError",
    "PaystackClient",
    "PersistenceError",
    "ProgressTracker",
    "ProjectAlreadyLocked",
    "ProjectDeskError",
    "ProjectNotFound",
    "ProjectNotLocked",
    "ProjectService",
    "ProjectStore",
    "ReceiptNotifier",
    "RequestAlreadyPending",
    "RequestAlreadyResolved",
    "RequestNotFound",
    "SIGNATURE_HEADER",
    "StoreSession",
    "TopicSwitchWorkflow",
    "Unauthorized",
    "UnresolvedPayer",
    "ValidationFailure",
    "apply_milestone",
    "calculate_progress_percentage",
    "ensure_access",
    "load_gateway_config",
    "load_mail_config",
    "verify_signature",
]
