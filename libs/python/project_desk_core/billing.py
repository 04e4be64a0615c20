"""Payment recording and the unlock that follows a successful charge."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import uuid4

from project_desk_observability import log_context, observe_payment_event, observe_receipt
from project_desk_schemas import (
    Payment,
    PaymentEvent,
    PaymentStatus,
    Project,
    ProjectStatus,
    get_tier_by_price,
    utcnow,
)

from .errors import (
    MissingProjectReference,
    PaymentReconciliationError,
    PersistenceError,
    ProjectAlreadyLocked,
    ProjectNotFound,
    UnresolvedPayer,
)
from .locking import LockManager
from .notifications import PaymentReceipt
from .store import ProjectStore, StoreSession

logger = logging.getLogger(__name__)

ReceiptScheduler = Callable[[PaymentReceipt], None]


class PaymentLedger:
    """One payment row per gateway reference."""

    def find(self, session: StoreSession, reference: str) -> Optional[Payment]:
        return session.get_payment_by_reference(reference)

    def record(self, session: StoreSession, payment: Payment) -> tuple[Payment, bool]:
        """Insert ``payment``; on a reference collision return the stored row instead.

        The boolean is ``True`` only for the caller whose insert created the row.
        """

        inserted = session.insert_payment(payment)
        if inserted is not None:
            return inserted, True
        winner = session.get_payment_by_reference(payment.reference)
        if winner is None:
            raise PersistenceError("Payment reference conflicted but no row was found", reference=payment.reference)
        return winner, False

    def history(self, session: StoreSession, user_id: str) -> list[Payment]:
        return session.list_payments(user_id)


@dataclass
class PaymentOutcome:
    payment: Payment
    created: bool
    project: Optional[Project] = None
    lock_conflict: Optional[str] = None
    receipt: Optional[PaymentReceipt] = None


class BillingOrchestrator:
    """Turns a verified gateway charge into a payment, an unlock and a lock."""

    def __init__(
        self,
        store: ProjectStore,
        lock_manager: Optional[LockManager] = None,
        ledger: Optional[PaymentLedger] = None,
    ) -> None:
        self._store = store
        self._locks = lock_manager or LockManager()
        self._ledger = ledger or PaymentLedger()

    def record_payment(self, event: PaymentEvent, schedule_receipt: Optional[ReceiptScheduler] = None) -> PaymentOutcome:
        project_id = event.project_id
        with log_context(reference=event.reference, project_id=project_id):
            try:
                outcome = self._record(event, project_id)
            except PaymentReconciliationError:
                observe_payment_event("unreconciled")
                raise
            except ProjectNotFound:
                observe_payment_event("unreconciled")
                raise
            except PersistenceError:
                observe_payment_event("failed")
                raise

            if not outcome.created:
                observe_payment_event("duplicate")
                logger.info("Payment already processed")
                return outcome

            observe_payment_event("recorded")
            logger.info(
                "Payment recorded and project unlocked",
                extra={"user_id": outcome.payment.user_id},
            )
            if schedule_receipt is not None:
                self._schedule_receipt(outcome, schedule_receipt)
            return outcome

    def _record(self, event: PaymentEvent, project_id: Optional[str]) -> PaymentOutcome:
        if not project_id:
            raise MissingProjectReference(event.reference)

        with self._store.transaction() as session:
            existing = self._ledger.find(session, event.reference)
            if existing is not None:
                return PaymentOutcome(payment=existing, created=False)

            project = session.get_project(project_id, for_update=True)
            if project is None:
                raise ProjectNotFound(project_id)

            user_id = self._resolve_payer(session, event, project)
            payment, created = self._ledger.record(
                session,
                Payment(
                    id=str(uuid4()),
                    reference=event.reference,
                    amount=event.amount_major,
                    currency=event.currency,
                    status=PaymentStatus.SUCCESS,
                    gateway_response=event.model_dump(mode="json", by_alias=True),
                    user_id=user_id,
                    project_id=project_id,
                ),
            )
            if not created:
                return PaymentOutcome(payment=payment, created=False)

            tier = get_tier_by_price(payment.amount)
            update = {"is_unlocked": True, "status": ProjectStatus.RESEARCH_IN_PROGRESS}
            if tier is not None:
                update["mode"] = tier.mode
            else:
                logger.warning("Paid amount matches no plan tier", extra={"project_id": project_id})
            project = session.save_project(project.model_copy(update=update))

            lock_conflict = None
            try:
                project = self._locks.lock(session, project_id)
            except ProjectAlreadyLocked as exc:
                # Payment and unlock stand; the owner resolves the other lock through support.
                lock_conflict = exc.locked_project_id
                logger.error(
                    "Paid project could not be locked; owner already holds a locked project",
                    extra={"project_id": project_id, "user_id": user_id},
                )

            return PaymentOutcome(
                payment=payment,
                created=True,
                project=project,
                lock_conflict=lock_conflict,
                receipt=self._build_receipt(session, payment, project),
            )

    def _resolve_payer(self, session: StoreSession, event: PaymentEvent, project: Project) -> str:
        if project.user_id:
            return project.user_id
        email = event.customer.email
        user_id = session.find_user_id_by_email(email) if email else None
        if not user_id:
            raise UnresolvedPayer(event.reference, project.id, email)
        return user_id

    def _build_receipt(self, session: StoreSession, payment: Payment, project: Project) -> Optional[PaymentReceipt]:
        user = session.get_user(payment.user_id)
        if not user or not user.get("email"):
            logger.warning("Paying user has no email; receipt skipped", extra={"user_id": payment.user_id})
            return None
        return PaymentReceipt(
            email=user["email"],
            name=user.get("name"),
            amount=payment.amount,
            currency=payment.currency,
            reference=payment.reference,
            project_id=project.id,
            project_topic=project.topic,
            paid_at=payment.created_at or utcnow(),
        )

    def _schedule_receipt(self, outcome: PaymentOutcome, schedule_receipt: ReceiptScheduler) -> None:
        if outcome.receipt is None:
            return
        try:
            schedule_receipt(outcome.receipt)
        except Exception:
            logger.exception("Receipt scheduling failed")
            observe_receipt("failed")

    def payment_history(self, user_id: str) -> list[Payment]:
        with self._store.transaction() as session:
            return self._ledger.history(session, user_id)
