# FILE: dentlink/services/settlement.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dentlink.core.config import settings
from dentlink.core.errors import (
    DentlinkError,
    Forbidden,
    InsufficientFunds,
    InvalidConfig,
    InvalidState,
    LedgerInconsistency,
    NotFound,
    ValidationError,
)
from dentlink.core.locks import hold_all
from dentlink.core.rbac import Actor, require_admin, require_self_or_admin
from dentlink.core.retry import run_with_conflict_retry
from dentlink.models.case import CaseStatus, DentalCase, PaymentStatus
from dentlink.models.ledger import EntryType, LedgerEntry, PaymentMethod
from dentlink.models.payment_capture import CaptureStatus, PaymentCapture
from dentlink.models.proposal import CHOSEN_STATUSES, Proposal, ProposalStatus
from dentlink.models.user import User, UserRole
from dentlink.services import proposal_engine as engine
from dentlink.services import wallet
from dentlink.services.activity import log_activity
from dentlink.services.commission import compute_settlement
from dentlink.services.error_logger import format_exception, log_error
from dentlink.services.ledger import DoctorSnapshot, append_entry, doctor_snapshot
from dentlink.services.messaging import (
    LoggingMessagingGateway,
    MessagingGateway,
    mark_dispatched,
    undispatched_channels,
)
from dentlink.services.money import ZERO, money
from dentlink.services.payment_gateway import GatewayCapture, check_capture
from dentlink.services.settings_service import commission_config_for_doctor
from dentlink.utils.timezone import now_db

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAYOUT_METHODS = (PaymentMethod.BKASH, PaymentMethod.BANK, PaymentMethod.CASH)


def _method(value) -> PaymentMethod:
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f"Unknown payment method '{value}'")


def _actor_id(actor: Optional[Actor]) -> Optional[int]:
    return actor.user_id if actor else None


class SettlementCoordinator:
    """
    Owns every multi-step money write: selection with payment, captures,
    refunds, payouts, remittances and adjustments.

    Each operation takes the in-process keyed locks (case, patient, doctor),
    opens a fresh session and runs in one transaction. A lost race is retried
    from scratch up to CONFLICT_MAX_RETRIES times.
    """

    def __init__(self,
                 session_factory: sessionmaker,
                 messaging: Optional[MessagingGateway] = None):
        self.session_factory = session_factory
        self.messaging = messaging or LoggingMessagingGateway()

    # ---------------- plumbing ----------------
    def _run(self,
             label: str,
             fn: Callable[[Session], T],
             *,
             case_id: Optional[int] = None,
             patient_id: Optional[int] = None,
             doctor_id: Optional[int] = None,
             attempts: Optional[int] = None) -> T:

        def attempt() -> T:
            with hold_all(case_id=case_id,
                          patient_id=patient_id,
                          doctor_id=doctor_id):
                with self.session_factory() as db:
                    with db.begin():
                        return fn(db)

        try:
            return run_with_conflict_retry(attempt,
                                           attempts=attempts,
                                           label=label)
        except LedgerInconsistency as e:
            self._report_inconsistency(e,
                                       label,
                                       case_id=case_id,
                                       subject_id=doctor_id or patient_id)
            raise

    def _report_inconsistency(self, exc: LedgerInconsistency, label: str, *,
                              case_id: Optional[int],
                              subject_id: Optional[int]) -> None:
        logger.critical("LEDGER INCONSISTENCY in %s (case=%s subject=%s): %s",
                        label, case_id, subject_id, exc)
        log_error(
            self.session_factory,
            description=str(exc),
            error_code=exc.code,
            module=__name__,
            function=label,
            case_id=case_id,
            subject_id=subject_id,
            context=exc.extra,
            stack_trace=format_exception(exc),
        )

    def _participants(self,
                      case_id: int,
                      proposal_id: Optional[int] = None
                      ) -> Tuple[int, Optional[int]]:
        """patient and doctor of a case, read up front to pick the locks."""
        with self.session_factory() as db:
            case = db.get(DentalCase, case_id)
            if not case:
                raise NotFound("Case not found")
            pid = proposal_id or case.chosen_proposal_id
            doctor_id = None
            if pid:
                p = db.get(Proposal, pid)
                if p and p.case_id == case.id:
                    doctor_id = p.doctor_id
            return case.patient_id, doctor_id

    def _lock_doctor(self, db: Session, doctor_id: int) -> User:
        doctor = (db.query(User).filter(
            User.id == doctor_id).with_for_update().first())
        if not doctor or doctor.role != UserRole.DOCTOR:
            raise NotFound("Doctor not found")
        return doctor

    def _payable(self, db: Session,
                 case_id: int) -> Tuple[DentalCase, Proposal]:
        case = engine.get_case(db, case_id, for_update=True)
        if case.payment_status == PaymentStatus.PAID:
            raise InvalidState("Case is already paid.")
        if case.payment_status == PaymentStatus.REFUNDED or case.status == CaseStatus.CANCELLED:
            raise InvalidState("Case has been cancelled.")
        if not case.chosen_proposal_id:
            raise InvalidState("No proposal has been chosen for this case.")
        p = engine.get_proposal(db, case.chosen_proposal_id, for_update=True)
        if p.case_id != case.id or p.status not in CHOSEN_STATUSES:
            raise InvalidState("Chosen proposal is not payable.")
        return case, p

    def _settle(self,
                db: Session,
                case: DentalCase,
                proposal: Proposal,
                method: PaymentMethod,
                actor: Optional[Actor],
                reference_id: Optional[str] = None) -> LedgerEntry:
        """
        Patient payment + commission accrual, same transaction.
        The case only becomes paid together with its ledger rows.
        """
        if case.payment_status != PaymentStatus.UNPAID:
            raise InvalidState("Case is already paid.")

        doctor = db.get(User, proposal.doctor_id)
        cfg = commission_config_for_doctor(db, doctor)
        split = compute_settlement(proposal.cost, cfg)
        created_by = _actor_id(actor)

        if method == PaymentMethod.WALLET:
            payment = wallet.spend(
                db,
                patient_id=case.patient_id,
                amount=split.cost,
                case_id=case.id,
                doctor_id=doctor.id,
                notes=f"Treatment payment for {case.case_number}",
                created_by=created_by,
            )
        else:
            payment = append_entry(
                db,
                subject_id=case.patient_id,
                doctor_id=doctor.id,
                case_id=case.id,
                entry_type=EntryType.TREATMENT_PAYMENT,
                amount=split.cost,
                payment_method=method,
                reference_id=reference_id,
                notes=f"Treatment payment for {case.case_number} via {method.value}",
                created_by=created_by,
            )

        if split.commission_amount > 0:
            append_entry(
                db,
                subject_id=doctor.id,
                doctor_id=doctor.id,
                case_id=case.id,
                entry_type=EntryType.COMMISSION_PAYMENT,
                amount=split.commission_amount,
                payment_method=method,
                reference_id=reference_id,
                notes=f"Platform commission ({cfg.type} {cfg.rate}) on {case.case_number}",
                created_by=created_by,
            )

        case.payment_status = PaymentStatus.PAID
        if proposal.status == ProposalStatus.COMPLETED:
            case.status = CaseStatus.COMPLETED
        db.flush()

        # raises LedgerInconsistency, which rolls everything above back
        doctor_snapshot(db, doctor.id)

        log_activity(db,
                     "PAYMENT_SETTLED",
                     user_id=created_by,
                     details={
                         "case_id": case.id,
                         "proposal_id": proposal.id,
                         "method": method.value,
                         "cost": str(split.cost),
                         "commission": str(split.commission_amount),
                         "net_income": str(split.net_income),
                     })
        return payment

    # ---------------- generic locked commands ----------------
    def case_command(self, case_id: int, label: str,
                     fn: Callable[[Session], T]) -> T:
        """Run an engine command under the per-case lock, retried on conflicts."""
        return self._run(label, fn, case_id=case_id)

    def proposal_command(self, proposal_id: int, label: str,
                         fn: Callable[[Session], T]) -> T:
        with self.session_factory() as db:
            p = db.get(Proposal, proposal_id)
            if not p:
                raise NotFound("Proposal not found")
            case_id = p.case_id
        return self._run(label, fn, case_id=case_id)

    # ---------------- selection & payment ----------------
    def choose_proposal(self,
                        case_id: int,
                        proposal_id: int,
                        actor: Actor,
                        payment=None) -> Tuple[DentalCase, Proposal]:
        """
        Accept a proposal, optionally paying (wallet / cash) in the same
        transaction. Gateway payments arrive later via record_external_capture.
        """
        method = _method(payment) if payment else None
        if method is not None and method not in (PaymentMethod.WALLET,
                                                 PaymentMethod.CASH):
            raise ValidationError(
                "Gateway payments are recorded through a capture.")

        patient_id, doctor_id = self._participants(case_id, proposal_id)

        def fn(db: Session):
            case, p = engine.select_proposal(db, actor, case_id, proposal_id)
            if method is not None:
                self._settle(db, case, p, method, actor)
            return case, p

        result = self._run("choose_proposal",
                           fn,
                           case_id=case_id,
                           patient_id=patient_id,
                           doctor_id=doctor_id)
        try:
            self.dispatch_channel_grants()
        except SQLAlchemyError:
            # the grant row is committed; the retry worker delivers it
            logger.exception("channel grant dispatch deferred for case %s",
                             case_id)
        return result

    def pay_for_case(self, case_id: int, actor: Actor,
                     method="wallet") -> DentalCase:
        m = _method(method)
        if m not in (PaymentMethod.WALLET, PaymentMethod.CASH):
            raise ValidationError(
                "Gateway payments are recorded through a capture.")

        patient_id, doctor_id = self._participants(case_id)

        def fn(db: Session):
            case, p = self._payable(db, case_id)
            if m == PaymentMethod.WALLET:
                require_self_or_admin(actor,
                                      case.patient_id,
                                      message="Only the patient can pay from the wallet.")
            elif not (actor.is_admin or int(actor.user_id) in (case.patient_id, p.doctor_id)):
                raise Forbidden("Only the patient or the treating doctor can record cash.")
            self._settle(db, case, p, m, actor)
            return case

        return self._run("pay_for_case",
                         fn,
                         case_id=case_id,
                         patient_id=patient_id,
                         doctor_id=doctor_id)

    # ---------------- external captures ----------------
    def record_external_capture(self, case_id: int, actor: Actor,
                                capture: GatewayCapture) -> PaymentCapture:
        """
        Store the confirmed capture first, then drive it into the ledger.
        A replayed reference_id returns the stored capture.
        """
        patient_id, doctor_id = self._participants(case_id)

        def persist(db: Session) -> int:
            case = engine.get_case(db, case_id, for_update=True)
            require_self_or_admin(actor, case.patient_id)

            existing = (db.query(PaymentCapture).filter(
                PaymentCapture.reference_id == capture.reference_id).first())
            if existing:
                if existing.case_id != case.id:
                    raise ValidationError(
                        "reference_id already belongs to another case")
                return existing.id

            if not case.chosen_proposal_id:
                raise InvalidState("No proposal has been chosen for this case.")
            p = engine.get_proposal(db, case.chosen_proposal_id)
            cap = check_capture(capture, p.cost)
            # refuse the capture now rather than store one that can never settle
            engine.settlement_split(db, p)

            row = PaymentCapture(
                case_id=case.id,
                patient_id=case.patient_id,
                reference_id=cap.reference_id,
                amount=cap.amount,
                payment_method=cap.method,
                status=CaptureStatus.PENDING,
                attempts=0,
            )
            db.add(row)
            db.flush()
            log_activity(db,
                         "CAPTURE_RECORDED",
                         user_id=actor.user_id,
                         details={
                             "case_id": case.id,
                             "reference_id": cap.reference_id,
                             "amount": str(cap.amount)
                         })
            return row.id

        capture_id = self._run("record_external_capture",
                               persist,
                               case_id=case_id,
                               patient_id=patient_id,
                               doctor_id=doctor_id)
        return self._complete_capture(capture_id)

    def _complete_capture(self, capture_id: int) -> PaymentCapture:
        with self.session_factory() as db:
            cap = db.get(PaymentCapture, capture_id)
            if not cap:
                raise NotFound("Capture not found")
            case_id = cap.case_id
        patient_id, doctor_id = self._participants(case_id)

        def fn(db: Session) -> PaymentCapture:
            cap = (db.query(PaymentCapture).filter(
                PaymentCapture.id == capture_id).with_for_update().first())
            if cap.status != CaptureStatus.PENDING:
                return cap
            cap.attempts = int(cap.attempts or 0) + 1

            case = engine.get_case(db, cap.case_id, for_update=True)
            p = db.get(Proposal, case.chosen_proposal_id) if case.chosen_proposal_id else None
            payable = (case.status != CaseStatus.CANCELLED
                       and case.payment_status == PaymentStatus.UNPAID
                       and p is not None and p.status in CHOSEN_STATUSES)

            reason = None
            if not payable:
                reason = f"{case.case_number} is no longer payable"
            else:
                try:
                    engine.settlement_split(db, p)
                except InvalidConfig as e:
                    # retrying cannot fix the config; the money goes back
                    logger.error("capture %s cannot settle: %s", capture_id, e)
                    reason = str(e)

            if reason is not None:
                append_entry(
                    db,
                    subject_id=cap.patient_id,
                    case_id=case.id,
                    entry_type=EntryType.REFUND,
                    amount=cap.amount,
                    payment_method=cap.payment_method,
                    reference_id=cap.reference_id,
                    notes=f"Compensating refund, {reason}",
                )
                cap.status = CaptureStatus.REFUNDED
                cap.last_error = reason[:1000]
                db.flush()
                log_activity(db,
                             "CAPTURE_COMPENSATED",
                             details={
                                 "case_id": case.id,
                                 "reference_id": cap.reference_id,
                                 "reason": reason
                             })
                return cap

            self._settle(db,
                         case,
                         p,
                         cap.payment_method,
                         None,
                         reference_id=cap.reference_id)
            cap.status = CaptureStatus.SETTLED
            cap.settled_at = now_db()
            cap.last_error = None
            db.flush()
            return cap

        try:
            return self._run("complete_capture",
                             fn,
                             case_id=case_id,
                             patient_id=patient_id,
                             doctor_id=doctor_id,
                             attempts=settings.SETTLEMENT_MAX_RETRIES)
        except LedgerInconsistency as e:
            self._mark_capture(capture_id, str(e), halt=True)
            raise
        except DentlinkError as e:
            # stays pending; the retry worker picks it up again
            self._mark_capture(capture_id, str(e))
            raise

    def _mark_capture(self,
                      capture_id: int,
                      error: str,
                      *,
                      halt: bool = False) -> None:
        with self.session_factory() as db:
            with db.begin():
                cap = db.get(PaymentCapture, capture_id)
                if not cap or cap.status != CaptureStatus.PENDING:
                    return
                cap.attempts = int(cap.attempts or 0) + 1
                cap.last_error = (error or "")[:1000]
                if halt:
                    cap.status = CaptureStatus.HALTED
        if halt:
            logger.critical("capture %s halted: %s", capture_id, error)
        else:
            logger.warning("capture %s not settled yet: %s", capture_id,
                           error)

    def retry_pending_captures(self) -> int:
        with self.session_factory() as db:
            ids = [
                r.id for r in db.query(PaymentCapture.id).filter(
                    PaymentCapture.status == CaptureStatus.PENDING).order_by(
                        PaymentCapture.id.asc()).all()
            ]
        settled = 0
        for cid in ids:
            try:
                cap = self._complete_capture(cid)
            except DentlinkError as e:
                logger.warning("pending capture %s failed again: %s", cid, e)
                continue
            if cap.status == CaptureStatus.SETTLED:
                settled += 1
        if ids:
            logger.info("retried %s pending captures, %s settled", len(ids),
                        settled)
        return settled

    # ---------------- refunds ----------------
    def refund_case(self,
                    case_id: int,
                    actor: Actor,
                    reason: Optional[str] = None) -> DentalCase:
        """
        Cancel a paid case and return the money (wallet credit or gateway
        refund). The doctor loses exactly the net income of the case:
        revenue is reversed by the refund, the accrued commission comes back
        as an adjustment bonus.
        """
        require_admin(actor)
        patient_id, doctor_id = self._participants(case_id)

        def fn(db: Session) -> DentalCase:
            case = engine.get_case(db, case_id, for_update=True)
            if case.payment_status != PaymentStatus.PAID:
                raise InvalidState("Only paid cases can be refunded.")
            p = engine.get_proposal(db, case.chosen_proposal_id, for_update=True)
            if p.status == ProposalStatus.COMPLETED:
                raise InvalidState(
                    "Treatment is already completed; it cannot be refunded.")

            payment = (db.query(LedgerEntry).filter(
                LedgerEntry.case_id == case.id,
                LedgerEntry.entry_type == EntryType.TREATMENT_PAYMENT,
            ).order_by(LedgerEntry.id.asc()).first())
            if not payment:
                raise LedgerInconsistency(
                    f"Paid case {case.case_number} has no treatment payment",
                    extra={"case_id": case.id})
            if payment.payment_method == PaymentMethod.CASH:
                raise InvalidState(
                    "Cash settlements are refunded outside the platform.")

            accrual = (db.query(LedgerEntry).filter(
                LedgerEntry.case_id == case.id,
                LedgerEntry.entry_type == EntryType.COMMISSION_PAYMENT,
                LedgerEntry.subject_id == p.doctor_id,
            ).order_by(LedgerEntry.id.asc()).first())
            commission = money(accrual.amount) if accrual else ZERO
            cost = money(payment.amount)
            net = money(cost - commission)

            snap = doctor_snapshot(db, p.doctor_id)
            if snap.pendingBalance < net:
                raise InvalidState(
                    "Doctor has already been paid out for this case; "
                    "reconcile manually.",
                    extra={
                        "pendingBalance": str(snap.pendingBalance),
                        "net_income": str(net)
                    })

            append_entry(
                db,
                subject_id=case.patient_id,
                doctor_id=p.doctor_id,
                case_id=case.id,
                entry_type=EntryType.REFUND,
                amount=cost,
                payment_method=payment.payment_method,
                reference_id=payment.reference_id,
                notes=reason or f"Refund for {case.case_number}",
                created_by=actor.user_id,
            )
            if commission > 0:
                append_entry(
                    db,
                    subject_id=p.doctor_id,
                    doctor_id=p.doctor_id,
                    case_id=case.id,
                    entry_type=EntryType.ADJUSTMENT_BONUS,
                    amount=commission,
                    payment_method=payment.payment_method,
                    notes=f"Commission reversal for refunded {case.case_number}",
                    created_by=actor.user_id,
                )

            p.status = ProposalStatus.CANCELLED
            case.status = CaseStatus.CANCELLED
            case.payment_status = PaymentStatus.REFUNDED
            for cap in db.query(PaymentCapture).filter(
                    PaymentCapture.case_id == case.id,
                    PaymentCapture.status == CaptureStatus.SETTLED).all():
                cap.status = CaptureStatus.REFUNDED
            db.flush()

            doctor_snapshot(db, p.doctor_id)
            log_activity(db,
                         "CASE_REFUNDED",
                         user_id=actor.user_id,
                         details={
                             "case_id": case.id,
                             "amount": str(cost),
                             "commission_reversed": str(commission),
                             "reason": reason
                         })
            return case

        return self._run("refund_case",
                         fn,
                         case_id=case_id,
                         patient_id=patient_id,
                         doctor_id=doctor_id)

    # ---------------- doctor side ----------------
    def doctor_snapshot(self,
                        doctor_id: int,
                        actor: Optional[Actor] = None) -> DoctorSnapshot:
        if actor is not None:
            require_self_or_admin(actor, doctor_id)
        with self.session_factory() as db:
            doctor = db.get(User, doctor_id)
            if not doctor or doctor.role != UserRole.DOCTOR:
                raise NotFound("Doctor not found")
            try:
                return doctor_snapshot(db, doctor_id)
            except LedgerInconsistency as e:
                self._report_inconsistency(e,
                                           "doctor_snapshot",
                                           case_id=None,
                                           subject_id=doctor_id)
                raise

    def record_payout(self,
                      doctor_id: int,
                      amount,
                      method,
                      actor: Actor,
                      *,
                      reference_id: Optional[str] = None,
                      notes: Optional[str] = None) -> DoctorSnapshot:
        require_admin(actor)
        m = _method(method)
        if m not in PAYOUT_METHODS:
            raise ValidationError(f"Cannot pay out with method '{m.value}'")
        amt = money(amount)
        if amt <= 0:
            raise ValidationError("Amount must be > 0")

        def fn(db: Session) -> DoctorSnapshot:
            self._lock_doctor(db, doctor_id)
            snap = doctor_snapshot(db, doctor_id)
            if amt > snap.pendingBalance:
                raise InsufficientFunds(
                    "Payout exceeds the doctor's pending balance.",
                    extra={
                        "pendingBalance": str(snap.pendingBalance),
                        "requested": str(amt)
                    })
            append_entry(
                db,
                subject_id=doctor_id,
                doctor_id=doctor_id,
                entry_type=EntryType.PAYOUT,
                amount=amt,
                payment_method=m,
                reference_id=reference_id,
                notes=notes or f"Payout via {m.value}",
                created_by=actor.user_id,
            )
            log_activity(db,
                         "PAYOUT_RECORDED",
                         user_id=actor.user_id,
                         details={
                             "doctor_id": doctor_id,
                             "amount": str(amt),
                             "method": m.value
                         })
            return doctor_snapshot(db, doctor_id)

        return self._run("record_payout", fn, doctor_id=doctor_id)

    def record_commission_remittance(self,
                                     doctor_id: int,
                                     amount,
                                     method,
                                     actor: Actor,
                                     *,
                                     reference_id: Optional[str] = None,
                                     notes: Optional[str] = None
                                     ) -> DoctorSnapshot:
        """Doctor hands the platform the commission kept from cash cases."""
        require_self_or_admin(actor, doctor_id)
        m = _method(method)
        if m not in PAYOUT_METHODS:
            raise ValidationError(f"Cannot remit with method '{m.value}'")
        amt = money(amount)
        if amt <= 0:
            raise ValidationError("Amount must be > 0")

        def fn(db: Session) -> DoctorSnapshot:
            self._lock_doctor(db, doctor_id)
            snap = doctor_snapshot(db, doctor_id)
            if amt > snap.commissionDue:
                raise ValidationError(
                    "Amount exceeds the commission due.",
                    extra={
                        "commissionDue": str(snap.commissionDue),
                        "requested": str(amt)
                    })
            append_entry(
                db,
                subject_id=doctor_id,
                doctor_id=doctor_id,
                entry_type=EntryType.COMMISSION_PAYMENT,
                amount=amt,
                payment_method=m,
                reference_id=reference_id,
                notes=notes or "Commission remittance for cash cases",
                created_by=actor.user_id,
            )
            log_activity(db,
                         "COMMISSION_PAID",
                         user_id=actor.user_id,
                         details={
                             "doctor_id": doctor_id,
                             "amount": str(amt),
                             "method": m.value
                         })
            return doctor_snapshot(db, doctor_id)

        return self._run("record_commission_remittance",
                         fn,
                         doctor_id=doctor_id)

    def record_adjustment(self,
                          doctor_id: int,
                          kind: str,
                          amount,
                          notes: Optional[str],
                          actor: Actor) -> DoctorSnapshot:
        require_admin(actor)
        kinds = {
            "bonus": EntryType.ADJUSTMENT_BONUS,
            "deduction": EntryType.ADJUSTMENT_DEDUCTION,
        }
        entry_type = kinds.get((kind or "").strip().lower())
        if entry_type is None:
            raise ValidationError("kind must be 'bonus' or 'deduction'")
        amt = money(amount)
        if amt <= 0:
            raise ValidationError("Amount must be > 0")

        def fn(db: Session) -> DoctorSnapshot:
            self._lock_doctor(db, doctor_id)
            if entry_type == EntryType.ADJUSTMENT_DEDUCTION:
                snap = doctor_snapshot(db, doctor_id)
                if amt > snap.pendingBalance:
                    raise InsufficientFunds(
                        "Deduction exceeds the doctor's pending balance.",
                        extra={
                            "pendingBalance": str(snap.pendingBalance),
                            "requested": str(amt)
                        })
            append_entry(
                db,
                subject_id=doctor_id,
                doctor_id=doctor_id,
                entry_type=entry_type,
                amount=amt,
                # adjustments move no real money; recorded against the bank rail
                payment_method=PaymentMethod.BANK,
                notes=notes,
                created_by=actor.user_id,
            )
            log_activity(db,
                         "ADJUSTMENT_RECORDED",
                         user_id=actor.user_id,
                         details={
                             "doctor_id": doctor_id,
                             "kind": entry_type.value,
                             "amount": str(amt)
                         })
            return doctor_snapshot(db, doctor_id)

        return self._run("record_adjustment", fn, doctor_id=doctor_id)

    # ---------------- messaging ----------------
    def dispatch_channel_grants(self) -> int:
        if not settings.MESSAGING_ENABLED:
            return 0
        sent = 0
        with self.session_factory() as db:
            with db.begin():
                for ch in undispatched_channels(db):
                    try:
                        self.messaging.notify_channel_opened(
                            ch.case_id, ch.patient_id, ch.doctor_id)
                    except Exception:
                        # left undispatched; the next pass tries again
                        logger.exception(
                            "messaging gateway failed for case %s",
                            ch.case_id)
                        continue
                    mark_dispatched(db, ch)
                    sent += 1
        return sent


class SettlementRetryWorker(threading.Thread):
    """Re-drives pending captures and undelivered chat grants every `interval` seconds."""

    def __init__(self, coordinator: SettlementCoordinator, interval: float):
        super().__init__(name="settlement-retry", daemon=True)
        self.coordinator = coordinator
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        logger.info("Settlement retry worker started (every %ss)",
                    self.interval)
        while not self._stop_event.wait(self.interval):
            try:
                self.coordinator.retry_pending_captures()
                self.coordinator.dispatch_channel_grants()
            except Exception:
                # keep the worker alive, next tick retries
                logger.exception("Settlement retry pass failed")
        logger.info("Settlement retry worker stopped.")

    def stop(self) -> None:
        self._stop_event.set()
