# FILE: dentlink/services/messaging.py
from __future__ import annotations

import logging
from typing import List, Protocol

from sqlalchemy.orm import Session

from dentlink.core.errors import Forbidden, InvalidState, NotFound
from dentlink.models.case import DentalCase
from dentlink.models.chat_channel import ChatChannel
from dentlink.models.proposal import CHOSEN_STATUSES, Proposal
from dentlink.utils.timezone import now_db

logger = logging.getLogger(__name__)


class MessagingGateway(Protocol):

    def notify_channel_opened(self, case_id: int, patient_id: int,
                              doctor_id: int) -> None:
        ...


class LoggingMessagingGateway:
    """Default gateway: the chat transport lives elsewhere, we only log the signal."""

    def notify_channel_opened(self, case_id: int, patient_id: int,
                              doctor_id: int) -> None:
        logger.info("chat channel allowed case=%s patient=%s doctor=%s",
                    case_id, patient_id, doctor_id)


def grant_channel(db: Session, case: DentalCase,
                  proposal: Proposal) -> ChatChannel:
    """
    Record that patient and accepted doctor may talk.
    Called inside the acceptance transaction; one row per case.
    """
    existing = (db.query(ChatChannel).filter(
        ChatChannel.case_id == case.id).first())
    if existing:
        return existing
    ch = ChatChannel(case_id=case.id,
                     patient_id=case.patient_id,
                     doctor_id=proposal.doctor_id)
    db.add(ch)
    db.flush()
    return ch


def undispatched_channels(db: Session, limit: int = 100) -> List[ChatChannel]:
    return (db.query(ChatChannel).filter(
        ChatChannel.dispatched_at.is_(None)).order_by(
            ChatChannel.id.asc()).with_for_update().limit(limit).all())


def mark_dispatched(db: Session, ch: ChatChannel) -> None:
    ch.dispatched_at = now_db()
    db.flush()


def ensure_channel_allowed(db: Session, case_id: int,
                           user_id: int) -> ChatChannel:
    """
    Precondition for opening a chat: the case has an accepted proposal and
    the caller is its patient or its chosen doctor.
    """
    case = db.get(DentalCase, case_id)
    if not case:
        raise NotFound("Case not found")

    chosen = db.get(Proposal, case.chosen_proposal_id) if case.chosen_proposal_id else None
    if not chosen or chosen.status not in CHOSEN_STATUSES:
        raise InvalidState("Chat opens once a proposal has been accepted")

    if int(user_id) not in (case.patient_id, chosen.doctor_id):
        raise Forbidden("Only the patient and the chosen doctor can chat")

    ch = (db.query(ChatChannel).filter(ChatChannel.case_id == case.id).first())
    if not ch:
        raise InvalidState("Chat channel has not been granted yet")
    return ch
