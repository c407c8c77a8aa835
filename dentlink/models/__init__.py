from dentlink.models.user import User, UserRole  # noqa: F401
from dentlink.models.case import (  # noqa: F401
    DentalCase,
    CaseAssignment,
    CaseStatus,
    CaseUrgency,
    PaymentStatus,
)
from dentlink.models.proposal import Proposal, ProposalStatus  # noqa: F401
from dentlink.models.ledger import LedgerEntry, EntryType, PaymentMethod  # noqa: F401
from dentlink.models.platform_settings import PlatformSettings, CommissionType  # noqa: F401
from dentlink.models.payment_capture import PaymentCapture, CaptureStatus  # noqa: F401
from dentlink.models.chat_channel import ChatChannel  # noqa: F401
from dentlink.models.number_series import NumberSeries  # noqa: F401
from dentlink.models.activity_log import ActivityLog  # noqa: F401
from dentlink.models.error_log import ErrorLog  # noqa: F401
