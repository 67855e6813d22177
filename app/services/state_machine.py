from enum import Enum


class ConversationStep(str, Enum):
    WELCOME = "WELCOME"
    ASK_PROCEED = "ASK_PROCEED"
    FAQ_MENU = "FAQ_MENU"
    CONFIDENTIALITY = "CONFIDENTIALITY"  # legacy rows only
    OPTIONS = "OPTIONS"
    WAITING_PAYMENT = "WAITING_PAYMENT"
    PAYMENT_ISSUE_MENU = "PAYMENT_ISSUE_MENU"
    COLLECT_FULL_NAME = "COLLECT_FULL_NAME"
    COLLECT_DOB = "COLLECT_DOB"
    COLLECT_BIRTH_TIME = "COLLECT_BIRTH_TIME"
    COLLECT_BIRTH_TIME_EXACT_VALUE = "COLLECT_BIRTH_TIME_EXACT_VALUE"
    COLLECT_BIRTH_TIME_APPROX_VALUE = "COLLECT_BIRTH_TIME_APPROX_VALUE"
    COLLECT_BIRTH_PLACE = "COLLECT_BIRTH_PLACE"
    COLLECT_CURRENT_LOCATION = "COLLECT_CURRENT_LOCATION"
    COLLECT_GENDER = "COLLECT_GENDER"
    AWAITING_VERIFICATION = "AWAITING_VERIFICATION"
    VERIFIED_NOTIFIED = "VERIFIED_NOTIFIED"
    COMPLETED = "COMPLETED"


class UserStatus(str, Enum):
    NEW = "NEW"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAYMENT_SUBMITTED = "PAYMENT_SUBMITTED"
    VERIFIED = "VERIFIED"
    COMPLETED = "COMPLETED"


class ServiceType(str, Enum):
    LIFE_FORECAST = "life_forecast"
    DESTINY_READINGS = "destiny_readings"


def parse_step(value) -> ConversationStep:
    """Coerce a stored step value, falling back to ASK_PROCEED for unknown rows."""
    try:
        return ConversationStep(value)
    except ValueError:
        return ConversationStep.ASK_PROCEED


def parse_service_type(value) -> ServiceType:
    if value == ServiceType.DESTINY_READINGS.value:
        return ServiceType.DESTINY_READINGS
    return ServiceType.LIFE_FORECAST


def parse_user_status(value) -> UserStatus:
    try:
        return UserStatus(value)
    except ValueError:
        return UserStatus.NEW


STATUS_ORDER = [
    UserStatus.NEW,
    UserStatus.AWAITING_PAYMENT,
    UserStatus.PAYMENT_SUBMITTED,
    UserStatus.VERIFIED,
    UserStatus.COMPLETED,
]

# The only backward move: an operator rejecting submitted payment evidence.
REJECTION_TRANSITION = (UserStatus.PAYMENT_SUBMITTED, UserStatus.AWAITING_PAYMENT)

TERMINAL_STATUSES = {UserStatus.VERIFIED, UserStatus.COMPLETED}


class InvalidTransitionError(Exception):
    def __init__(self, from_status: UserStatus, to_status: UserStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


def _rank(status: UserStatus) -> int:
    return STATUS_ORDER.index(status)


def can_transition(from_status: UserStatus, to_status: UserStatus, rejection: bool = False) -> bool:
    """Check if a status change keeps the lifecycle monotonic."""
    if _rank(to_status) >= _rank(from_status):
        return True
    return rejection and (from_status, to_status) == REJECTION_TRANSITION


def transition(from_status: UserStatus, to_status: UserStatus, rejection: bool = False) -> UserStatus:
    """Perform status transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_status, to_status, rejection=rejection):
        raise InvalidTransitionError(from_status, to_status)
    return to_status


def promote(current: UserStatus, target: UserStatus) -> UserStatus:
    """Move forward to target, or stay put if the user is already past it."""
    return target if _rank(target) > _rank(current) else current


def reject_submission(current: UserStatus) -> UserStatus:
    """Operator rejection: PAYMENT_SUBMITTED goes back to AWAITING_PAYMENT."""
    if current == UserStatus.AWAITING_PAYMENT:
        return current
    return transition(current, UserStatus.AWAITING_PAYMENT, rejection=True)
