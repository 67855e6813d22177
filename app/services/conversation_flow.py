"""
Conversation state machine of the WhatsApp bot.

`advance` is pure: it reads a snapshot of the persisted conversation plus the
normalized inbound message and returns a `Transition` describing the reply and
every write the caller must perform. Persistence lives in bot_service.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from app.services import prompts
from app.services.normalizer import NormalizedMessage
from app.services.profile import (
    BIRTH_TIME_APPROXIMATE,
    BIRTH_TIME_EXACT,
    BIRTH_TIME_UNKNOWN,
    CollectedProfile,
)
from app.services.state_machine import ConversationStep, ServiceType, UserStatus, promote

MAX_CHOICE_LENGTH = 20
MAX_MENU_LENGTH = 2
MAX_FREE_TEXT_LENGTH = 200

DOB_PATTERN = re.compile(r"^\d{2}/\d{2}/\d{4}$")
EXACT_TIME_PATTERN = re.compile(r"^(0[1-9]|1[0-2]):([0-5][0-9])\s?(AM|PM)$", re.IGNORECASE)

LIFE_FORECAST_CHOICES = {"1", "proceed", "life forecast", "life"}
DESTINY_READINGS_CHOICES = {"2", "destiny readings", "destiny reading", "destiny"}
ASK_QUESTION_CHOICES = {"3", "ask a question", "question", "faq"}

PLAN_SYNONYMS = {
    "1 Year": {"1", "1 year", "1-year", "1year", "one", "one year", "one-year"},
    "3 Years": {"3", "3 years", "3-year", "3 year", "3years", "three", "three years", "three-year"},
    "5 Years": {"5", "5 years", "5-year", "5 year", "5years", "five", "five years", "five-year"},
}

BIRTH_TIME_CHOICES = {
    "1": BIRTH_TIME_EXACT,
    "exact": BIRTH_TIME_EXACT,
    "2": BIRTH_TIME_APPROXIMATE,
    "approximate": BIRTH_TIME_APPROXIMATE,
    "3": BIRTH_TIME_UNKNOWN,
    "unknown": BIRTH_TIME_UNKNOWN,
}

GENDER_CHOICES = {
    "1": "Male",
    "male": "Male",
    "2": "Female",
    "female": "Female",
}

MEDIA_STEPS = {ConversationStep.WAITING_PAYMENT, ConversationStep.PAYMENT_ISSUE_MENU}


@dataclass(frozen=True)
class ConversationSnapshot:
    step: ConversationStep
    navigation: tuple = ()
    service_type: ServiceType = ServiceType.LIFE_FORECAST
    profile: CollectedProfile = CollectedProfile()
    user_status: UserStatus = UserStatus.NEW
    user_service_type: ServiceType = ServiceType.LIFE_FORECAST


@dataclass
class Transition:
    reply: str
    next_step: Optional[ConversationStep] = None
    navigation: Optional[list] = None
    profile_updates: dict = field(default_factory=dict)
    service_type: Optional[ServiceType] = None
    user_status: Optional[UserStatus] = None
    selected_plan: Optional[str] = None
    payment_screenshot_url: Optional[str] = None
    finalize_submission: bool = False

    @property
    def mutates_conversation(self) -> bool:
        return self.next_step is not None

    @property
    def mutates_user(self) -> bool:
        return self.user_status is not None or self.selected_plan is not None or self.service_type is not None


def parse_plan(text: str) -> Optional[str]:
    normalized = " ".join(text.strip().lower().split())
    for label, synonyms in PLAN_SYNONYMS.items():
        if normalized in synonyms:
            return label
    return None


def parse_exact_time(text: str) -> Optional[str]:
    match = EXACT_TIME_PATTERN.match(text.strip())
    if not match:
        return None
    hours, minutes, meridiem = match.groups()
    return f"{hours}:{minutes} {meridiem.upper()}"


def is_valid_dob(text: str) -> bool:
    if not DOB_PATTERN.match(text):
        return False
    try:
        datetime.strptime(text, "%d/%m/%Y")
    except ValueError:
        return False
    return True


def _is_free_text(text: str) -> bool:
    return 1 <= len(text) <= MAX_FREE_TEXT_LENGTH


def _pushed(navigation, current: ConversationStep, target: ConversationStep) -> list:
    """Push `current`; if `target` was visited before, rewind the stack to it."""
    stack = list(navigation) + [current]
    if target in stack:
        stack = stack[: stack.index(target)]
    return stack


def _stay(snapshot: ConversationSnapshot, reply: Optional[str] = None) -> Transition:
    return Transition(reply=reply or prompts.prompt_for(snapshot.step, snapshot.service_type))


def _move(
    snapshot: ConversationSnapshot,
    target: ConversationStep,
    reply: Optional[str] = None,
    **effects,
) -> Transition:
    service_type = effects.get("service_type") or snapshot.service_type
    return Transition(
        reply=reply or prompts.prompt_for(target, service_type),
        next_step=target,
        navigation=_pushed(snapshot.navigation, snapshot.step, target),
        **effects,
    )


def _promoted(snapshot: ConversationSnapshot, target: UserStatus) -> Optional[UserStatus]:
    status = promote(snapshot.user_status, target)
    return status if status != snapshot.user_status else None


def _menu_reset(snapshot: ConversationSnapshot) -> Transition:
    return Transition(
        reply=prompts.ASK_PROCEED,
        next_step=ConversationStep.ASK_PROCEED,
        navigation=[],
    )


def _go_back(snapshot: ConversationSnapshot) -> Transition:
    stack = list(snapshot.navigation)
    if not stack:
        return _menu_reset(snapshot)
    previous = stack.pop()
    return Transition(
        reply=prompts.prompt_for(previous, snapshot.service_type),
        next_step=previous,
        navigation=stack,
    )


def _terminal_reply(snapshot: ConversationSnapshot) -> Optional[str]:
    if snapshot.user_status == UserStatus.COMPLETED:
        return prompts.completed_text(snapshot.user_service_type)
    if snapshot.user_status == UserStatus.VERIFIED:
        return prompts.payment_verified_text(snapshot.user_service_type)
    return None


def handle_payment_screenshot(snapshot: ConversationSnapshot, message: NormalizedMessage) -> Transition:
    if not message.has_media:
        return _stay(snapshot)

    next_step = snapshot.profile.first_missing_step()
    finalize = next_step == ConversationStep.AWAITING_VERIFICATION
    follow_up = prompts.CONFIRMATION if finalize else prompts.prompt_for(next_step, snapshot.service_type)
    return _move(
        snapshot,
        next_step,
        reply=f"{prompts.PAYMENT_RECEIVED}\n\n{follow_up}",
        payment_screenshot_url=message.media_url,
        user_status=_promoted(snapshot, UserStatus.PAYMENT_SUBMITTED),
        finalize_submission=finalize,
    )


def _on_welcome(snapshot, message):
    return Transition(
        reply=prompts.prompt_for(ConversationStep.WELCOME),
        next_step=ConversationStep.ASK_PROCEED,
        navigation=[],
    )


def _on_ask_proceed(snapshot, message):
    if not 1 <= len(message.text) <= MAX_CHOICE_LENGTH:
        return _stay(snapshot)
    choice = message.lower
    if choice in ASK_QUESTION_CHOICES:
        return _move(snapshot, ConversationStep.FAQ_MENU)
    if choice in LIFE_FORECAST_CHOICES:
        return _move(snapshot, ConversationStep.OPTIONS, service_type=ServiceType.LIFE_FORECAST)
    if choice in DESTINY_READINGS_CHOICES:
        return _move(snapshot, ConversationStep.OPTIONS, service_type=ServiceType.DESTINY_READINGS)
    return _stay(snapshot)


def _on_faq_menu(snapshot, message):
    if not 1 <= len(message.text) <= MAX_MENU_LENGTH:
        return _stay(snapshot)
    choice = message.text
    answer = prompts.FAQ_ANSWERS.get(choice)
    if answer:
        return _stay(snapshot, f"{answer}\n{prompts.FAQ_MENU}")
    if choice == "5":
        return _move(snapshot, ConversationStep.OPTIONS, service_type=ServiceType.LIFE_FORECAST)
    if choice == "6":
        return _move(snapshot, ConversationStep.ASK_PROCEED)
    return _stay(snapshot)


def _on_confidentiality(snapshot, message):
    return _move(snapshot, ConversationStep.OPTIONS)


def _on_options(snapshot, message):
    if not 1 <= len(message.text) <= MAX_CHOICE_LENGTH:
        return _stay(snapshot)
    plan = parse_plan(message.text)
    if not plan:
        return _stay(snapshot)
    return _move(
        snapshot,
        ConversationStep.WAITING_PAYMENT,
        reply=prompts.payment_instructions(snapshot.service_type),
        user_status=_promoted(snapshot, UserStatus.AWAITING_PAYMENT),
        selected_plan=plan,
    )


def _on_waiting_payment(snapshot, message):
    return _stay(snapshot)


def _on_payment_issue_menu(snapshot, message):
    if message.text == "1":
        return _move(snapshot, ConversationStep.WAITING_PAYMENT)
    if message.text == "2":
        return _stay(snapshot, prompts.payment_instructions(snapshot.service_type))
    return _stay(snapshot)


def _collect_text(field_name: str, next_step: ConversationStep):
    def handler(snapshot, message):
        if not _is_free_text(message.text):
            return _stay(snapshot)
        return _move(snapshot, next_step, profile_updates={field_name: message.text})

    return handler


def _on_dob(snapshot, message):
    if not is_valid_dob(message.text):
        return _stay(snapshot)
    return _move(snapshot, ConversationStep.COLLECT_BIRTH_TIME, profile_updates={"dob": message.text})


def _on_birth_time(snapshot, message):
    choice = BIRTH_TIME_CHOICES.get(message.lower)
    if choice == BIRTH_TIME_EXACT:
        return _move(
            snapshot,
            ConversationStep.COLLECT_BIRTH_TIME_EXACT_VALUE,
            profile_updates={"birth_time_type": BIRTH_TIME_EXACT, "birth_time_value": None},
        )
    if choice == BIRTH_TIME_APPROXIMATE:
        return _move(
            snapshot,
            ConversationStep.COLLECT_BIRTH_TIME_APPROX_VALUE,
            profile_updates={"birth_time_type": BIRTH_TIME_APPROXIMATE, "birth_time_value": None},
        )
    if choice == BIRTH_TIME_UNKNOWN:
        return _move(
            snapshot,
            ConversationStep.COLLECT_BIRTH_PLACE,
            profile_updates={"birth_time_type": BIRTH_TIME_UNKNOWN, "birth_time_value": BIRTH_TIME_UNKNOWN},
        )
    return _stay(snapshot)


def _on_exact_time(snapshot, message):
    value = parse_exact_time(message.text)
    if not value:
        return _stay(snapshot)
    return _move(snapshot, ConversationStep.COLLECT_BIRTH_PLACE, profile_updates={"birth_time_value": value})


def _on_gender(snapshot, message):
    gender = GENDER_CHOICES.get(message.lower)
    if not gender:
        return _stay(snapshot)
    return _move(
        snapshot,
        ConversationStep.AWAITING_VERIFICATION,
        reply=prompts.CONFIRMATION,
        profile_updates={"gender": gender},
        finalize_submission=True,
    )


def _on_closed_step(snapshot, message):
    # Only the review workflow moves a conversation out of these steps.
    return _stay(snapshot)


StepHandler = Callable[[ConversationSnapshot, NormalizedMessage], Transition]

_STEP_HANDLERS: dict[ConversationStep, StepHandler] = {
    ConversationStep.WELCOME: _on_welcome,
    ConversationStep.ASK_PROCEED: _on_ask_proceed,
    ConversationStep.FAQ_MENU: _on_faq_menu,
    ConversationStep.CONFIDENTIALITY: _on_confidentiality,
    ConversationStep.OPTIONS: _on_options,
    ConversationStep.WAITING_PAYMENT: _on_waiting_payment,
    ConversationStep.PAYMENT_ISSUE_MENU: _on_payment_issue_menu,
    ConversationStep.COLLECT_FULL_NAME: _collect_text("full_name", ConversationStep.COLLECT_DOB),
    ConversationStep.COLLECT_DOB: _on_dob,
    ConversationStep.COLLECT_BIRTH_TIME: _on_birth_time,
    ConversationStep.COLLECT_BIRTH_TIME_EXACT_VALUE: _on_exact_time,
    ConversationStep.COLLECT_BIRTH_TIME_APPROX_VALUE: _collect_text(
        "birth_time_value", ConversationStep.COLLECT_BIRTH_PLACE
    ),
    ConversationStep.COLLECT_BIRTH_PLACE: _collect_text("birth_place", ConversationStep.COLLECT_CURRENT_LOCATION),
    ConversationStep.COLLECT_CURRENT_LOCATION: _collect_text("current_location", ConversationStep.COLLECT_GENDER),
    ConversationStep.COLLECT_GENDER: _on_gender,
    ConversationStep.AWAITING_VERIFICATION: _on_closed_step,
    ConversationStep.VERIFIED_NOTIFIED: _on_closed_step,
    ConversationStep.COMPLETED: _on_closed_step,
}

_unhandled_steps = set(ConversationStep) - set(_STEP_HANDLERS)
if _unhandled_steps:
    raise RuntimeError(f"No handler for steps: {sorted(step.value for step in _unhandled_steps)}")


def advance(snapshot: ConversationSnapshot, message: NormalizedMessage) -> Transition:
    """Compute the reply and pending writes for one inbound message."""
    terminal = _terminal_reply(snapshot)
    if terminal:
        return Transition(reply=terminal)

    if message.is_menu_reset:
        return _menu_reset(snapshot)

    if message.is_back:
        return _go_back(snapshot)

    if message.media_count > 0 and snapshot.step in MEDIA_STEPS:
        return handle_payment_screenshot(snapshot, message)

    return _STEP_HANDLERS[snapshot.step](snapshot, message)
