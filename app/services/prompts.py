"""Outbound texts of the WhatsApp flow and the step → prompt table."""

from typing import Callable

from app.services.state_machine import ConversationStep, ServiceType, parse_service_type

NAV_BACK = "↩️ Reply 0 to go back."
NAV_MENU = "↩️ Reply 00 for menu."
NAV_FOOTER = f"\n\n{NAV_BACK}\n{NAV_MENU}"

WELCOME = (
    "🙏 *Welcome to The Life Forecast*\n"
    "Peace be with you.\n"
    "A confidential Vedic Astrology (Jyotiṣa) reading prepared with care.\n"
    "For spiritual guidance and reflection."
)

ASK_PROCEED = (
    "✨ *How would you like to proceed?*\n"
    "1. Life Forecast\n"
    "2. Destiny Readings\n"
    "3. Ask a question\n"
    "\n" + NAV_MENU
)

FAQ_MENU = (
    "❓ *Questions & Support*\n"
    "1. How long does it take?\n"
    "2. What details do you need?\n"
    "3. What if I don't know my birth time?\n"
    "4. Can I get a refund?\n"
    "\n"
    "✨ *Next*\n"
    "5. Proceed with my reading\n"
    "6. Go back" + NAV_FOOTER
)

FAQ_HOW_LONG = (
    "⏳ *How long does it take?*\n"
    "Delivery is usually within *one week* after payment is verified and all details are submitted.\n"
    "If there is any delay, we will inform you.\n"
)

FAQ_DETAILS_NEEDED = (
    "🧾 *What details do you need?*\n"
    "1. Full Name\n"
    "2. Date of Birth (DD/MM/YYYY)\n"
    "3. Time of Birth (Exact / Approximate / Unknown)\n"
    "4. Place of Birth (City, Country)\n"
    "5. Current Location (City, Country)\n"
    "6. Gender\n"
    "\n"
    "🔒 All details are treated with strict confidentiality.\n"
)

FAQ_BIRTH_TIME_UNKNOWN = (
    "⏰ *What if I don't know my birth time?*\n"
    "That is okay. Select *Unknown* to continue.\n"
    "If you have an estimate, choose *Approximate*.\n"
    "An exact time improves precision but is not compulsory.\n"
)

FAQ_REFUND = (
    "💳 *Refunds*\n"
    "Once payment is confirmed and preparation begins, payments are *not refundable*.\n"
    "If you believe there was a payment mistake, explain and we will guide you.\n"
)

FAQ_ANSWERS = {
    "1": FAQ_HOW_LONG,
    "2": FAQ_DETAILS_NEEDED,
    "3": FAQ_BIRTH_TIME_UNKNOWN,
    "4": FAQ_REFUND,
}

CONFIDENTIALITY_NOTE = "🔒 *Confidentiality*\nYour details are kept strictly confidential."

OPTIONS_LIFE_FORECAST = (
    "💫 *Life Forecast Options* (Rate: $1 = GHS 12)\n"
    "1. 1 Year: $150 (GHS 1,800)\n"
    "3. 3 Years: $250 (GHS 3,000)\n"
    "5. 5 Years: $350 (GHS 4,200)\n"
    "\n" + CONFIDENTIALITY_NOTE + "\nThey are used only for your Life Forecast reading.\n"
    "\n"
    "Reply 1, 3, or 5." + NAV_FOOTER
)

OPTIONS_DESTINY_READINGS = (
    "🔱 *Destiny Readings Options* (Rate: $1 = GHS 12)\n"
    "1. 1 Year: $150 (GHS 1,800)\n"
    "3. 3 Years: $250 (GHS 3,000)\n"
    "5. 5 Years: $350 (GHS 4,200)\n"
    "\n" + CONFIDENTIALITY_NOTE + "\nThey are used only for your Destiny Reading.\n"
    "\n"
    "Reply 1, 3, or 5." + NAV_FOOTER
)

_PAYMENT_INSTRUCTIONS = (
    "💳 *Mobile Money Payment* (GHS)\n"
    "Name: *David Asamoah*\n"
    "MoMo Number: *0541940276*\n"
    "Network: *MTN*\n"
    "Reference: *{reference}*\n"
    "\n"
    "📸 *After Payment*\n"
    "Send a screenshot of your payment confirmation here.\n"
    "\n"
    "📝 Payments are manually verified." + NAV_FOOTER
)

PAYMENT_INSTRUCTIONS_LIFE_FORECAST = _PAYMENT_INSTRUCTIONS.format(reference="Life Forecast")
PAYMENT_INSTRUCTIONS_DESTINY_READINGS = _PAYMENT_INSTRUCTIONS.format(reference="Destiny Readings")

WAITING_PAYMENT = (
    "📲 *Awaiting Payment Screenshot*\n"
    "Please send your MoMo payment screenshot to continue." + NAV_FOOTER
)

PAYMENT_RECEIVED = (
    "✅ *Payment Evidence Received*\n"
    "Thank you. Your screenshot has been received and will be reviewed."
)

ASK_FULL_NAME = "🧾 *Details (1/6)*\nFull Name?" + NAV_FOOTER
ASK_DOB = "🧾 *Details (2/6)*\nDate of Birth? (DD/MM/YYYY)" + NAV_FOOTER
ASK_BIRTH_TIME = (
    "🧾 *Details (3/6)*\n"
    "Time of Birth?\n"
    "1. Exact\n"
    "2. Approximate\n"
    "3. Unknown" + NAV_FOOTER
)
ASK_BIRTH_TIME_EXACT = (
    "⏰ *Time of Birth (Exact)*\n"
    "Enter the exact time using this format.\n"
    "HH:MM AM/PM\n"
    "Example: 08:30 AM" + NAV_FOOTER
)
ASK_BIRTH_TIME_APPROX = (
    "⏰ *Time of Birth (Approximate)*\n"
    "Enter an estimate in your own words.\n"
    "Example: around 9pm" + NAV_FOOTER
)
ASK_BIRTH_PLACE = "🧾 *Details (4/6)*\nPlace of Birth? (City, Country)" + NAV_FOOTER
ASK_CURRENT_LOCATION = "🧾 *Details (5/6)*\nCurrent Location? (City, Country)" + NAV_FOOTER
ASK_GENDER = "🧾 *Details (6/6)*\nGender?\n1. Male\n2. Female" + NAV_FOOTER

CONFIRMATION = (
    "📩 *Submission Received*\n"
    "Thank you. Your details have been submitted.\n"
    "\n"
    "🔎 *Verification*\n"
    "We will notify you once payment is confirmed.\n"
    "\n"
    "🔒 All details remain strictly confidential."
)

AWAITING_VERIFICATION = (
    "⏳ *Verification Pending*\n"
    "Your submission is under review.\n"
    "We will notify you once verification is complete.\n"
    "\n" + NAV_MENU
)

_PAYMENT_VERIFIED = (
    "✅ *Payment Confirmed*\n"
    "Your payment has been successfully received and verified.\n"
    "\n"
    "🔱 *Next Step*\n"
    "Your {product} is now being prepared.\n"
    "You will be contacted once it is ready.\n"
    "\n"
    "🔒 All details remain strictly confidential."
)

PAYMENT_VERIFIED_LIFE_FORECAST = _PAYMENT_VERIFIED.format(product="Life Forecast reading")
PAYMENT_VERIFIED_DESTINY_READINGS = _PAYMENT_VERIFIED.format(product="Destiny Reading")

PAYMENT_REJECTED_INVALID = (
    "⚠️ *Payment Not Confirmed*\n"
    "We were unable to verify the payment screenshot you submitted.\n"
    "\n"
    "📌 *Choose an option*\n"
    "1. Upload payment proof again\n"
    "2. View payment details\n"
    "\n"
    "Reply 1 or 2."
)

PAYMENT_ISSUE_MENU = (
    "📌 *Choose an option*\n"
    "1. Upload payment proof again\n"
    "2. View payment details\n"
    "\n"
    "Reply 1 or 2."
)

PAYMENT_REJECTED_UNDERPAID = (
    "⚠️ *Payment Incomplete*\n"
    "The amount received is less than required for your selected reading.\n"
    "\n"
    "💳 *Payment Details*\n"
    "Required: GHS {expected}\n"
    "Received: GHS {received}\n"
    "\n"
    "📌 *Choose an option*\n"
    "1. Upload updated payment proof\n"
    "2. View payment details\n"
    "\n"
    "Reply 1 or 2."
)

_COMPLETED = (
    "✅ *Reading Completed*\n"
    "Your {product} has been completed.\n"
    "Thank you for your trust.\n"
    "\n"
    "🔒 All details remain strictly confidential."
)

COMPLETED_LIFE_FORECAST = _COMPLETED.format(product="Life Forecast reading")
COMPLETED_DESTINY_READINGS = _COMPLETED.format(product="Destiny Reading")


def _by_service(life_forecast: str, destiny_readings: str) -> Callable[[ServiceType], str]:
    def pick(service_type: ServiceType) -> str:
        return destiny_readings if service_type == ServiceType.DESTINY_READINGS else life_forecast

    return pick


def _fixed(text: str) -> Callable[[ServiceType], str]:
    return lambda _service_type: text


options_text = _by_service(OPTIONS_LIFE_FORECAST, OPTIONS_DESTINY_READINGS)
payment_instructions = _by_service(PAYMENT_INSTRUCTIONS_LIFE_FORECAST, PAYMENT_INSTRUCTIONS_DESTINY_READINGS)
payment_verified_text = _by_service(PAYMENT_VERIFIED_LIFE_FORECAST, PAYMENT_VERIFIED_DESTINY_READINGS)
completed_text = _by_service(COMPLETED_LIFE_FORECAST, COMPLETED_DESTINY_READINGS)


_PROMPTS: dict[ConversationStep, Callable[[ServiceType], str]] = {
    ConversationStep.WELCOME: _fixed(f"{WELCOME}\n\n{ASK_PROCEED}"),
    ConversationStep.ASK_PROCEED: _fixed(ASK_PROCEED),
    ConversationStep.FAQ_MENU: _fixed(FAQ_MENU),
    ConversationStep.CONFIDENTIALITY: options_text,
    ConversationStep.OPTIONS: options_text,
    ConversationStep.WAITING_PAYMENT: _fixed(WAITING_PAYMENT),
    ConversationStep.PAYMENT_ISSUE_MENU: _fixed(PAYMENT_ISSUE_MENU),
    ConversationStep.COLLECT_FULL_NAME: _fixed(ASK_FULL_NAME),
    ConversationStep.COLLECT_DOB: _fixed(ASK_DOB),
    ConversationStep.COLLECT_BIRTH_TIME: _fixed(ASK_BIRTH_TIME),
    ConversationStep.COLLECT_BIRTH_TIME_EXACT_VALUE: _fixed(ASK_BIRTH_TIME_EXACT),
    ConversationStep.COLLECT_BIRTH_TIME_APPROX_VALUE: _fixed(ASK_BIRTH_TIME_APPROX),
    ConversationStep.COLLECT_BIRTH_PLACE: _fixed(ASK_BIRTH_PLACE),
    ConversationStep.COLLECT_CURRENT_LOCATION: _fixed(ASK_CURRENT_LOCATION),
    ConversationStep.COLLECT_GENDER: _fixed(ASK_GENDER),
    ConversationStep.AWAITING_VERIFICATION: _fixed(AWAITING_VERIFICATION),
    ConversationStep.VERIFIED_NOTIFIED: payment_verified_text,
    ConversationStep.COMPLETED: completed_text,
}

_missing_prompts = set(ConversationStep) - set(_PROMPTS)
if _missing_prompts:
    raise RuntimeError(f"No prompt for steps: {sorted(step.value for step in _missing_prompts)}")


def prompt_for(step, service_type=ServiceType.LIFE_FORECAST) -> str:
    """Prompt shown while the conversation sits on `step`."""
    service = service_type if isinstance(service_type, ServiceType) else parse_service_type(service_type)
    try:
        builder = _PROMPTS[ConversationStep(step)]
    except ValueError:
        return ASK_PROCEED
    return builder(service)


def render_underpaid_notice(expected_amount, received_amount) -> str:
    return PAYMENT_REJECTED_UNDERPAID.format(
        expected=format_amount(expected_amount),
        received=format_amount(received_amount),
    )


def format_amount(amount) -> str:
    value = float(amount)
    if value.is_integer():
        return str(int(value))
    return f"{value:.2f}"
