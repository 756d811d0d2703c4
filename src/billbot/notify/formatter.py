"""Chat message formatting for scan results."""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Union

from ..errors import StorageError
from ..models import BillType, ParsedBill

BILL_LABELS: dict[BillType, tuple[str, str]] = {
    BillType.ELECTRICITY: ("⚡", "Electricity"),
    BillType.HOT_WATER: ("🔥", "Hot Water"),
    BillType.WATER: ("💧", "Water"),
    BillType.INTERNET: ("🌐", "Internet"),
}

REAUTHORIZE_MESSAGE = (
    "🔐 Gmail connection expired or was revoked. "
    "Please run `/bill connect` to reauthorize."
)
RATE_LIMIT_MESSAGE = (
    "⏳ Hit a rate limit while scanning your bills. "
    "Please wait a minute and try again."
)
GENERIC_ERROR_MESSAGE = (
    "❌ An error occurred while scanning your bills. Please try again later."
)


def format_date(value: datetime) -> str:
    """Short calendar date, e.g. "15 Jan"."""
    return f"{value.day} {value.strftime('%b')}"


def format_amount(amount: Decimal) -> str:
    return f"${amount:.2f}"


def latest_per_type(bills: Iterable[ParsedBill]) -> dict[BillType, ParsedBill]:
    """Keep the most recent bill (by issue date) for each type."""
    latest: dict[BillType, ParsedBill] = {}
    for bill in bills:
        current = latest.get(bill.type)
        if current is None or bill.issue_date > current.issue_date:
            latest[bill.type] = bill
    return latest


def format_summary(bills: list[ParsedBill], days_back: int = 30) -> str:
    """Render one line per bill type plus the total of the displayed bills."""
    if not bills:
        return f"📭 No bills found in the last {days_back} days."

    latest = latest_per_type(bills)
    lines = [f"📊 **Bills for last {days_back} days**", ""]
    total = Decimal("0")

    for bill_type in BillType:
        bill = latest.get(bill_type)
        if bill is None:
            continue
        icon, label = BILL_LABELS[bill_type]
        lines.append(
            f"{icon} **{label}:** {format_amount(bill.amount)} ({format_date(bill.issue_date)})"
        )
        total += bill.amount

    lines.append("")
    lines.append(f"**Total: {format_amount(total)}**")
    return "\n".join(lines)


def format_error(error: Union[BaseException, str]) -> str:
    """Map a run failure to a single friendly chat line."""
    if isinstance(error, StorageError):
        # Operational fault, not user-fixable
        return f"⚠️ Storage error: {error}"

    message = str(error).lower()
    if "oauth" in message or "token" in message or "unauthorized" in message:
        return REAUTHORIZE_MESSAGE
    if "rate limit" in message:
        return RATE_LIMIT_MESSAGE
    return GENERIC_ERROR_MESSAGE
