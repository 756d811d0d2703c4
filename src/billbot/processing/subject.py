"""Bill sender configuration and subject-line classification."""

from dataclasses import dataclass, field
from typing import Optional

from ..models import BillType

# Checked in BillType order; first match wins.
DEFAULT_SUBJECT_KEYWORDS: dict[BillType, tuple[str, ...]] = {
    BillType.ELECTRICITY: ("electricity", "power", "energy bill"),
    BillType.HOT_WATER: ("hot water", "gas", "heating"),
    BillType.WATER: ("water bill", "water usage"),
    BillType.INTERNET: ("internet", "broadband", "nbn"),
}


@dataclass
class BillSenderConfig:
    """Where bills come from and how their subjects are recognised."""

    sender: str = "hello@origin.com.au"
    provider_name: str = "Origin Energy"
    require_pdf: bool = True
    subject_keywords: dict[BillType, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_SUBJECT_KEYWORDS)
    )


class SubjectClassifier:
    """Keyword heuristic mapping a subject line to a bill type hint.

    A None result means "let the extraction model decide", not "not a bill".
    """

    def __init__(self, keywords: Optional[dict[BillType, tuple[str, ...]]] = None):
        keywords = keywords if keywords is not None else DEFAULT_SUBJECT_KEYWORDS
        self.keywords = {
            bill_type: tuple(kw.lower() for kw in keywords.get(bill_type, ()))
            for bill_type in BillType
        }

    def classify(self, subject: str) -> Optional[BillType]:
        normalized = (subject or "").lower()
        for bill_type in BillType:
            if any(kw in normalized for kw in self.keywords[bill_type]):
                return bill_type
        return None


_default_classifier = SubjectClassifier()


def classify(subject: str) -> Optional[BillType]:
    """Classify a subject line using the default keyword tables."""
    return _default_classifier.classify(subject)
