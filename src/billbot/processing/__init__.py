"""Subject classification and message parsing."""

from .message_parser import AttachmentInfo, MessageParser
from .subject import BillSenderConfig, SubjectClassifier, classify

__all__ = ["AttachmentInfo", "MessageParser", "BillSenderConfig", "SubjectClassifier", "classify"]
