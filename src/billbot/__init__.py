"""Utility bill scanner - Gmail PDFs in, per-user bill history out."""

# Models
from .models import (
    # Extraction models
    BillType,
    ParsedBill,
    ExtractedBill,
    # Database models
    TokenRecord,
    BillRecord,
    # Processing models
    MessageStub,
    CandidateMessage,
    BillAttachment,
    PipelineRun,
    # Metrics
    ScanMetrics,
    ScanResult,
)

# Errors
from .errors import (
    BillBotError,
    AuthError,
    NoTokenError,
    RefreshFailedError,
    SearchError,
    FetchError,
    ExtractionError,
    StorageError,
    NotificationError,
)

# Processing
from .processing import MessageParser, SubjectClassifier, BillSenderConfig, classify

# Ingestion
from .ingestion import GmailSource, GoogleOAuthClient

# Semantic
from .semantic import BillExtractor

# Storage
from .storage import DatabaseClient, InMemoryDatabase, TokenStore, BillStore

# Delivery
from .notify import DiscordNotifier, format_summary, format_error

# Pipeline
from .pipeline import BillScanPipeline

# Configuration
from .config import Config

__version__ = "0.1.0"

__all__ = [
    # Models
    "BillType",
    "ParsedBill",
    "ExtractedBill",
    "TokenRecord",
    "BillRecord",
    "MessageStub",
    "CandidateMessage",
    "BillAttachment",
    "PipelineRun",
    "ScanMetrics",
    "ScanResult",
    # Errors
    "BillBotError",
    "AuthError",
    "NoTokenError",
    "RefreshFailedError",
    "SearchError",
    "FetchError",
    "ExtractionError",
    "StorageError",
    "NotificationError",
    # Components
    "MessageParser",
    "SubjectClassifier",
    "BillSenderConfig",
    "classify",
    "GmailSource",
    "GoogleOAuthClient",
    "BillExtractor",
    "DatabaseClient",
    "InMemoryDatabase",
    "TokenStore",
    "BillStore",
    "DiscordNotifier",
    "format_summary",
    "format_error",
    "BillScanPipeline",
    "Config",
]
