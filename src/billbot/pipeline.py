"""Bill scan pipeline - mailbox in, deduplicated bill history out.

Stages, each gated on the previous one:

1. Authorize  - refresh the user's OAuth token if it is close to expiry
2. Search     - query the mailbox for PDF mail from the bill sender
3. Filter     - read each subject and attach a bill type hint
4. Fetch      - download the first PDF of up to max_messages messages
5. Extract    - parse each PDF with the extraction model
6. Persist    - upsert bills and evict beyond the per-user cap
7. Notify     - deliver the summary, or a single error line

Item failures in Fetch and Extract drop only that message. Failures in
Authorize, Search and Persist end the run.
"""

import logging
import time
from datetime import timedelta
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Optional

from .config import Config
from .errors import AuthError, BillBotError, FetchError, NotificationError
from .ingestion.base import MailSource
from .ingestion.gmail import GmailSource, build_bill_query
from .ingestion.oauth import GoogleOAuthClient
from .metrics import MetricsCollector
from .models import (
    BillAttachment,
    CandidateMessage,
    PipelineRun,
    ScanMetrics,
    ScanResult,
)
from .notify.discord import DiscordNotifier, Notifier
from .notify.formatter import format_error, format_summary
from .processing.message_parser import MessageParser
from .processing.subject import BillSenderConfig, SubjectClassifier
from .semantic.inference import BillExtractor
from .storage.base import Database
from .storage.bills import BillStore
from .storage.database import DatabaseClient
from .storage.tokens import TokenStore

logger = logging.getLogger(__name__)


class BillScanPipeline:
    """Runs bill scans for one user at a time."""

    def __init__(
        self,
        token_store: TokenStore,
        bill_store: BillStore,
        mail: MailSource,
        extractor: BillExtractor,
        notifier: Optional[Notifier] = None,
        sender: Optional[BillSenderConfig] = None,
        classifier: Optional[SubjectClassifier] = None,
        days_back: int = 30,
        max_messages: int = 10,
        fetch_workers: int = 10,
        background_workers: int = 4,
    ):
        self.token_store = token_store
        self.bill_store = bill_store
        self.mail = mail
        self.extractor = extractor
        self.notifier = notifier
        self.sender = sender or BillSenderConfig()
        self.classifier = classifier or SubjectClassifier(self.sender.subject_keywords)
        self.days_back = days_back
        self.max_messages = max_messages
        self.fetch_workers = fetch_workers
        self.background_workers = background_workers
        self._executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def from_config(cls, config: Config, db: Optional[Database] = None) -> "BillScanPipeline":
        """Wire the production collaborators from configuration."""
        db = db or DatabaseClient(config.database_url)
        oauth = GoogleOAuthClient(
            client_id=config.google_oauth2_client_id,
            client_secret=config.google_oauth2_client_secret,
            redirect_uri=config.google_oauth2_redirect_uri,
            timeout=config.request_timeout_sec,
        )
        sender = BillSenderConfig(
            sender=config.bill_sender,
            provider_name=config.bill_provider_name,
        )
        extractor = BillExtractor(
            api_url=config.inference_api_url,
            api_key=config.inference_api_key,
            model_name=config.inference_model,
            provider_name=config.bill_provider_name,
            confidence_threshold=config.confidence_threshold,
            retry_delay_sec=config.retry_delay_sec,
            max_workers=config.extract_workers,
            timeout=config.request_timeout_sec * 2,
        )
        return cls(
            token_store=TokenStore(
                db, oauth, refresh_buffer=timedelta(seconds=config.refresh_buffer_sec)
            ),
            bill_store=BillStore(db, max_bills_per_user=config.max_bills_per_user),
            mail=GmailSource(timeout=config.request_timeout_sec),
            extractor=extractor,
            notifier=DiscordNotifier(config.discord_bot_token, timeout=config.request_timeout_sec),
            sender=sender,
            days_back=config.days_back,
            max_messages=config.max_messages,
            fetch_workers=config.fetch_workers,
        )

    # ========================================================================
    # Entry points
    # ========================================================================

    def start(
        self,
        user_id: str,
        channel_id: str,
        days_back: Optional[int] = None,
    ) -> Future:
        """Run a scan in the background and return immediately."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.background_workers, thread_name_prefix="bill-scan"
            )
        logger.info(f"Queued bill scan for user {user_id}")
        future = self._executor.submit(self.run, user_id, channel_id, days_back)
        future.add_done_callback(lambda f: self._log_background_failure(user_id, f))
        return future

    @staticmethod
    def _log_background_failure(user_id: str, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                f"Background bill scan for user {user_id} crashed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def run(
        self,
        user_id: str,
        channel_id: str,
        days_back: Optional[int] = None,
    ) -> ScanResult:
        """Execute a scan and deliver its result to the channel."""
        days_back = days_back if days_back is not None else self.days_back
        result = self.execute(user_id, days_back=days_back, channel_id=channel_id)

        text = self._format_result(user_id, result, days_back)
        self._notify(channel_id, text)
        return result

    def execute(
        self,
        user_id: str,
        days_back: Optional[int] = None,
        channel_id: Optional[str] = None,
    ) -> ScanResult:
        """Run stages 1-6. Never raises; failures are returned in the result."""
        run = PipelineRun(
            user_id=user_id,
            channel_id=channel_id,
            days_back=days_back if days_back is not None else self.days_back,
        )
        collector = MetricsCollector()
        metrics = ScanMetrics(user_id=user_id)
        start_time = time.perf_counter()

        try:
            logger.info(f"Starting bill scan for user {user_id} (last {run.days_back} days)")
            bills = self._run_stages(run, collector, metrics)
            result = ScanResult(success=True, bills=bills, metrics=metrics)
        except BillBotError as e:
            logger.error(f"Bill scan failed for user {user_id}: {e}")
            result = ScanResult(success=False, error=e, metrics=metrics)
        except Exception as e:
            logger.error(f"Unexpected error in bill scan for user {user_id}: {e}", exc_info=True)
            result = ScanResult(success=False, error=e, metrics=metrics)

        metrics.stage_times_sec = dict(collector.stage_times)
        metrics.duration_sec = time.perf_counter() - start_time
        logger.info(
            f"Bill scan for user {user_id} finished: success={result.success}, "
            f"candidates={metrics.candidates}, pdfs={metrics.pdfs_fetched}, "
            f"extracted={metrics.bills_extracted}, stored={metrics.bills_stored}, "
            f"duration={metrics.duration_sec:.2f}s"
        )
        return result

    # ========================================================================
    # Stages
    # ========================================================================

    def _run_stages(self, run: PipelineRun, collector: MetricsCollector, metrics: ScanMetrics):
        # Stage 1: Authorize
        collector.start_timer("authorize")
        token = self.token_store.refresh_if_needed(run.user_id).access_token
        collector.stop_timer("authorize")

        # Stage 2: Search
        collector.start_timer("search")
        query = build_bill_query(self.sender, run.days_back)
        run.candidates = self.mail.search(token, query)
        collector.stop_timer("search")
        metrics.candidates = len(run.candidates)
        logger.info(f"Found {len(run.candidates)} potential bill emails")

        if not run.candidates:
            return []

        # Stage 3: Filter
        collector.start_timer("filter")
        run.filtered = self._filter_by_subject(token, run)
        collector.stop_timer("filter")
        metrics.filtered = len(run.filtered)
        logger.info(f"{len(run.filtered)} emails passed subject filter")

        if not run.filtered:
            return []

        # Stage 4: Fetch
        collector.start_timer("fetch")
        run.attachments, metrics.fetch_failures = self._fetch_pdfs(
            token, run.filtered[: self.max_messages]
        )
        collector.stop_timer("fetch")
        metrics.pdfs_fetched = len(run.attachments)
        logger.info(f"Downloaded {len(run.attachments)} PDFs")

        if not run.attachments:
            return []

        # Stage 5: Extract
        collector.start_timer("extract")
        run.extracted = self.extractor.extract_many(run.attachments)
        collector.stop_timer("extract")
        metrics.bills_extracted = len(run.extracted)
        metrics.extraction_failures = len(run.attachments) - len(run.extracted)

        # Stage 6: Persist
        collector.start_timer("persist")
        metrics.bills_stored = self.bill_store.upsert_many(run.user_id, run.extracted)
        collector.stop_timer("persist")

        return [item.bill for item in run.extracted]

    def _filter_by_subject(self, token: str, run: PipelineRun) -> list[CandidateMessage]:
        """Attach a subject hint to every candidate.

        Unmatched subjects pass through; the extraction model decides.
        """
        filtered = []
        for stub in run.candidates:
            try:
                details = self.mail.get_message(token, stub.id, fmt="metadata")
            except FetchError as e:
                logger.warning(f"Failed to get details for message {stub.id}: {e}")
                continue

            subject = MessageParser.get_header(details, "Subject") or ""
            filtered.append(CandidateMessage(
                message_id=stub.id,
                subject=subject,
                subject_hint=self.classifier.classify(subject),
            ))
        return filtered

    def _fetch_pdfs(
        self,
        token: str,
        messages: list[CandidateMessage],
    ) -> tuple[list[BillAttachment], int]:
        """Download the first PDF of each message in bounded parallel."""
        pdfs: list[BillAttachment] = []
        failures = 0
        workers = max(1, min(self.fetch_workers, len(messages)))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_msg = {
                executor.submit(self._fetch_pdf, token, msg): msg
                for msg in messages
            }

            for future in as_completed(future_to_msg):
                msg = future_to_msg[future]
                try:
                    attachment = future.result()
                except AuthError:
                    raise
                except Exception as e:
                    failures += 1
                    logger.warning(f"Failed to download attachment for {msg.message_id}: {e}")
                    continue
                if attachment is not None:
                    pdfs.append(attachment)

        return pdfs, failures

    def _fetch_pdf(self, token: str, msg: CandidateMessage) -> Optional[BillAttachment]:
        details = self.mail.get_message(token, msg.message_id, fmt="full")
        info = MessageParser.first_pdf_attachment(details)
        if info is None:
            logger.debug(f"No PDF attachment in message {msg.message_id}")
            return None

        attachment = self.mail.get_attachment(
            token, msg.message_id, info.attachment_id, mime_type=info.mime_type or "application/pdf"
        )
        logger.debug(f"Downloaded {info.filename} ({attachment.size_bytes} bytes) from {msg.message_id}")
        return attachment.model_copy(update={
            "filename": info.filename,
            "subject_hint": msg.subject_hint,
        })

    def _format_result(self, user_id: str, result: ScanResult, days_back: int) -> str:
        if not result.success:
            return format_error(result.error)
        try:
            return format_summary(result.bills, days_back=days_back)
        except Exception as e:
            logger.error(f"Failed to format bill summary for user {user_id}: {e}", exc_info=True)
            return format_error(e)

    def _notify(self, channel_id: str, text: str) -> None:
        if self.notifier is None:
            logger.info(f"No notifier configured; result for channel {channel_id}:\n{text}")
            return
        try:
            self.notifier.deliver(channel_id, text)
        except NotificationError as e:
            logger.error(f"Failed to deliver result to channel {channel_id}: {e}")
