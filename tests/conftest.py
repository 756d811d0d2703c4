"""Shared fakes for the bill scanner tests."""

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import MagicMock

import pytest

from billbot.errors import FetchError
from billbot.ingestion.base import MailSource
from billbot.ingestion.oauth import OAuthTokens
from billbot.models import BillAttachment, MessageStub
from billbot.notify.discord import Notifier
from billbot.pipeline import BillScanPipeline
from billbot.processing.subject import BillSenderConfig
from billbot.semantic.inference import BillExtractor
from billbot.storage.bills import BillStore
from billbot.storage.memory import InMemoryDatabase
from billbot.storage.tokens import TokenStore

T0 = datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeOAuthClient:
    def __init__(self, tokens: Optional[OAuthTokens] = None, error: Optional[Exception] = None):
        self.tokens = tokens or OAuthTokens(access_token="fresh-access", expires_in=3600)
        self.error = error
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[tuple[str, str]] = []

    def refresh(self, refresh_token: str) -> OAuthTokens:
        self.refresh_calls.append(refresh_token)
        if self.error:
            raise self.error
        return self.tokens

    def exchange_code(self, code: str, code_verifier: str) -> OAuthTokens:
        self.exchange_calls.append((code, code_verifier))
        if self.error:
            raise self.error
        return self.tokens


class FakeMailSource(MailSource):
    """Mailbox backed by a dict of message id -> subject and PDF bytes."""

    def __init__(self):
        self.messages: dict[str, dict] = {}
        self.search_error: Optional[Exception] = None
        self.failing: set[str] = set()
        self.queries: list[str] = []
        self.tokens_seen: list[str] = []
        self.attachment_requests: list[str] = []

    def add(
        self,
        message_id: str,
        subject: str,
        pdf: Optional[bytes] = b"%PDF-1.4 bill",
        filename: str = "bill.pdf",
    ) -> None:
        self.messages[message_id] = {"subject": subject, "pdf": pdf, "filename": filename}

    def search(self, token: str, query: str) -> list[MessageStub]:
        self.tokens_seen.append(token)
        self.queries.append(query)
        if self.search_error:
            raise self.search_error
        return [MessageStub(id=message_id) for message_id in self.messages]

    def get_message(self, token: str, message_id: str, fmt: str = "full") -> dict:
        if fmt == "full" and message_id in self.failing:
            raise FetchError(f"Gmail API request failed: 500 for {message_id}", status_code=500)

        msg = self.messages[message_id]
        parts = [{"partId": "0", "mimeType": "text/plain", "filename": "", "body": {"size": 10}}]
        if msg["pdf"] is not None:
            parts.append({
                "partId": "1",
                "mimeType": "application/pdf",
                "filename": msg["filename"],
                "body": {"attachmentId": f"att-{message_id}", "size": len(msg["pdf"])},
            })
        return {
            "id": message_id,
            "payload": {
                "mimeType": "multipart/mixed",
                "headers": [
                    {"name": "From", "value": "Origin Energy <hello@origin.com.au>"},
                    {"name": "Subject", "value": msg["subject"]},
                ],
                "parts": parts,
            },
        }

    def get_attachment(
        self,
        token: str,
        message_id: str,
        attachment_id: str,
        mime_type: str = "application/pdf",
    ) -> BillAttachment:
        self.attachment_requests.append(message_id)
        return BillAttachment(
            message_id=message_id,
            mime_type=mime_type,
            data=self.messages[message_id]["pdf"],
        )


class FakeNotifier(Notifier):
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.delivered: list[tuple[str, str]] = []

    def deliver(self, channel_id: str, text: str) -> None:
        if self.error:
            raise self.error
        self.delivered.append((channel_id, text))


def completion(content: str) -> MagicMock:
    """Chat completion response carrying content."""
    response = MagicMock()
    message = MagicMock()
    message.content = content
    choice = MagicMock()
    choice.message = message
    response.choices = [choice]
    return response


def bill_json(bill_type: str, amount, issue_date: str, confidence: float = 0.95) -> str:
    return json.dumps({
        "type": bill_type,
        "amount": amount,
        "issue_date": issue_date,
        "confidence": confidence,
    })


def stub_openai(*responses) -> MagicMock:
    """OpenAI client returning (or raising) responses in call order."""
    client = MagicMock()
    client.chat.completions.create.side_effect = [
        r if isinstance(r, Exception) else completion(r) for r in responses
    ]
    return client


def pdf_routed_openai(bills_by_pdf: dict[bytes, object]) -> MagicMock:
    """OpenAI client answering by the PDF bytes in the request.

    Extraction runs concurrently, so call order is not stable.
    """

    def create(**kwargs):
        file_data = kwargs["messages"][0]["content"][1]["file"]["file_data"]
        pdf = base64.b64decode(file_data.split(",", 1)[1])
        answer = bills_by_pdf[pdf]
        if isinstance(answer, Exception):
            raise answer
        return completion(answer)

    client = MagicMock()
    client.chat.completions.create.side_effect = create
    return client


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def oauth():
    return FakeOAuthClient()


@pytest.fixture
def mail():
    return FakeMailSource()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def token_store(db, oauth, clock):
    return TokenStore(db, oauth, clock=clock)


@pytest.fixture
def bill_store(db, clock):
    return BillStore(db, clock=clock)


@pytest.fixture
def connected_user(token_store):
    """User with a token valid for another hour."""
    token_store.store("user-1", "access-1", "refresh-1", expires_in=3600)
    return "user-1"


@pytest.fixture
def make_pipeline(token_store, bill_store, mail, notifier):
    def build(openai_client, **kwargs) -> BillScanPipeline:
        kwargs.setdefault("notifier", notifier)
        extractor = BillExtractor(
            api_url="http://localhost",
            api_key="test",
            retry_delay_sec=0,
            client=openai_client,
        )
        return BillScanPipeline(
            token_store=token_store,
            bill_store=bill_store,
            mail=mail,
            extractor=extractor,
            sender=BillSenderConfig(),
            **kwargs,
        )

    return build
