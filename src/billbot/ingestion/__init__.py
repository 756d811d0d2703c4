"""Mailbox access and OAuth."""

from .base import MailSource
from .gmail import GmailSource, build_bill_query
from .oauth import GoogleOAuthClient, OAuthTokens

__all__ = ["MailSource", "GmailSource", "build_bill_query", "GoogleOAuthClient", "OAuthTokens"]
