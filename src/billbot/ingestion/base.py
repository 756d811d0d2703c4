"""Abstract base class for mailbox access."""

from abc import ABC, abstractmethod

from ..models import BillAttachment, MessageStub


class MailSource(ABC):
    """Abstract interface for searching a mailbox and fetching attachments."""

    @abstractmethod
    def search(self, token: str, query: str) -> list[MessageStub]:
        """Search the mailbox.

        Args:
            token: OAuth2 access token
            query: Provider search query

        Returns:
            list[MessageStub]: Matching messages (may be empty)

        Raises:
            AuthError: If the token is rejected
            SearchError: If the search fails
        """
        pass

    @abstractmethod
    def get_message(self, token: str, message_id: str, fmt: str = "full") -> dict:
        """Fetch a message with its headers and attachment metadata.

        Args:
            token: OAuth2 access token
            message_id: Provider message ID
            fmt: "full" for the whole payload tree, "metadata" for headers only

        Returns:
            dict: Provider message resource

        Raises:
            FetchError: If the message cannot be fetched
        """
        pass

    @abstractmethod
    def get_attachment(
        self,
        token: str,
        message_id: str,
        attachment_id: str,
        mime_type: str = "application/pdf",
    ) -> BillAttachment:
        """Download attachment bytes.

        Args:
            token: OAuth2 access token
            message_id: Provider message ID
            attachment_id: Provider attachment ID
            mime_type: MIME type declared in the message payload

        Returns:
            BillAttachment: Decoded attachment

        Raises:
            FetchError: If the download fails
        """
        pass
