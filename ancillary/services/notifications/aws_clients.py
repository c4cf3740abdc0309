"""
AWS SES client wrapper for cancellation emails.

Wraps the boto3 SES client with recipient validation, bounded retries with
exponential backoff for throttling and connection errors, and structured
logging of every attempt.
"""

import time
from typing import Any, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
)

from ancillary.core.config import Settings, get_settings
from ancillary.core.logging import get_logger

logger = get_logger(__name__)

# SES error codes that will not succeed on retry
NON_RETRYABLE_SES_ERRORS = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
        "AccountSendingPausedException",
    }
)


class SESClientError(Exception):
    """Raised when SES could not accept an email."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.service = "SES"
        self.context = context


class SESClient:
    """
    AWS SES client with retry logic.

    The underlying boto3 client can be injected, which is how tests replace
    the network.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Any = None,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
    ) -> None:
        """
        Initialize SES client.

        Args:
            settings: Settings supplying credentials, region and sender
            client: Pre-built boto3 SES client (built from settings if None)
            max_retries: Maximum number of send attempts
            retry_backoff: Initial backoff in seconds, doubled per attempt
        """
        self.settings = settings or get_settings()
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

        self._client = client or boto3.client(
            "ses",
            aws_access_key_id=self.settings.aws_access_key_id,
            aws_secret_access_key=self.settings.aws_secret_access_key,
            region_name=self.settings.aws_region,
        )

        logger.info(
            "SES client initialized",
            region=self.settings.aws_region,
            max_retries=max_retries,
        )

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_text: str,
        from_address: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Send a plain text email.

        Args:
            to_addresses: Recipient addresses
            subject: Email subject
            body_text: Plain text body
            from_address: Sender (defaults to the configured SES sender)

        Returns:
            Dictionary with the SES message id and delivery status

        Raises:
            SESClientError: If no recipient is given, SES rejects the
                message, or every attempt failed
        """
        from_address = from_address or self.settings.ses_from_email

        if not to_addresses:
            raise SESClientError(
                "At least one recipient email address is required",
                subject=subject,
            )

        send_params: dict[str, Any] = {
            "Source": from_address,
            "Destination": {"ToAddresses": to_addresses},
            "Message": {
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body_text, "Charset": "UTF-8"}},
            },
        }

        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._client.send_email(**send_params)
                logger.info(
                    "Email sent via SES",
                    message_id=response["MessageId"],
                    to_addresses=to_addresses,
                    attempt=attempt,
                )
                return {
                    "message_id": response["MessageId"],
                    "status": "sent",
                    "to_addresses": to_addresses,
                    "subject": subject,
                }
            except ClientError as e:
                error = e.response.get("Error", {})
                error_code = error.get("Code", "Unknown")
                logger.warning(
                    "SES rejected send attempt",
                    attempt=attempt,
                    error_code=error_code,
                    error_message=error.get("Message", str(e)),
                )
                if error_code in NON_RETRYABLE_SES_ERRORS:
                    raise SESClientError(
                        f"SES error: {error.get('Message', str(e))}",
                        error_code=error_code,
                        to_addresses=to_addresses,
                    ) from e
                last_error = e
            except (EndpointConnectionError, BotoCoreError) as e:
                logger.warning(
                    "SES connection error",
                    attempt=attempt,
                    error=str(e),
                )
                last_error = e

            if attempt < self.max_retries:
                time.sleep(self.retry_backoff * (2 ** (attempt - 1)))

        raise SESClientError(
            f"Failed to send email after {self.max_retries} attempts",
            to_addresses=to_addresses,
            last_error=str(last_error),
        ) from last_error


def get_ses_client(
    settings: Optional[Settings] = None,
    max_retries: int = 3,
    retry_backoff: float = 1.0,
) -> SESClient:
    """
    Get SES client instance.

    Returns:
        Configured SES client instance
    """
    return SESClient(
        settings=settings,
        max_retries=max_retries,
        retry_backoff=retry_backoff,
    )
