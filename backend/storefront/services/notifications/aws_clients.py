"""
AWS SES client used by the e-mail notification channel.

Sending retries throttling and transport failures with exponential backoff.
Rejections that will not succeed on retry (unverified sender, rejected
message, denied access) fail on the first attempt.
"""

import time
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

CHARSET = "UTF-8"

PERMANENT_ERROR_CODES = frozenset(
    {
        "MessageRejected",
        "MailFromDomainNotVerified",
        "ConfigurationSetDoesNotExist",
        "AccessDenied",
    }
)


class SESClientError(Exception):
    """Raised when SES does not accept an e-mail."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


def build_ses_message(
    subject: str, body_text: str, body_html: Optional[str] = None
) -> dict[str, Any]:
    """Build the ``Message`` argument of ``SendEmail``."""
    body: dict[str, Any] = {"Text": {"Data": body_text, "Charset": CHARSET}}
    if body_html:
        body["Html"] = {"Data": body_html, "Charset": CHARSET}
    return {"Subject": {"Data": subject, "Charset": CHARSET}, "Body": body}


class SESClient:
    """
    Thin wrapper over the boto3 SES client.

    Calls block; the e-mail channel runs them in a worker thread.
    """

    def __init__(
        self,
        region_name: Optional[str] = None,
        max_retries: int = 2,
        retry_backoff: float = 0.5,
        attempt_timeout: float = 3.0,
        client: Any = None,
    ) -> None:
        """
        Args:
            region_name: AWS region, defaults to ``aws_region`` from settings
            max_retries: Total number of attempts per e-mail
            retry_backoff: Delay before the second attempt, doubled after
                each further failure
            attempt_timeout: Longest a single SendEmail call may take; a
                retry is only started when it can finish before the deadline
            client: Preconfigured boto3 SES client, mainly for tests
        """
        self.max_retries = max(1, max_retries)
        self.retry_backoff = retry_backoff
        self.attempt_timeout = attempt_timeout

        if client is None:
            settings = get_settings()
            region_name = region_name or settings.aws_region
            # Credentials fall back to the default boto3 provider chain
            client = boto3.client(
                "ses",
                region_name=region_name,
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
                config=Config(
                    connect_timeout=attempt_timeout / 2,
                    read_timeout=attempt_timeout / 2,
                    retries={"mode": "standard", "total_max_attempts": 1},
                ),
            )
            logger.info("SES client created", region=region_name)
        self._client = client

    def send_email(
        self,
        to_addresses: list[str],
        subject: str,
        body_text: str,
        from_address: str,
        body_html: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> dict[str, Any]:
        """
        Send one e-mail.

        Args:
            deadline: ``time.monotonic()`` value by which sending must be
                over; retries that could not finish in time are not started

        Returns:
            ``{"message_id": ..., "status": "sent"}``

        Raises:
            SESClientError: On a permanent rejection, or once every attempt
                allowed by the retry count and deadline has failed
        """
        if not to_addresses:
            raise SESClientError("At least one recipient email address is required")

        params = {
            "Source": from_address,
            "Destination": {"ToAddresses": list(to_addresses)},
            "Message": build_ses_message(subject, body_text, body_html),
        }

        last_error: Optional[Exception] = None
        attempts = 0
        while attempts < self.max_retries:
            attempts += 1
            try:
                message_id = self._send_once(params, attempts)
            except (ClientError, BotoCoreError) as e:
                last_error = e
            else:
                return {"message_id": message_id, "status": "sent"}

            if attempts == self.max_retries:
                break
            delay = self.retry_backoff * 2 ** (attempts - 1)
            if deadline is not None and time.monotonic() + delay + self.attempt_timeout > deadline:
                logger.warning("SES retry skipped, deadline too close", attempts=attempts)
                break
            time.sleep(delay)

        raise SESClientError(
            f"Failed to send email after {attempts} attempts",
            recipients=len(to_addresses),
            last_error=str(last_error),
        ) from last_error

    def _send_once(self, params: dict[str, Any], attempt: int) -> str:
        try:
            response = self._client.send_email(**params)
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            logger.warning(
                "SES rejected email",
                attempt=attempt,
                error_code=code,
                error_message=error.get("Message"),
            )
            if code in PERMANENT_ERROR_CODES:
                raise SESClientError(
                    f"SES error: {error.get('Message', code)}",
                    error_code=code,
                ) from e
            raise
        except BotoCoreError as e:
            logger.warning("SES unreachable", attempt=attempt, error=str(e))
            raise

        logger.info("Email accepted by SES", message_id=response["MessageId"], attempt=attempt)
        return response["MessageId"]
