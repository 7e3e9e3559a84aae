"""
Messaging gateway boundary.

The core only needs two outgoing calls: a direct (push) message to a user
and a reply to an inbound event. Channel specifics such as signatures,
rich rendering and profile lookups belong to the concrete gateway.
"""
from abc import ABC, abstractmethod

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from error_handling.exceptions import DeliveryError


class MessagingGateway(ABC):
    """
    Outgoing side of the messaging channel.

    Implementations raise DeliveryError on failure, with ``retryable`` set
    when the failure is transient.
    """

    @abstractmethod
    def send_direct(self, user_identity: str, message: str) -> None:
        """Push a message to a user outside any conversation turn."""

    @abstractmethod
    def reply_to(self, reply_token: str, message: str) -> None:
        """Answer an inbound event."""


class ConsoleGateway(MessagingGateway):
    """
    Gateway that writes outgoing messages to the log.

    Used when no messaging channel is configured.
    """

    def send_direct(self, user_identity: str, message: str) -> None:
        logger.info(f"[push -> {user_identity}]\n{message}")

    def reply_to(self, reply_token: str, message: str) -> None:
        logger.info(f"[reply -> {reply_token}]\n{message}")


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, DeliveryError) and error.retryable


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)
def send_direct_with_retry(gateway: MessagingGateway, user_identity: str, message: str) -> None:
    """
    Push a message, retrying transient delivery failures.

    Args:
        gateway: Messaging gateway to deliver through
        user_identity: Recipient channel identity
        message: Rendered text

    Raises:
        DeliveryError: If delivery still fails after retries, or fails permanently
    """
    try:
        gateway.send_direct(user_identity, message)
    except DeliveryError as e:
        logger.warning(f"Delivery to {user_identity} failed (retryable={e.retryable}): {e.message}")
        raise
