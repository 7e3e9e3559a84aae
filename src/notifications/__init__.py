"""
Notifications package for the reservation bot.

Provides the messaging gateway boundary and plain-text message rendering.
"""
from .gateway import ConsoleGateway, MessagingGateway, send_direct_with_retry
from . import messages

__all__ = [
    "MessagingGateway",
    "ConsoleGateway",
    "send_direct_with_retry",
    "messages",
]
