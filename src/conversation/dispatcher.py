"""
Inbound event routing.

EventDispatcher turns parsed channel events into dialogue actions and
replies with plain text. It is the only place where errors from the
dialogue and the ledger are turned into user-facing messages.
"""

from datetime import date, time
from typing import Callable, Dict, Optional

from loguru import logger

from error_handling.exceptions import BookingSystemError, DeliveryError
from error_handling.handlers import GENERIC_ERROR_MESSAGE, log_error, user_message_for
from error_handling.logging_config import log_conversation_event
from models.schemas import InboundEvent
from notifications import messages
from notifications.gateway import MessagingGateway

from .state_manager import ConversationSession
from .states import SessionState

BOOKING_KEYWORDS = ("予約", "よやく", "reservation", "book", "booking")
LIST_KEYWORDS = ("my reservations", "my reservation", "my bookings", "予約確認")
DATE_PICKER_DAYS = 14
DATE_PICKER_LIMIT = 12

FaqResponder = Callable[[str], Optional[str]]


def is_booking_request(text: str) -> bool:
    text = text.lower()
    return any(keyword in text for keyword in BOOKING_KEYWORDS)


def is_listing_request(text: str) -> bool:
    text = text.lower()
    return any(keyword in text for keyword in LIST_KEYWORDS)


class EventDispatcher:
    """
    Routes inbound events to the booking dialogue.

    Attributes:
        conversation: Booking session state machine
        gateway: Messaging gateway replies go out through
        faq_responder: Optional callable answering free-text questions
    """

    def __init__(
        self,
        conversation: ConversationSession,
        gateway: MessagingGateway,
        faq_responder: Optional[FaqResponder] = None,
    ):
        self.conversation = conversation
        self.ledger = conversation.ledger
        self.calendar = conversation.calendar
        self.gateway = gateway
        self.faq_responder = faq_responder
        self.shop_name = self.ledger.settings.shop_name

        self._postback_handlers: Dict[str, Callable[[InboundEvent], str]] = {
            "select_date": self._on_select_date,
            "select_time": self._on_select_time,
            "set_guest_count": self._on_set_guest_count,
            "confirm": self._on_confirm,
            "cancel": self._on_cancel_dialogue,
            "restart": self._on_cancel_dialogue,
            "back_to_date": self._on_back_to_date,
            "edit_reservation": self._on_edit_reservation,
            "cancel_reservation": self._on_cancel_reservation,
        }

    def handle(self, event: InboundEvent) -> str:
        """
        Process one inbound event and reply to it.

        Returns:
            The reply text that was sent
        """
        try:
            if event.kind == "follow":
                reply = messages.welcome_message(self.shop_name, event.display_name)
            elif event.kind == "text":
                reply = self._on_text(event)
            else:
                reply = self._on_postback(event)
        except BookingSystemError as e:
            log_conversation_event(
                "REJECTED",
                user_id=event.user_identity,
                details={"error": type(e).__name__, "kind": event.kind},
            )
            reply = messages.error_message(user_message_for(e))
        except ValueError as e:
            logger.warning(f"Malformed {event.kind} payload from {event.user_identity}: {e}")
            reply = messages.error_message("That selection could not be read.")
        except Exception as e:
            log_error(e, {"operation": "handle_event", "user": event.user_identity, "kind": event.kind})
            reply = messages.error_message(GENERIC_ERROR_MESSAGE)

        self._reply(event, reply)
        return reply

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _on_text(self, event: InboundEvent) -> str:
        text = event.text
        session = self.conversation.get(event.user_identity)

        if session is not None and session.state == SessionState.CONFIRMING and text:
            updated = self.conversation.set_special_requests(event.user_identity, text)
            if updated is None:
                return messages.session_expired_message()
            if not updated.is_complete():
                return messages.guest_count_prompt(
                    updated.selected_date, updated.selected_time, self.conversation.max_guest_count
                )
            return messages.confirmation_summary(updated)

        if is_listing_request(text):
            return messages.reservations_list(self.ledger.get_user_reservations(event.user_identity))

        if is_booking_request(text):
            self.conversation.start(event.user_identity)
            return self._date_picker()

        if self.faq_responder is not None:
            answer = self.faq_responder(text)
            if answer:
                return answer

        return messages.help_message()

    # ------------------------------------------------------------------
    # Postbacks
    # ------------------------------------------------------------------

    def _on_postback(self, event: InboundEvent) -> str:
        action = event.data.get("action")
        handler = self._postback_handlers.get(action)
        if handler is None:
            logger.info(f"Unknown postback action '{action}' from {event.user_identity}")
            return messages.help_message()
        return handler(event)

    def _on_select_date(self, event: InboundEvent) -> str:
        day = date.fromisoformat(self._require(event, "date"))
        session = self.conversation.choose_date(event.user_identity, day)
        if session is None:
            return messages.session_expired_message()
        return messages.time_picker(day, self.ledger.get_available_slots(day))

    def _on_select_time(self, event: InboundEvent) -> str:
        at = time.fromisoformat(self._require(event, "time"))
        session = self.conversation.choose_time(event.user_identity, at)
        if session is None:
            return messages.session_expired_message()
        if session.guest_count is not None:
            # Editing keeps the previous guest count until changed
            return messages.confirmation_summary(session)
        return messages.guest_count_prompt(session.selected_date, at, self.conversation.max_guest_count)

    def _on_set_guest_count(self, event: InboundEvent) -> str:
        count = int(self._require(event, "count"))
        session = self.conversation.set_guest_count(event.user_identity, count)
        if session is None:
            return messages.session_expired_message()
        return messages.confirmation_summary(session)

    def _on_confirm(self, event: InboundEvent) -> str:
        session = self.conversation.get(event.user_identity)
        if session is None:
            return messages.session_expired_message()

        reservation = self.conversation.confirm(event.user_identity, event.display_name)
        if reservation is None:
            return messages.session_expired_message()
        if session.is_editing:
            return messages.reservation_updated(reservation)
        return messages.reservation_complete(reservation)

    def _on_cancel_dialogue(self, event: InboundEvent) -> str:
        self.conversation.cancel(event.user_identity)
        return messages.dialogue_cancelled_message()

    def _on_back_to_date(self, event: InboundEvent) -> str:
        session = self.conversation.back_to_date(event.user_identity)
        if session is None:
            return messages.session_expired_message()
        return self._date_picker()

    def _on_edit_reservation(self, event: InboundEvent) -> str:
        reservation = self._owned_reservation(event)
        if reservation is None:
            return messages.error_message("That reservation could not be found.")
        self.conversation.start_edit(event.user_identity, reservation)
        return self._date_picker()

    def _on_cancel_reservation(self, event: InboundEvent) -> str:
        reservation = self._owned_reservation(event)
        if reservation is None:
            return messages.error_message("That reservation could not be found.")
        cancelled = self.ledger.cancel_reservation(reservation.id)
        return messages.reservation_cancelled(cancelled)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owned_reservation(self, event: InboundEvent):
        """The user's upcoming reservation named in the postback, if any."""
        reservation_id = self._require(event, "reservation_id")
        for reservation in self.ledger.get_user_reservations(event.user_identity):
            if reservation.id == reservation_id or reservation.short_id == reservation_id:
                return reservation
        return None

    def _date_picker(self) -> str:
        dates = self.calendar.get_available_dates(DATE_PICKER_DAYS)[:DATE_PICKER_LIMIT]
        return messages.date_picker(dates)

    @staticmethod
    def _require(event: InboundEvent, key: str) -> str:
        value = event.data.get(key)
        if not value:
            raise ValueError(f"postback is missing '{key}'")
        return value

    def _reply(self, event: InboundEvent, text: str) -> None:
        try:
            if event.reply_token:
                self.gateway.reply_to(event.reply_token, text)
            else:
                self.gateway.send_direct(event.user_identity, text)
        except DeliveryError as e:
            log_error(e, {"operation": "reply", "user": event.user_identity})
