"""
Conversation package for managing the booking dialogue.

This package provides:
- SessionState: Enum for dialogue states
- BookingSession: Pydantic model holding the in-progress draft
- SessionStore / InMemorySessionStore: Keyed session storage with expiry
- ConversationSession: State machine applying user actions to sessions
- EventDispatcher: Routes inbound channel events into the dialogue
"""

from .states import SessionState
from .context import BookingSession
from .session_store import SessionStore, InMemorySessionStore
from .state_manager import ConversationSession
from .dispatcher import EventDispatcher

__all__ = [
    "SessionState",
    "BookingSession",
    "SessionStore",
    "InMemorySessionStore",
    "ConversationSession",
    "EventDispatcher",
]
