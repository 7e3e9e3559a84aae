"""
Pydantic models for data validation and serialization.
"""
from datetime import date, datetime, time
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class TimeSlotInfo(BaseModel):
    """
    Pydantic model for time slot availability information.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    slot_date: date
    start_time: time
    end_time: time
    capacity: int
    available: int
    is_available: bool = Field(..., description="Whether at least one seat is left")


class InboundEvent(BaseModel):
    """
    A channel event after the gateway verified and parsed it.

    Text events carry the message text as payload; postback events carry the
    decoded key/value data; follow events carry no payload.
    """
    user_identity: str = Field(..., min_length=1)
    kind: Literal["text", "postback", "follow"]
    payload: Union[str, Dict[str, str], None] = None
    reply_token: Optional[str] = None
    display_name: Optional[str] = None
    received_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        return self.payload.strip() if isinstance(self.payload, str) else ""

    @property
    def data(self) -> Dict[str, str]:
        return self.payload if isinstance(self.payload, dict) else {}
