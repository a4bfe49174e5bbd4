"""Call signaling schemas."""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

from routers.messaging.schemas import UserSummary


class InitiateCallRequest(BaseModel):
    # Presence of both ids is checked by the service so a missing one is a 400
    receiver_id: Optional[int] = Field(None, example=1234567890)
    caller_peer_id: Optional[str] = Field(None, max_length=256, example="peer-a1b2c3")
    call_type: str = Field("voice", example="video")

    class Config:
        json_schema_extra = {
            "example": {
                "receiver_id": 1234567890,
                "caller_peer_id": "peer-a1b2c3",
                "call_type": "video",
            }
        }


class AcceptCallRequest(BaseModel):
    call_id: Optional[int] = Field(None, example=17)
    caller_id: Optional[int] = Field(
        None, description="Accept the newest ringing call from this caller", example=None
    )
    receiver_peer_id: Optional[str] = Field(None, max_length=256, example="peer-d4e5f6")


class CallIdRequest(BaseModel):
    call_id: int = Field(..., example=17)


class SignalRequest(BaseModel):
    call_id: int = Field(..., example=17)
    type: Literal["offer", "answer", "ice-candidate"] = Field(..., example="offer")
    payload: Any = Field(..., description="Opaque WebRTC payload, relayed verbatim")


class CallOut(BaseModel):
    id: int
    caller_id: int
    receiver_id: int
    caller: UserSummary
    receiver: UserSummary
    call_type: str
    status: str
    caller_peer_id: Optional[str] = None
    receiver_peer_id: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration: Optional[int] = None


class CallResponse(BaseModel):
    call: CallOut
    changed: bool = True
    broadcast: bool = False


class CallListResponse(BaseModel):
    calls: List[CallOut]


class SignalResponse(BaseModel):
    call_id: int
    channel: str
    type: str
    relayed: bool
