"""Messaging/Realtime schemas."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from config import GROUP_MESSAGE_MAX_LENGTH, PRIVATE_CHAT_MAX_MESSAGE_LENGTH


class UserSummary(BaseModel):
    id: Optional[int] = None
    name: str
    username: Optional[str] = None
    avatar: Optional[str] = None


# --- Direct messages ---


class SendMessageRequest(BaseModel):
    receiver_id: int = Field(..., description="Recipient account id", example=1234567890)
    content: Optional[str] = Field(
        None, max_length=PRIVATE_CHAT_MAX_MESSAGE_LENGTH, example="Hello there"
    )
    media_url: Optional[str] = Field(
        None, max_length=2048, example="https://cdn.example.com/u/42/photo.jpg"
    )
    message_type: str = Field("text", max_length=32, example="text")
    reply_to_id: Optional[int] = Field(None, example=None)

    class Config:
        json_schema_extra = {
            "example": {
                "receiver_id": 1234567890,
                "content": "Hello there",
                "message_type": "text",
            }
        }


class MessageOut(BaseModel):
    id: int
    sender_id: int
    receiver_id: int
    content: Optional[str] = None
    media_url: Optional[str] = None
    message_type: str
    reply_to_id: Optional[int] = None
    is_delivered: bool
    delivered_at: Optional[str] = None
    is_read: bool
    read_at: Optional[str] = None
    is_deleted: bool
    created_at: str


class SendMessageResponse(BaseModel):
    message: MessageOut
    broadcast: bool = Field(
        ..., description="False when the message was stored but the chat channel push failed"
    )
    notified: bool = Field(
        False, description="Whether the recipient's user-notifications channel received the event"
    )


class ConversationResponse(BaseModel):
    channel: str
    user: UserSummary
    messages: List[MessageOut]


class ConversationSummary(BaseModel):
    channel: str
    user: UserSummary
    last_message: MessageOut
    unread_count: int = Field(0, example=2)


class ConversationListResponse(BaseModel):
    conversations: List[ConversationSummary]


class UnreadCount(BaseModel):
    sender_id: int
    count: int


class UnreadCountsResponse(BaseModel):
    total: int
    by_sender: List[UnreadCount]


class MarkDeliveredResponse(BaseModel):
    message_id: int
    changed: bool
    is_delivered: bool
    delivered_at: Optional[str] = None
    broadcast: bool = False


class MarkReadRequest(BaseModel):
    sender_id: Optional[int] = Field(
        None, description="Mark every unread message from this sender", example=1234567890
    )
    message_ids: Optional[List[int]] = Field(None, max_length=500, example=[101, 102])


class MarkReadResponse(BaseModel):
    updated: int
    message_ids: List[int]
    read_at: Optional[str] = None
    broadcast: bool = False


class DeleteMessageRequest(BaseModel):
    scope: Literal["self", "everyone"] = Field("self", example="everyone")


class DeleteMessageResponse(BaseModel):
    message_id: int
    scope: str
    changed: bool
    broadcast: bool = False


class PrivateTypingRequest(BaseModel):
    receiver_id: int = Field(..., example=1234567890)
    is_typing: bool = Field(True, example=True)


class TypingRequest(BaseModel):
    is_typing: bool = Field(True, example=True)


class TypingResponse(BaseModel):
    channel: str
    is_typing: bool
    broadcast: bool


# --- Group messages ---


class SendGroupMessageRequest(BaseModel):
    content: Optional[str] = Field(None, max_length=GROUP_MESSAGE_MAX_LENGTH, example="Hi all")
    media_url: Optional[str] = Field(None, max_length=2048)
    message_type: str = Field("text", max_length=32, example="text")
    reply_to_id: Optional[int] = Field(None, example=None)


class GroupMessageOut(BaseModel):
    id: int
    group_id: int
    sender: UserSummary
    content: Optional[str] = None
    media_url: Optional[str] = None
    message_type: str
    reply_to_id: Optional[int] = None
    is_deleted: bool
    is_pinned: bool = False
    created_at: str


class SendGroupMessageResponse(BaseModel):
    message: GroupMessageOut
    broadcast: bool


class GroupMessagesResponse(BaseModel):
    group_id: int
    messages: List[GroupMessageOut]


class PinMessageRequest(BaseModel):
    message_id: int = Field(..., example=55)


class PinMessageResponse(BaseModel):
    message_id: int
    pinned: bool
    broadcast: bool


# --- Presence ---


class UpdatePresenceRequest(BaseModel):
    is_online: bool = Field(True, example=True)
    session_id: Optional[str] = Field(None, max_length=128, example="tab-6f1c")


class MarkOfflineRequest(BaseModel):
    session_id: Optional[str] = Field(None, max_length=128, example="tab-6f1c")


class PresenceUpdateResponse(BaseModel):
    updated: bool
    is_online: Optional[bool] = None
    online_count: Optional[int] = None
    broadcast: bool = False


class PresenceMember(BaseModel):
    user: UserSummary
    is_online: bool
    last_active: Optional[str] = None


class OnlineMembersResponse(BaseModel):
    group_id: int
    count: int
    members: List[PresenceMember]


class PresenceStatsResponse(BaseModel):
    group_id: int
    total_members: int
    online_members: int
    offline_members: int
    online_percentage: float
    members: List[PresenceMember]
