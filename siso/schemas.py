"""
Request and response bodies of the siso HTTP API.

Python attributes are snake_case; the JSON wire format is camelCase via
field aliases.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CreateChatRequest(BaseModel):
    """Body of POST /chats."""
    my_user_id: str = Field(..., alias="myUserId", description="Requesting user id")
    other_user_id: str = Field(..., alias="otherUserId", description="Id of the other participant")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [{"myUserId": "aaa111", "otherUserId": "bbb222"}]
        },
    }


class SendMessageRequest(BaseModel):
    """
    Body of POST /messages.

    content is plain text or an image data URI ("data:image/png;base64,...").
    No size limit is enforced server-side.
    """
    chat_id: str = Field(..., alias="chatId")
    sender_id: str = Field(..., alias="senderId")
    receiver_id: str = Field(..., alias="receiverId")
    content: str = Field(..., description="Text or image data URI")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {"chatId": "c1", "senderId": "aaa111", "receiverId": "bbb222", "content": "hello"}
            ]
        },
    }


class ProfileRequest(BaseModel):
    """Body of POST /users/profile."""
    user_id: str = Field(..., alias="userId")
    display_name: str = Field(..., alias="displayName")

    model_config = {"populate_by_name": True}


class AdminStatsRequest(BaseModel):
    """Body of POST /admin/stats."""
    admin_code: Optional[str] = Field(None, alias="adminCode")
    user_id: Optional[str] = Field(None, alias="userId")

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class OkResponse(BaseModel):
    ok: bool = True


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class ChatIdResponse(BaseModel):
    chat_id: str = Field(..., alias="chatId", serialization_alias="chatId")

    model_config = {"populate_by_name": True}


class ChatResponse(BaseModel):
    """A chat as listed by GET /chats."""
    id: str
    user_a_id: str = Field(..., alias="userAId", serialization_alias="userAId")
    user_b_id: str = Field(..., alias="userBId", serialization_alias="userBId")
    created_at: int = Field(..., alias="createdAt", serialization_alias="createdAt")

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,  # Allow creating from ORM objects
    }


class SendMessageResponse(BaseModel):
    ok: bool = True
    id: str = Field(..., description="New message id")


class MessageResponse(BaseModel):
    """
    A decrypted inbox message.

    kind is "text", "image" (content is a data URI) or "error" when the
    stored row could not be decrypted (content is a placeholder).
    """
    id: str
    chat_id: str = Field(..., alias="chatId", serialization_alias="chatId")
    sender_id: str = Field(..., alias="senderId", serialization_alias="senderId")
    receiver_id: str = Field(..., alias="receiverId", serialization_alias="receiverId")
    content: str
    kind: Literal["text", "image", "error"]
    created_at: int = Field(..., alias="createdAt", serialization_alias="createdAt")

    model_config = {"populate_by_name": True}


class ProfileResponse(BaseModel):
    id: str
    display_name: str = Field(..., alias="displayName", serialization_alias="displayName")
    updated_at: int = Field(..., alias="updatedAt", serialization_alias="updatedAt")

    model_config = {"populate_by_name": True, "from_attributes": True}


class UserMatchResponse(BaseModel):
    id: str
    display_name: str = Field(..., alias="displayName", serialization_alias="displayName")

    model_config = {"populate_by_name": True, "from_attributes": True}


class AdminStatsResponse(BaseModel):
    """
    Response model for POST /admin/stats.

    Message counts cover messages not yet viewed (viewing deletes them).
    mySentMessages is null when no userId was given.
    """
    user_count: int = Field(..., ge=0, alias="userCount", serialization_alias="userCount")
    chat_count: int = Field(..., ge=0, alias="chatCount", serialization_alias="chatCount")
    message_count: int = Field(..., ge=0, alias="messageCount", serialization_alias="messageCount")
    messages_last_24h: int = Field(..., ge=0, alias="messagesLast24h", serialization_alias="messagesLast24h")
    messages_last_7d: int = Field(..., ge=0, alias="messagesLast7d", serialization_alias="messagesLast7d")
    my_sent_messages: Optional[int] = Field(None, alias="mySentMessages", serialization_alias="mySentMessages")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
