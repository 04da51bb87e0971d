from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from leaddesk.schemas.booking import BookingPayload, QuickReply, decode_booking_payload


class Message(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = "assistant"
    content: str = ""
    timestamp: Optional[str] = None
    quick_replies: Optional[list[QuickReply]] = Field(
        default=None, validation_alias=AliasChoices("quick_replies", "quickReplies")
    )
    booking: Optional[BookingPayload] = None
    audio_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("audio_url", "audioUrl"))

    @field_validator("content", mode="before")
    @classmethod
    def _content_to_text(cls, value):
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_to_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("booking", mode="before")
    @classmethod
    def _decode_booking(cls, value):
        return decode_booking_payload(value)

    @property
    def is_user(self) -> bool:
        return self.role == "user"


class ConversationData(BaseModel):
    model_config = ConfigDict(extra="allow")

    lead_id: str = Field(default="", validation_alias=AliasChoices("lead_id", "leadId"))
    conversation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("conversation_id", "conversationId")
    )
    messages: list[Message] = Field(default_factory=list)
    current_step: int = Field(default=0, validation_alias=AliasChoices("current_step", "currentStep"))
    parsed_fields: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("parsed_fields", "parsedFields")
    )
    required_infos: list[dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("required_infos", "looking_for")
    )
    collected_infos: list[dict[str, Any]] = Field(
        default_factory=list, validation_alias=AliasChoices("collected_infos", "collected")
    )

    @field_validator("lead_id", "conversation_id", mode="before")
    @classmethod
    def _id_to_text(cls, value):
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("messages", "required_infos", "collected_infos", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value if value is not None else []

    @field_validator("current_step", mode="before")
    @classmethod
    def _none_to_zero(cls, value):
        return value if value is not None else 0

    @field_validator("parsed_fields", mode="before")
    @classmethod
    def _none_to_dict(cls, value):
        return value if value is not None else {}
