"""
Chat message contract between the chat transport and the service.
"""

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """An inbound chat message."""
    channel: str = Field(
        ...,
        min_length=1,
        description="Channel or conversation the message was posted in",
    )
    text: str = Field(
        ...,
        max_length=4000,
        description="Raw message text",
        json_schema_extra={"example": "start staging-deploy repository billing-service"},
    )
    sender: str = Field(default="", description="User ID of the author")

    model_config = ConfigDict(extra="ignore")
