"""Models for REST API requests."""

from typing import Literal, Optional, Self

from pydantic import BaseModel, Field, NonNegativeInt, model_validator

from log import get_logger
from quota.job_queue import FileInfo

logger = get_logger(__name__)


class ChatMessage(BaseModel):
    """Model representing one message of a conversation.

    Attributes:
        role: Who sent the message.
        content: Text of the message.
    """

    role: str = Field(description="Who sent the message", examples=["user"])
    content: str = Field(description="Text of the message", examples=["Hello!"])


class ChatAdmissionRequest(BaseModel):
    """Model representing a request to admit one chat completion.

    Either the number of tokens is given explicitly, or it is estimated from
    the message, the messages and the conversation history.

    Attributes:
        estimated_tokens: Tokens the completion is expected to use.
        message: Single user message.
        messages: Messages in chat completion format.
        conversation_history: Previous messages of the conversation.

    Example:
        ```python
        admission_request = ChatAdmissionRequest(message="What is a tort?")
        ```
    """

    estimated_tokens: Optional[NonNegativeInt] = Field(
        None,
        description="Tokens the completion is expected to use",
        examples=[2000],
    )
    message: Optional[str] = Field(
        None,
        description="Single user message",
        examples=["What is a tort?"],
    )
    messages: list[ChatMessage] = Field(
        default_factory=list,
        description="Messages in chat completion format",
    )
    conversation_history: list[ChatMessage] = Field(
        default_factory=list,
        description="Previous messages of the conversation",
    )

    # provides examples for /docs endpoint
    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {"message": "What is a tort?"},
                {"estimated_tokens": 2500},
            ]
        },
    }


class ChatUsageRequest(BaseModel):
    """Model representing tokens consumed by a finished chat completion.

    Attributes:
        tokens_used: Actual number of tokens used by the completion.
    """

    tokens_used: NonNegativeInt = Field(
        description="Actual number of tokens used by the completion",
        examples=[1830],
    )

    model_config = {"extra": "forbid"}


class FileValidationRequest(BaseModel):
    """Model representing a file that is going to be submitted for OCR.

    Attributes:
        filename: Name of the file.
        file_size: Size of the file in bytes.
        content_type: MIME type of the file.
    """

    filename: str = Field(description="Name of the file", examples=["contract.pdf"])
    file_size: NonNegativeInt = Field(
        description="Size of the file in bytes", examples=[524288]
    )
    content_type: str = Field(
        description="MIME type of the file", examples=["application/pdf"]
    )

    model_config = {
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "filename": "contract.pdf",
                    "file_size": 524288,
                    "content_type": "application/pdf",
                }
            ]
        },
    }

    def to_file_info(self) -> FileInfo:
        """Convert request into file description used by the job queue."""
        return FileInfo(
            name=self.filename, size=self.file_size, content_type=self.content_type
        )


class JobCreateRequest(FileValidationRequest):
    """Model representing a request to create an OCR job.

    Attributes:
        estimated_pages: Number of pages, estimated from file size when missing.
    """

    estimated_pages: Optional[NonNegativeInt] = Field(
        None,
        description="Number of pages, estimated from file size when not provided",
        examples=[4],
    )


class JobUpdateRequest(BaseModel):
    """Model representing a state transition of an OCR job.

    Attributes:
        action: Transition to perform.
        progress: New progress in percents, used by `progress` action.
        actual_pages: Number of processed pages, used by `complete` action.
        error: Reason of failure, used by `fail` action.

    Example:
        ```python
        update = JobUpdateRequest(action="complete", actual_pages=3)
        ```
    """

    action: Literal["start", "progress", "complete", "fail", "cancel"] = Field(
        description="Transition to perform", examples=["complete"]
    )
    progress: Optional[int] = Field(
        None, description="New progress in percents", examples=[40]
    )
    actual_pages: Optional[NonNegativeInt] = Field(
        None, description="Number of processed pages", examples=[3]
    )
    error: Optional[str] = Field(
        None, description="Reason of failure", examples=["Unreadable scan"]
    )

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_action_arguments(self) -> Self:
        """Check that the action has the value it needs."""
        if self.action == "progress" and self.progress is None:
            raise ValueError("progress is required for progress action")
        if self.action == "complete" and self.actual_pages is None:
            raise ValueError("actual_pages is required for complete action")
        return self
