from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


TEXT_PART_KINDS = {"markdown"}


class ResponsePart(BaseModel):
    kind: str = Field("markdown", description="'markdown', 'reference', 'anchor', 'progress', ...")
    value: Union[str, Dict[str, Any], None] = None

    def text(self) -> Optional[str]:
        """Text carried by this part, or None for non-text parts."""
        if self.kind not in TEXT_PART_KINDS:
            return None
        if isinstance(self.value, str):
            return self.value
        # Markdown strings arrive as {"value": "..."}
        if isinstance(self.value, dict) and isinstance(self.value.get("value"), str):
            return self.value["value"]
        return None


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    prompt: str


class AssistantTurn(BaseModel):
    role: Literal["assistant"] = "assistant"
    response: List[ResponsePart] = Field(default_factory=list)


ConversationTurn = Annotated[Union[UserTurn, AssistantTurn], Field(discriminator="role")]


class ActiveDocument(BaseModel):
    uri: str = Field(..., description="Location of the focused document")
    text: str = Field(..., description="Full text of the focused document")
    language_id: Optional[str] = None


class ChatRequest(BaseModel):
    prompt: str = Field(..., description="User's latest message")
    history: List[ConversationTurn] = Field(
        default_factory=list,
        description="Prior turns in chronological order (host-managed)",
    )
    active_document: Optional[ActiveDocument] = Field(
        None, description="Document focused in the editor, if any"
    )
    stream: bool = Field(True, description="Stream fragments as server-sent events")
