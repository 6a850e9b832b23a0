from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Literal, Optional, List

class ChatIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(min_length=1)
    session_id: Optional[str] = Field(default=None, alias="sessionId")

class ChatResult(BaseModel):
    results: str

class ChatOut(BaseModel):
    success: bool = True
    data: ChatResult

class MessageItem(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: Optional[str] = None

class ConversationItem(BaseModel):
    id: str
    messages: List[MessageItem]

class ConversationOut(BaseModel):
    success: bool = True
    data: ConversationItem

class HistoryData(BaseModel):
    messages: List[ConversationItem]

class HistoryOut(BaseModel):
    success: bool = True
    data: HistoryData

class ClearOut(BaseModel):
    success: bool = True
    message: str

class ErrorOut(BaseModel):
    success: bool = False
    error: str
    details: Optional[str] = None

class ModerationIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: Optional[str] = None
    question_context: Optional[str] = Field(default=None, alias="questionContext")
    previous_messages: Optional[List[str]] = Field(default=None, alias="previousMessages")

class ModerationOut(BaseModel):
    success: bool = True
    data: Dict[str, Any]
