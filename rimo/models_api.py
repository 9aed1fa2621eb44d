from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Dict, Any, Optional

class SessionStartRequest(BaseModel):
    session_token: str = Field(min_length=8, max_length=64)

class ResponseRequest(BaseModel):
    question_id: str
    selected_option_id: Optional[str] = None
    numeric_value: Optional[int] = None
    text_value: Optional[str] = Field(default=None, max_length=5000)

class ProgressRequest(BaseModel):
    module_index: int = Field(ge=0)
    question_index: int = Field(ge=0)

class EmailRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320, pattern=r"^\s*[^@\s]+@[^@\s]+\.[^@\s]+\s*$")

class LevelRequest(BaseModel):
    level: str

class AccessLinkRequest(BaseModel):
    access_token: str

class AccessCheckRequest(BaseModel):
    email: str
    tool_type: str

class AccessGrantRequest(BaseModel):
    email: str
    tool_type: str

class ToolRunRequest(BaseModel):
    email: Optional[str] = None
    access_token: Optional[str] = None
    input: Dict[str, Any] = Field(default_factory=dict)
