"""线程和消息相关的Pydantic schemas

Review note:
- `parts` 在库里是 JSON 字符串，响应里解析成列表。
"""
from pydantic import BaseModel, Field, field_validator, ConfigDict
from typing import Optional, List, Any
from datetime import datetime
import json


class ThreadCreate(BaseModel):
    """创建线程"""
    id: Optional[str] = Field(None, max_length=50, description="客户端生成的线程ID")
    title: Optional[str] = Field(None, min_length=1, max_length=200)


class ThreadResponse(BaseModel):
    """线程响应（不含消息）"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime
    message_count: int = Field(default=0, description="消息数量")


class ThreadListResponse(BaseModel):
    """线程列表响应"""
    threads: List[ThreadResponse]


class MessageUpsert(BaseModel):
    """创建或覆盖消息"""
    id: Optional[str] = Field(None, max_length=50, description="消息ID；已存在时覆盖内容")
    role: str = Field(..., pattern="^(user|assistant|system)$")
    content: str = Field(default="")
    parts: Optional[List[Any]] = None


class MessageResponse(BaseModel):
    """消息响应"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    thread_id: str
    role: str
    content: str
    parts: Optional[List[Any]] = None
    created_at: datetime

    @field_validator("parts", mode="before")
    @classmethod
    def parse_parts(cls, v):
        if v is None or isinstance(v, list):
            return v
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                return None
            return parsed if isinstance(parsed, list) else None
        return None


class MessageListResponse(BaseModel):
    """消息列表响应"""
    messages: List[MessageResponse]


class ExportThreadResponse(BaseModel):
    """导出线程响应"""
    markdown: str = Field(..., description="Markdown格式的对话内容")
