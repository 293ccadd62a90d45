"""聊天相关的Pydantic schemas"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Any


class ChatMessageIn(BaseModel):
    """客户端提交的历史消息"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(None, description="消息ID（客户端生成）")
    role: str = Field(..., description="角色: user, assistant, system")
    content: str = Field(default="", description="消息内容")
    parts: Optional[List[Any]] = Field(None, description="消息分片（含附件信息）")


class ChatRequest(BaseModel):
    """流式聊天请求"""
    model_config = ConfigDict(populate_by_name=True)

    model: str = Field(..., min_length=1, description="模型名称，如 gpt-4o / gemini-2.5-flash / ollama:llama3")
    web_search_enabled: bool = Field(False, alias="webSearchEnabled", description="是否启用网页搜索")
    messages: List[ChatMessageIn] = Field(..., min_length=1, description="对话消息")
    api_key: Optional[str] = Field(None, alias="apiKey", description="供应商 API Key（请求头优先）")
