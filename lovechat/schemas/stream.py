"""可恢复流相关的Pydantic schemas"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List


class ResumeStreamRequest(BaseModel):
    """恢复流请求"""
    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(..., alias="streamId", min_length=1, description="流记录ID")
    api_key: Optional[str] = Field(None, alias="apiKey", description="供应商 API Key（请求头优先）")


class ResumableStreamsResponse(BaseModel):
    """线程内可恢复的流ID列表"""
    streams: List[str] = Field(default_factory=list)


class MarkInterruptedResponse(BaseModel):
    """标记中断响应"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    updated: int = Field(0, description="被标记为 paused 的记录数")
    message_id: str = Field(..., alias="messageId")
