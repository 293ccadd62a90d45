"""可恢复流记录模型

Review note:
- 一次生成尝试对应一行；状态只经 crud 层的条件更新迁移。
- 正常流程不删除，保留为历史记录。
"""
from sqlalchemy import Column, String, Text, DateTime, Float, Integer, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from lovechat.models.base import Base


class StreamStatus(str, enum.Enum):
    STREAMING = "streaming"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamRecord(Base):
    """可恢复流表"""
    __tablename__ = "stream_records"

    id = Column(String(50), primary_key=True)
    thread_id = Column(String(50), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    message_id = Column(String(50), nullable=False, index=True)
    user_id = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=StreamStatus.STREAMING.value, index=True)
    partial_content = Column(Text, nullable=False, default="")
    continuation_prompt = Column(Text, nullable=True, default=None)
    model = Column(String(100), nullable=False)
    estimated_completion = Column(Float, nullable=False, default=0.0)
    total_tokens = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True, default=None)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_updated_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True, default=None)

    # 关系
    thread = relationship("Thread", back_populates="stream_records")

    __table_args__ = (
        CheckConstraint(
            "status IN ('streaming', 'paused', 'completed', 'failed')",
            name="check_stream_status",
        ),
    )

    def __repr__(self):
        return f"<StreamRecord {self.id} {self.status}>"
