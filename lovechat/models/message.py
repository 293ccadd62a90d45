"""消息模型"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from lovechat.models.base import Base


class Message(Base):
    """消息表"""
    __tablename__ = "messages"

    id = Column(String(50), primary_key=True)
    thread_id = Column(String(50), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(50), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user, assistant, system
    content = Column(Text, nullable=False, default="")
    parts = Column(Text, nullable=True, default=None)  # JSON array: text / sources parts
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # 关系
    thread = relationship("Thread", back_populates="messages")

    # 约束
    __table_args__ = (
        CheckConstraint("role IN ('user', 'assistant', 'system')", name="check_role"),
    )

    def __repr__(self):
        return f"<Message {self.role}: {self.content[:50]}...>"
