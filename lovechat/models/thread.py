"""会话线程模型"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime

from lovechat.models.base import Base


class Thread(Base):
    """对话线程表"""
    __tablename__ = "threads"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(50), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_message_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # 关系
    messages = relationship("Message", back_populates="thread", cascade="all, delete-orphan", order_by="Message.created_at")
    stream_records = relationship("StreamRecord", back_populates="thread", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Thread {self.title}>"
