"""模型包初始化"""
from lovechat.models.base import Base
from lovechat.models.thread import Thread
from lovechat.models.message import Message
from lovechat.models.stream_record import StreamRecord, StreamStatus

__all__ = [
    "Base",
    "Thread",
    "Message",
    "StreamRecord",
    "StreamStatus",
]
