from .messages import MemoryMessagesMixin
from .purge import MemoryPurgeMixin
from .schema import MemorySchemaMixin
from .settings import MemorySettingsMixin
from .summaries import MemorySummariesMixin
from .user_memory import MemoryUserMemoryMixin

__all__ = [
    "MemorySchemaMixin",
    "MemoryMessagesMixin",
    "MemorySettingsMixin",
    "MemorySummariesMixin",
    "MemoryUserMemoryMixin",
    "MemoryPurgeMixin",
]
