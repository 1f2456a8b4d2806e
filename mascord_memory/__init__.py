from .memory.engine import ContextEngine
from .memory.models import Message, PurgeScope, SearchFilter

__all__ = ["ContextEngine", "Message", "PurgeScope", "SearchFilter"]
