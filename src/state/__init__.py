"""
Save state models and local persistence.

The save blob travels as an opaque string; `SaveRecord` is the structured
view used only when deciding whether remote content should replace local.
"""

from .local_store import SAVE_KEY, JsonFileStore, LocalStore, MemoryStore
from .models import RemoteFile, SaveRecord

__all__ = ["SAVE_KEY", "JsonFileStore", "LocalStore", "MemoryStore", "RemoteFile", "SaveRecord"]
