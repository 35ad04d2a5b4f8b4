"""
Persisted local key-value namespace.

Both the sync engine and the backup manager read and write through a
:class:`KeyValueStore`. Two implementations are provided:

- :class:`FileStore` keeps one file per key in a directory and writes
  atomically through a temp file.
- :class:`MemoryStore` keeps everything in a dict (tests, dry runs).

Example:
    >>> from speakersync.core.storage import FileStore, Keys
    >>> store = FileStore(Path("~/.local/share/speakersync").expanduser())
    >>> store.set(Keys.VERSION, "3")
    >>> store.get(Keys.VERSION)
    '3'
"""

from speakersync.core.storage.store import (
    FileStore,
    Keys,
    KeyValueStore,
    MemoryStore,
    backup_key,
)

__all__ = ["FileStore", "KeyValueStore", "Keys", "MemoryStore", "backup_key"]
