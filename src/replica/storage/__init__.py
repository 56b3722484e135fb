"""Local store backends for offline collections."""

from replica.storage.base import BaseStore
from replica.storage.dict_store import DictStore
from replica.storage.encryption import (
    EncryptionProvider,
    FernetEncryption,
    PassthroughEncryption,
    create_encryption_provider,
)
from replica.storage.file_store import FileSystemStore
from replica.storage.manager import create_auxiliary_store, create_store
from replica.storage.sqlite_store import SQLiteStore

__all__ = [
    "BaseStore",
    "DictStore",
    "EncryptionProvider",
    "FernetEncryption",
    "FileSystemStore",
    "PassthroughEncryption",
    "SQLiteStore",
    "create_auxiliary_store",
    "create_encryption_provider",
    "create_store",
]
