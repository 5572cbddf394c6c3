"""File record repository over the key-value store."""

from typing import List, Optional, Tuple

from common.constants import LEGACY_KEY_PREFIXES
from common.logging_config import get_logger
from gateway.repositories.kv_repository import KVRepository
from gateway.types import FileRecord

logger = get_logger(__name__)


def candidate_keys(identifier: str) -> List[str]:
    """
    Keys under which a record for ``identifier`` may be stored.

    An identifier that already carries a known prefix is looked up as is;
    otherwise every legacy prefix is tried in order, ending with the bare key.
    """
    has_known_prefix = any(prefix and identifier.startswith(prefix) for prefix in LEGACY_KEY_PREFIXES)
    if has_known_prefix:
        return [identifier]
    return [f"{prefix}{identifier}" for prefix in LEGACY_KEY_PREFIXES]


class FileRecordRepository:
    def __init__(self, kv: KVRepository):
        self.kv = kv

    def save(self, record: FileRecord) -> None:
        self.kv.put(record.key, "", metadata=record.to_metadata())
        logger.info(f"File record saved [key={record.key}, storage={record.backend_type.value}]")

    def get(self, key: str) -> Optional[FileRecord]:
        entry = self.kv.get(key)
        if entry is None or not entry.metadata:
            return None
        return FileRecord.from_metadata(key, entry.metadata)

    def find(self, identifier: str) -> Tuple[Optional[FileRecord], str]:
        """
        Probe the candidate keys for ``identifier``.

        Returns:
            Tuple of (record or None, key it was found under or the identifier)
        """
        for key in candidate_keys(identifier):
            record = self.get(key)
            if record is not None:
                return record, key
        return None, identifier

    def delete(self, key: str) -> bool:
        return self.kv.delete(key)

    def set_list_type(self, key: str, list_type: str) -> Optional[FileRecord]:
        record = self.get(key)
        if record is None:
            return None
        record.list_type = list_type
        self.save(record)
        return record
