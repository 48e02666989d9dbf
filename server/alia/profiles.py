"""
User profile storage with transparent field encryption.

Only the user_profiles table goes through here. Writes are sealed before they
reach storage and reads are opened before they reach the caller.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .security.encryption import (
    SENSITIVE_FIELDS,
    SENSITIVE_FIELD_NAMES,
    FieldEncryptionService,
)
from .storage import RecordStore

logger = logging.getLogger("alia.profiles")

PROFILE_TABLE = "user_profiles"
PROFILE_KEY = "userId"

ProfileRead = Union[None, Dict[str, Any], List[Optional[Dict[str, Any]]]]


def encrypt_profile_write(
    service: FieldEncryptionService,
    data: Mapping[str, Any],
    fields: Iterable[str] = SENSITIVE_FIELD_NAMES,
) -> Dict[str, Any]:
    """Seal every sensitive field in a create/update payload.

    A sensitive field set to None or "" clears its ciphertext column. Any
    encryption error propagates and the write must not happen.
    """
    fields = tuple(fields)
    payload = service.encrypt_object(data, fields)
    for field in fields:
        if field in payload:
            value = payload.pop(field)
            if value is None or value == "":
                payload[SENSITIVE_FIELDS[field]] = None
            else:
                # non-string values cannot be sealed and must not be stored in clear
                raise TypeError(f"Sensitive field {field} must be a string")
    return payload


def _open_record(
    service: FieldEncryptionService,
    record: Dict[str, Any],
    fields: Iterable[str],
) -> Dict[str, Any]:
    opened = service.decrypt_object(record, fields)
    for field in fields:
        column = SENSITIVE_FIELDS[field]
        if column in opened and opened[column] is None:
            del opened[column]
            opened[field] = None
    return opened


def decrypt_profile_read(
    service: FieldEncryptionService,
    result: ProfileRead,
    fields: Iterable[str] = SENSITIVE_FIELD_NAMES,
) -> ProfileRead:
    """Open the sensitive fields of one record or a list of records.

    Fields that fail to open stay in their `<field>Encrypted` form; the rest
    of the record and the other records are still returned.
    """
    fields = tuple(fields)
    if result is None:
        return None
    if isinstance(result, list):
        return [_open_record(service, item, fields) if item else item for item in result]
    return _open_record(service, result, fields)


class EncryptedProfileStore:
    """Wraps the user_profiles store; the only place profile rows are read or written."""

    def __init__(self, store: RecordStore, service: FieldEncryptionService):
        self.store = store
        self._service = service

    def seal(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Encrypt a create payload without writing it."""
        return encrypt_profile_write(self._service, data)

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return await self.create_sealed(self.seal(data))

    async def create_sealed(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Write a payload already produced by `seal`."""
        row = await self.store.create(payload)
        return decrypt_profile_read(self._service, row)

    async def delete(self, user_id: str) -> bool:
        return await self.store.delete(user_id)

    async def update(self, user_id: str, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        payload = encrypt_profile_write(self._service, data)
        row = await self.store.update(user_id, payload)
        return decrypt_profile_read(self._service, row)

    async def find_unique(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self.store.find_unique(user_id)
        return decrypt_profile_read(self._service, row)

    async def find_first(self, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        row = await self.store.find_first(filters)
        return decrypt_profile_read(self._service, row)

    async def find_many(self, filters: Optional[Mapping[str, Any]] = None, **kwargs) -> List[Dict[str, Any]]:
        rows = await self.store.find_many(filters, **kwargs)
        return decrypt_profile_read(self._service, rows)
