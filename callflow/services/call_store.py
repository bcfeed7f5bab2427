"""
Call record persistence.

``CallRecordStore`` is the interface the reconciler depends on. Its
``update_status`` is a conditional write: it only succeeds when the stored
record is still in one of the expected prior statuses, which serializes
concurrent updates for the same call. ``InMemoryCallRecordStore`` implements it
with a dict registry guarded by an asyncio lock.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from callflow.config.constants import LOGGER_NAME
from callflow.errors import CallNotFoundError
from callflow.models.call_record import CallRecord, CallStatus

logger = logging.getLogger(LOGGER_NAME)


class CallRecordStore(ABC):
    """Repository interface for call records."""

    @abstractmethod
    async def get(self, call_id: str) -> CallRecord:
        """Return the record or raise CallNotFoundError."""

    @abstractmethod
    async def create(self, **fields: Any) -> CallRecord:
        """Create a record; the store assigns the id."""

    @abstractmethod
    async def update_status(
        self,
        call_id: str,
        expected_prior_statuses: Iterable[CallStatus],
        new_fields: Dict[str, Any],
    ) -> Optional[CallRecord]:
        """
        Conditionally update a record.

        Returns:
            The updated record, or None if the stored status was not one of
            ``expected_prior_statuses`` (the caller should re-read and retry)
        """

    @abstractmethod
    async def find_by_external_id(self, external_call_id: str) -> Optional[CallRecord]:
        """Return the record carrying the given telephony call id, if any."""

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 10) -> List[CallRecord]:
        """Return the user's most recent calls, newest first."""


class InMemoryCallRecordStore(CallRecordStore):
    """
    Process-local call record store.

    Records are immutable models, so handing them out never exposes stored state
    to mutation. A single lock makes ``update_status`` an atomic compare-and-set.
    """

    def __init__(self):
        self.records: Dict[str, CallRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, call_id: str) -> CallRecord:
        record = self.records.get(call_id)
        if record is None:
            raise CallNotFoundError(f"Call not found: {call_id}")
        return record

    async def create(self, **fields: Any) -> CallRecord:
        call_id = fields.pop("id", None) or uuid.uuid4().hex
        record = CallRecord(id=call_id, **fields)
        async with self._lock:
            self.records[call_id] = record
        logger.debug(f"Created call record {call_id} with status {record.status.value}")
        return record

    async def update_status(
        self,
        call_id: str,
        expected_prior_statuses: Iterable[CallStatus],
        new_fields: Dict[str, Any],
    ) -> Optional[CallRecord]:
        expected = set(expected_prior_statuses)
        async with self._lock:
            current = self.records.get(call_id)
            if current is None:
                raise CallNotFoundError(f"Call not found: {call_id}")
            if current.status not in expected:
                logger.debug(
                    f"Conditional update missed for call {call_id}: "
                    f"status is {current.status.value}"
                )
                return None
            updated = current.model_copy(update=new_fields)
            self.records[call_id] = updated
            return updated

    async def find_by_external_id(self, external_call_id: str) -> Optional[CallRecord]:
        for record in self.records.values():
            if record.external_call_id == external_call_id:
                return record
        return None

    async def list_for_user(self, user_id: str, limit: int = 10) -> List[CallRecord]:
        calls = [r for r in self.records.values() if r.user_id == user_id]
        calls.sort(key=lambda r: r.created_at, reverse=True)
        return calls[:limit]
