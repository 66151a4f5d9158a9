"""Common batch behaviour shared by span and metric batches.

A batch is a list of records plus attributes shared by every record. It is
rendered as a one-element JSON array:

    [{"<records_key>": [...], "common": {"attributes": {...}}}]

with ``common`` omitted when there are no shared attributes.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterator
from typing import Any, ClassVar, Generic, Self, TypeVar

from teleship.contracts.errors import EncodingError
from teleship.model.attribute import Attributes, AttributeValue, attributes_to_json

RecordT = TypeVar("RecordT")


def now_as_millis() -> int:
    """Current time as milliseconds since the Unix epoch."""
    return time.time_ns() // 1_000_000


def new_batch_id() -> str:
    """Fresh version 4 UUID string for a batch."""
    return str(uuid.uuid4())


class TelemetryBatch(Generic[RecordT]):
    """Base class for batches sent to a New Relic ingest API.

    Subclasses set ``_records_key`` and implement ``_record_to_json``.

    Thread Safety:
        Not thread-safe. A batch is owned by one producer until it is handed
        to a client, after which only the delivery engine touches it.
    """

    _records_key: ClassVar[str]

    def __init__(self, records: list[RecordT] | None = None, attributes: Attributes | None = None) -> None:
        self._uuid = new_batch_id()
        self._records: list[RecordT] = records if records is not None else []
        self._attributes: Attributes = attributes if attributes is not None else {}

    @property
    def uuid(self) -> str:
        """Identifier sent as ``x-request-id``."""
        return self._uuid

    @property
    def attributes(self) -> Attributes:
        """Attributes shared by all records in the batch."""
        return self._attributes

    def add_attribute(self, key: str, value: Any) -> None:
        """Add a common attribute for all records in this batch."""
        self._attributes[key] = AttributeValue.from_python(value)

    def _record_to_json(self, record: RecordT) -> dict[str, Any]:
        raise NotImplementedError

    def to_json(self) -> list[dict[str, Any]]:
        """Build the wire document as Python data."""
        entry: dict[str, Any] = {self._records_key: [self._record_to_json(r) for r in self._records]}
        if self._attributes:
            entry["common"] = {"attributes": attributes_to_json(self._attributes)}
        return [entry]

    def marshall(self) -> str:
        """Serialize the batch to its JSON wire form.

        Raises:
            EncodingError: If the batch holds values JSON cannot represent
                (NaN or infinite floats)
        """
        try:
            return json.dumps(self.to_json(), separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"Cannot serialize {self}: {e}") from e

    def split(self) -> Self:
        """Move the second half of the records into a new batch.

        The original keeps ``len(self) // 2`` records and gets a new UUID;
        the returned batch holds the rest, a copy of the common attributes
        and its own UUID.
        """
        keep = len(self._records) // 2
        moved = self._records[keep:]
        del self._records[keep:]
        self._uuid = new_batch_id()
        return type(self)(moved, dict(self._attributes))

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RecordT]:
        return iter(self._records)
