"""Protocol definitions for payloads accepted by the delivery engine.

The engine is written against this capability set only and never against
concrete batch types.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Sendable(Protocol):
    """Protocol for batches that can be posted to an ingest API.

    Lifecycle:
        1. Recording: records are added to the batch by the application
        2. Delivery: the engine calls marshall() once per attempt
        3. Splitting: on a 413 response the engine calls split() and
           delivers both halves independently

    Error handling:
        - marshall() MUST raise EncodingError when the content cannot be
          rendered; the engine abandons the batch
        - split() MUST NOT raise
    """

    @property
    def uuid(self) -> str:
        """Version 4 UUID identifying this payload.

        Sent as the ``x-request-id`` header so the ingest service can detect
        duplicate requests. A split gives both halves fresh identifiers.
        """
        ...

    def marshall(self) -> str:
        """Render the batch as the JSON document expected by the ingest API.

        Raises:
            EncodingError: If the batch content cannot be serialized
        """
        ...

    def split(self) -> "Sendable":
        """Move the second half of the records into a new batch.

        The original keeps the first ``len // 2`` records, the returned batch
        holds the remainder. Common attributes are copied to the new batch.
        Both batches receive new identifiers.
        """
        ...

    def __len__(self) -> int:
        """Number of records in the batch."""
        ...
