"""
Cancellation record data access.

Records are created in ``pending`` before the vendor is called and finalised
afterwards. They are never deleted.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Protocol

from ancillary.core.logging import get_logger
from ancillary.schemas.cancellations import CancellationRecord
from ancillary.services.cancellations.enums import CancellationStatus

logger = get_logger(__name__)


class CancellationRepositoryError(Exception):
    """Base exception for cancellation repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class CancellationRecordNotFoundError(CancellationRepositoryError):
    """Raised when a cancellation record is not found."""

    pass


class CancellationStore(Protocol):
    """Cancellation record persistence."""

    async def create_cancellation_record(
        self, record: CancellationRecord
    ) -> CancellationRecord: ...

    async def update_cancellation_record(
        self,
        cancellation_id: str,
        status: CancellationStatus,
        vendor_response: Optional[dict[str, Any]] = None,
        refund_amount: Optional[Decimal] = None,
        cancellation_fee: Optional[Decimal] = None,
    ) -> CancellationRecord: ...

    async def find_by_cancellation_id(
        self, cancellation_id: str
    ) -> Optional[CancellationRecord]: ...

    async def list_for_product(
        self, order_id: str, product_id: str
    ) -> list[CancellationRecord]: ...


class InMemoryCancellationStore:
    """In-memory cancellation record store keeping insertion order."""

    def __init__(self) -> None:
        self._records: dict[str, CancellationRecord] = {}

    async def create_cancellation_record(
        self, record: CancellationRecord
    ) -> CancellationRecord:
        """
        Persist a new cancellation record.

        Raises:
            CancellationRepositoryError: If the cancellation id already exists
        """
        if record.cancellation_id in self._records:
            raise CancellationRepositoryError(
                "Cancellation id already exists",
                cancellation_id=record.cancellation_id,
            )

        self._records[record.cancellation_id] = record.model_copy(deep=True)

        logger.info(
            "Cancellation record created",
            cancellation_id=record.cancellation_id,
            order_id=record.order_id,
            product_id=record.product_id,
            provider=record.provider,
        )
        return record.model_copy(deep=True)

    async def update_cancellation_record(
        self,
        cancellation_id: str,
        status: CancellationStatus,
        vendor_response: Optional[dict[str, Any]] = None,
        refund_amount: Optional[Decimal] = None,
        cancellation_fee: Optional[Decimal] = None,
    ) -> CancellationRecord:
        """
        Finalise a cancellation record.

        Args:
            cancellation_id: Record identifier
            status: New record status
            vendor_response: Raw vendor payload
            refund_amount: Refund actually granted
            cancellation_fee: Fee actually retained

        Returns:
            Updated record copy

        Raises:
            CancellationRecordNotFoundError: If no record has that id
        """
        record = self._records.get(cancellation_id)
        if record is None:
            raise CancellationRecordNotFoundError(
                "Cancellation record not found",
                cancellation_id=cancellation_id,
            )

        record.status = status
        if vendor_response is not None:
            record.vendor_response = vendor_response
        if refund_amount is not None:
            record.refund_amount = refund_amount
        if cancellation_fee is not None:
            record.cancellation_fee = cancellation_fee
        if status.is_terminal():
            record.processed_at = datetime.now(timezone.utc)

        logger.info(
            "Cancellation record updated",
            cancellation_id=cancellation_id,
            status=status.value,
        )
        return record.model_copy(deep=True)

    async def find_by_cancellation_id(
        self, cancellation_id: str
    ) -> Optional[CancellationRecord]:
        record = self._records.get(cancellation_id)
        return record.model_copy(deep=True) if record else None

    async def list_for_product(
        self, order_id: str, product_id: str
    ) -> list[CancellationRecord]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.order_id == order_id and record.product_id == product_id
        ]

    async def list_records(self) -> list[CancellationRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]
