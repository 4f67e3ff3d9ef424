"""
Scan orchestration.

Looks an RFID tag up and fans the outcome out to the chat channel and the
live feed. The lookup result decides the HTTP response; the fan-out runs
afterwards and can never turn a completed lookup into a failure.
"""

from datetime import datetime
from typing import Optional

from rfid_api.src.exceptions import StorageError
from rfid_api.src.models.animal import AnimalRecord, LIVE_FEED_EVENT, ScanEvent
from rfid_api.src.repositories.animal_repo import AnimalRepository
from rfid_api.src.services.broadcast_service import LiveFeedBroadcaster
from rfid_api.src.services.notification_service import TelegramNotifier
from shared.logging import get_logger
from shared.metrics import ScanMetrics

logger = get_logger(__name__)


class ScanService:
    """Lookup-and-fan-out for a single scanned tag."""

    def __init__(
        self,
        repository: AnimalRepository,
        notifier: TelegramNotifier,
        broadcaster: LiveFeedBroadcaster,
        metrics: Optional[ScanMetrics] = None,
        scan_timezone: str = "UTC"
    ):
        """
        Initialize scan service.

        Args:
            repository: Animal record store
            notifier: Chat notification fan-out
            broadcaster: Live feed broadcaster
            metrics: Metric set for scan outcomes
            scan_timezone: IANA timezone used for waktu_scan
        """
        self.repository = repository
        self.notifier = notifier
        self.broadcaster = broadcaster
        self.metrics = metrics
        self.scan_timezone = scan_timezone

    async def lookup(self, uid: str) -> Optional[AnimalRecord]:
        """
        Find the animal carrying a tag.

        Args:
            uid: Tag value

        Returns:
            Matching record or None

        Raises:
            StorageError: If the datastore cannot be queried
        """
        try:
            record = await self.repository.get_by_rfid(uid)
        except StorageError:
            self._count("error")
            raise

        if record is None:
            self._count("not_found")
            logger.info("rfid_scan_not_found", rfid_code=uid)
        else:
            self._count("found")
            logger.info("rfid_scan_found", rfid_code=uid, nama=record.nama)

        return record

    async def announce_found(
        self,
        record: AnimalRecord,
        scanned_at: Optional[datetime] = None
    ) -> ScanEvent:
        """
        Notify recipients and push a live feed event for a matched tag.

        Args:
            record: Matched record
            scanned_at: Scan instant (defaults to now)

        Returns:
            The event that was broadcast
        """
        event = ScanEvent.from_record(record, scanned_at=scanned_at, tz=self.scan_timezone)

        try:
            await self.notifier.notify_found(record)
        except Exception as e:
            logger.error("scan_notification_failed", rfid_code=record.rfid_code, error=str(e), exc_info=True)

        try:
            await self.broadcaster.broadcast(LIVE_FEED_EVENT, event.model_dump())
        except Exception as e:
            logger.error("scan_broadcast_failed", rfid_code=record.rfid_code, error=str(e), exc_info=True)

        return event

    async def announce_miss(self, uid: str) -> None:
        """
        Tell recipients a tag is not registered.

        Args:
            uid: Unrecognized tag
        """
        try:
            await self.notifier.notify_not_found(uid)
        except Exception as e:
            logger.error("scan_notification_failed", rfid_code=uid, error=str(e), exc_info=True)

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.scans.labels(outcome=outcome).inc()
