"""
Unit tests for scan orchestration.

Tests the lookup outcome accounting and that notification and live feed
failures never escape the fan-out.
"""

import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

from rfid_api.src.exceptions import StorageError
from rfid_api.src.models.animal import AnimalRecord, ScanEvent
from rfid_api.src.services.scan_service import ScanService
from shared.metrics import ScanMetrics


BELLA = AnimalRecord(id=1, rfid_code="A1", nama="Bella", jenis="Dog", usia=3, status_kesehatan="Sehat")


@pytest.fixture
def repository():
    repo = Mock()
    repo.get_by_rfid = AsyncMock(return_value=BELLA)
    return repo


@pytest.fixture
def notifier():
    mock = Mock()
    mock.notify_found = AsyncMock()
    mock.notify_not_found = AsyncMock()
    return mock


@pytest.fixture
def broadcaster():
    mock = Mock()
    mock.broadcast = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def metrics():
    return ScanMetrics()


@pytest.fixture
def service(repository, notifier, broadcaster, metrics):
    return ScanService(repository, notifier, broadcaster, metrics=metrics, scan_timezone="Asia/Jakarta")


class TestLookup:
    """Test lookup outcomes"""

    @pytest.mark.asyncio
    async def test_found(self, service, metrics):
        assert await service.lookup("A1") == BELLA
        assert metrics.registry.get_sample_value("rfid_scans_total", {"outcome": "found"}) == 1.0

    @pytest.mark.asyncio
    async def test_not_found(self, service, repository, metrics):
        repository.get_by_rfid.return_value = None

        assert await service.lookup("ZZ") is None
        assert metrics.registry.get_sample_value("rfid_scans_total", {"outcome": "not_found"}) == 1.0

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, service, repository, notifier, metrics):
        repository.get_by_rfid.side_effect = StorageError()

        with pytest.raises(StorageError):
            await service.lookup("A1")

        notifier.notify_found.assert_not_called()
        assert metrics.registry.get_sample_value("rfid_scans_total", {"outcome": "error"}) == 1.0


class TestAnnounce:
    """Test fan-out after a lookup"""

    @pytest.mark.asyncio
    async def test_found_notifies_and_broadcasts(self, service, notifier, broadcaster):
        scanned_at = datetime(2024, 1, 31, 23, 30, 5, tzinfo=timezone.utc)

        event = await service.announce_found(BELLA, scanned_at=scanned_at)

        notifier.notify_found.assert_awaited_once_with(BELLA)
        broadcaster.broadcast.assert_awaited_once_with("rfid-scanned", {
            "rfid_code": "A1",
            "nama": "Bella",
            "info_tambahan": "Dog",
            "waktu_scan": "01/02/2024 06:30:05",
        })
        assert event.waktu_scan == "01/02/2024 06:30:05"

    @pytest.mark.asyncio
    async def test_notification_failure_still_broadcasts(self, service, notifier, broadcaster):
        notifier.notify_found.side_effect = RuntimeError("bot down")

        await service.announce_found(BELLA)

        broadcaster.broadcast.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_contained(self, service, broadcaster):
        broadcaster.broadcast.side_effect = RuntimeError("socket gone")

        event = await service.announce_found(BELLA)

        assert event.rfid_code == "A1"

    @pytest.mark.asyncio
    async def test_miss_notifies_without_broadcast(self, service, notifier, broadcaster):
        await service.announce_miss("ZZ")

        notifier.notify_not_found.assert_awaited_once_with("ZZ")
        broadcaster.broadcast.assert_not_called()

    @pytest.mark.asyncio
    async def test_miss_notification_failure_is_contained(self, service, notifier):
        notifier.notify_not_found.side_effect = RuntimeError("bot down")

        await service.announce_miss("ZZ")


class TestScanEvent:
    """Test live feed event construction"""

    def test_from_record_uses_utc_by_default(self):
        scanned_at = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)

        event = ScanEvent.from_record(BELLA, scanned_at=scanned_at)

        assert event.model_dump() == {
            "rfid_code": "A1",
            "nama": "Bella",
            "info_tambahan": "Dog",
            "waktu_scan": "06/05/2024 07:08:09",
        }
