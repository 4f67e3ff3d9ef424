"""
Shared fixtures for the RFID lookup test suite.

Provides in-memory stand-ins for the animal repository and the Telegram
Bot API client so the FastAPI app can be exercised without PostgreSQL or
network access.
"""

import asyncio
import pytest
from typing import Any, Dict, List, Optional, Set

from fastapi.testclient import TestClient

from rfid_api.src.config import Settings
from rfid_api.src.dependencies import ServiceContainer
from rfid_api.src.exceptions import NotificationError, StorageError, ValidationError
from rfid_api.src.main import create_app
from rfid_api.src.models.animal import AnimalRecord, SORTABLE_COLUMNS, SortOrder
from shared.metrics import ScanMetrics


# ============================================================================
# TEST DATA
# ============================================================================


SAMPLE_ANIMALS = [
    AnimalRecord(id=1, rfid_code="A1", nama="Bella", jenis="Dog", usia=3, status_kesehatan="Sehat"),
    AnimalRecord(id=2, rfid_code="B2", nama="Catfish", jenis="Fish", usia=1, status_kesehatan="Sehat"),
    AnimalRecord(id=3, rfid_code="C3", nama="Mochi", jenis="Cat", usia=5, status_kesehatan="Sakit"),
    AnimalRecord(id=4, rfid_code="D4", nama="Sapi Putih", jenis="Cow", usia=4, status_kesehatan="Sehat"),
    AnimalRecord(id=5, rfid_code="E5", nama="Kambing", jenis="Goat", usia=2, status_kesehatan="Pemulihan"),
]


# ============================================================================
# FAKES
# ============================================================================


class FakeAnimalRepository:
    """In-memory replacement for AnimalRepository."""

    def __init__(self, animals: Optional[List[AnimalRecord]] = None):
        self.animals = list(animals if animals is not None else SAMPLE_ANIMALS)
        self.lookups: List[str] = []
        self.list_calls: List[Dict[str, Any]] = []
        self.fail = False
        self.healthy = True

    async def get_by_rfid(self, rfid_code: str) -> Optional[AnimalRecord]:
        self.lookups.append(rfid_code)
        if self.fail:
            raise StorageError()
        return next((a for a in self.animals if a.rfid_code == rfid_code), None)

    async def list_animals(
        self,
        search: Optional[str] = None,
        sort_by: str = "id",
        order: SortOrder = SortOrder.ASC,
        limit: int = 10,
        offset: int = 0
    ):
        self.list_calls.append({
            "search": search,
            "sort_by": sort_by,
            "order": order,
            "limit": limit,
            "offset": offset,
        })
        if self.fail:
            raise StorageError()
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(f"Invalid sortBy column: {sort_by}")

        matches = self.animals
        if search:
            needle = search.lower()
            matches = [
                a for a in matches
                if needle in a.nama.lower() or needle in a.jenis.lower()
            ]

        reverse = SortOrder(order) == SortOrder.DESC
        matches = sorted(matches, key=lambda a: (getattr(a, sort_by), a.id), reverse=reverse)
        return matches[offset:offset + limit], len(matches)

    async def ping(self) -> bool:
        return self.healthy


class FakeBotClient:
    """Records Bot API calls instead of sending them."""

    def __init__(self, failing_chats: Optional[Set[str]] = None):
        self.failing_chats = set(failing_chats or ())
        self.messages: List[Dict[str, str]] = []
        self.webhooks: List[Dict[str, Any]] = []
        self.webhook_deleted = False
        self.updates: List[List[Dict[str, Any]]] = []
        self.update_requests: List[Optional[int]] = []
        self.closed = False

    async def send_message(self, chat_id: str, text: str):
        if chat_id in self.failing_chats:
            raise NotificationError(f"Telegram sendMessage rejected (400): chat {chat_id}")
        self.messages.append({"chat_id": chat_id, "text": text})
        return {"message_id": len(self.messages)}

    async def set_webhook(self, url: str, secret_token: Optional[str] = None):
        self.webhooks.append({"url": url, "secret_token": secret_token})
        return True

    async def delete_webhook(self):
        self.webhook_deleted = True
        return True

    async def get_updates(self, offset: Optional[int] = None, timeout: int = 30):
        self.update_requests.append(offset)
        # Yield like a real long poll so a polling loop cannot starve the event loop.
        await asyncio.sleep(0)
        return self.updates.pop(0) if self.updates else []

    async def close(self):
        self.closed = True


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    """Settings with two chat recipients and a dummy bot token."""
    return Settings(
        telegram_bot_token="test-token",
        telegram_chat_ids="111,222",
        scan_timezone="UTC",
        environment="development",
        log_format="text",
        log_level="WARNING",
    )


@pytest.fixture
def animal_repo() -> FakeAnimalRepository:
    return FakeAnimalRepository()


@pytest.fixture
def bot_client() -> FakeBotClient:
    return FakeBotClient()


@pytest.fixture
def container(settings, animal_repo, bot_client) -> ServiceContainer:
    return ServiceContainer.build(settings, ScanMetrics(), animal_repo, bot_client=bot_client)


@pytest.fixture
def app(container):
    return create_app(container=container)


@pytest.fixture
def client(app):
    """TestClient with the lifespan running."""
    with TestClient(app) as test_client:
        yield test_client
