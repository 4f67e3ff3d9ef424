"""
FastAPI dependency injection for the RFID lookup service.

Provides:
- The database connection pool (asyncpg)
- The ServiceContainer holding every long-lived service object
- Injectable accessors for repositories, services and settings
- List query parameters for GET /hewan

Service objects are built once in the application lifespan and attached
to ``app.state.container``; handlers reach them through the dependencies
below instead of module globals.
"""

import asyncpg
import structlog
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Query
from starlette.requests import HTTPConnection

from rfid_api.src.config import Settings
from rfid_api.src.exceptions import NotificationError, StorageError, ValidationError
from rfid_api.src.models.animal import DEFAULT_SORT_COLUMN, SORTABLE_COLUMNS, SortOrder
from rfid_api.src.repositories.animal_repo import AnimalRepository, STORAGE_EXCEPTIONS
from rfid_api.src.services.bot_update_service import BotUpdateHandler, TelegramPoller
from rfid_api.src.services.broadcast_service import LiveFeedBroadcaster
from rfid_api.src.services.notification_service import TelegramBotClient, TelegramNotifier
from rfid_api.src.services.scan_service import ScanService
from shared.metrics import ScanMetrics

logger = structlog.get_logger(__name__)


# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================


async def init_db_pool(settings: Settings) -> asyncpg.Pool:
    """
    Initialize database connection pool.

    Should be called during application startup.

    Args:
        settings: Application settings

    Returns:
        asyncpg connection pool

    Raises:
        StorageError: If the pool cannot be created
    """
    try:
        pool = await asyncpg.create_pool(
            settings.database_dsn,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
            command_timeout=settings.database_command_timeout,
            ssl="require" if settings.database_ssl else None
        )

        async with pool.acquire() as conn:
            version = await conn.fetchval("SELECT version()")

        logger.info(
            "database_pool_initialized",
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
            database=settings.database_dsn.split("@")[-1],
            postgres_version=version
        )

        return pool

    except STORAGE_EXCEPTIONS as e:
        logger.error("database_pool_init_failed", error=str(e))
        raise StorageError() from e


# ============================================================================
# SERVICE CONTAINER
# ============================================================================


@dataclass
class ServiceContainer:
    """Long-lived service objects shared by all requests."""

    settings: Settings
    metrics: ScanMetrics
    repository: AnimalRepository
    notifier: TelegramNotifier
    broadcaster: LiveFeedBroadcaster
    scan_service: ScanService
    bot_client: Optional[TelegramBotClient] = None
    bot_updates: Optional[BotUpdateHandler] = None
    poller: Optional[TelegramPoller] = None
    pool: Optional[asyncpg.Pool] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        metrics: ScanMetrics,
        repository: AnimalRepository,
        bot_client: Optional[TelegramBotClient] = None,
        pool: Optional[asyncpg.Pool] = None
    ) -> "ServiceContainer":
        """
        Wire the services around a repository and an optional bot client.

        Args:
            settings: Application settings
            metrics: Metric set shared by all services
            repository: Animal record store
            bot_client: Telegram client, None when notifications are disabled
            pool: Pool owned by the container (closed on shutdown)

        Returns:
            Wired container
        """
        notifier = TelegramNotifier(bot_client, settings.telegram_recipients, metrics)
        broadcaster = LiveFeedBroadcaster(metrics)
        scan_service = ScanService(
            repository,
            notifier,
            broadcaster,
            metrics=metrics,
            scan_timezone=settings.scan_timezone
        )

        bot_updates = BotUpdateHandler(bot_client) if bot_client is not None else None
        poller = None
        if (
            bot_updates is not None
            and settings.telegram_polling_enabled
            and not settings.telegram_webhook_endpoint
        ):
            poller = TelegramPoller(bot_client, bot_updates, timeout=settings.telegram_polling_timeout)

        return cls(
            settings=settings,
            metrics=metrics,
            repository=repository,
            notifier=notifier,
            broadcaster=broadcaster,
            scan_service=scan_service,
            bot_client=bot_client,
            bot_updates=bot_updates,
            poller=poller,
            pool=pool,
        )

    @classmethod
    async def create(cls, settings: Settings, metrics: ScanMetrics) -> "ServiceContainer":
        """
        Create the pool and every service from settings.

        Args:
            settings: Application settings
            metrics: Metric set shared by all services

        Returns:
            Ready-to-start container
        """
        pool = await init_db_pool(settings)
        repository = AnimalRepository(pool, table=settings.database_table)

        if settings.database_create_schema:
            try:
                await repository.ensure_schema()
            except StorageError:
                await pool.close()
                raise

        bot_client = None
        if settings.telegram_enabled:
            bot_client = TelegramBotClient(
                settings.telegram_bot_token,
                api_base=settings.telegram_api_base,
                timeout=settings.telegram_request_timeout
            )
        else:
            logger.warning("telegram_notifications_disabled", reason="no bot token configured")

        return cls.build(settings, metrics, repository, bot_client=bot_client, pool=pool)

    async def start(self) -> None:
        """Register the webhook or start polling, depending on settings."""
        if self.bot_client is None:
            return

        webhook_endpoint = self.settings.telegram_webhook_endpoint
        if webhook_endpoint:
            try:
                await self.bot_client.set_webhook(
                    webhook_endpoint,
                    secret_token=self.settings.telegram_webhook_secret
                )
                logger.info("telegram_webhook_registered", url=webhook_endpoint)
            except NotificationError as e:
                logger.warning("telegram_webhook_registration_failed", error=e.message)
        elif self.poller is not None:
            try:
                await self.bot_client.delete_webhook()
            except NotificationError as e:
                logger.warning("telegram_webhook_removal_failed", error=e.message)
            self.poller.start()

    async def close(self) -> None:
        """
        Release every resource the container owns.

        Each step runs even if an earlier one fails, so the database pool
        is always closed.
        """
        steps = []
        if self.poller is not None:
            steps.append(("telegram_poller", self.poller.stop))
        steps.append(("live_feed", self.broadcaster.close))
        if self.bot_client is not None:
            steps.append(("telegram_client", self.bot_client.close))
        if self.pool is not None:
            steps.append(("database_pool", self._close_pool))

        for name, release in steps:
            try:
                await release()
            except Exception:
                logger.exception("resource_close_failed", resource=name)

    async def _close_pool(self) -> None:
        logger.info("closing_database_pool")
        await self.pool.close()
        logger.info("database_pool_closed")


# ============================================================================
# CONTAINER DEPENDENCIES
# ============================================================================


def get_container(connection: HTTPConnection) -> ServiceContainer:
    """
    Get the service container from app.state.

    Works for both HTTP and WebSocket routes.

    Raises:
        RuntimeError: If the lifespan has not run
    """
    container = getattr(connection.app.state, "container", None)
    if container is None:
        raise RuntimeError("ServiceContainer not available on app.state (lifespan not initialized).")
    return container


def get_app_settings(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.settings


def get_animal_repository(container: ServiceContainer = Depends(get_container)) -> AnimalRepository:
    return container.repository


def get_scan_service(container: ServiceContainer = Depends(get_container)) -> ScanService:
    return container.scan_service


def get_broadcaster(container: ServiceContainer = Depends(get_container)) -> LiveFeedBroadcaster:
    return container.broadcaster


# ============================================================================
# LIST QUERY DEPENDENCIES
# ============================================================================


class AnimalListParams:
    """Query parameters for GET /hewan."""

    def __init__(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        sort_by: str = DEFAULT_SORT_COLUMN,
        order: Optional[str] = "ASC",
        max_limit: int = 100
    ):
        """
        Initialize list parameters.

        Args:
            page: 1-based page number (clamped to >= 1)
            limit: Page size (clamped to 1..max_limit)
            search: Case-insensitive substring for nama or jenis
            sort_by: Column to sort by, must be sortable
            order: ASC or DESC; anything else means ASC
            max_limit: Largest allowed page size

        Raises:
            ValidationError: If sort_by is not a sortable column
        """
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(
                f"Invalid sortBy '{sort_by}'. Allowed: {', '.join(SORTABLE_COLUMNS)}"
            )

        self.page = max(page, 1)
        self.limit = min(max(limit, 1), max_limit)
        self.search = search.strip()
        self.sort_by = sort_by
        self.order = SortOrder.normalize(order)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


async def get_animal_list_params(
    page: int = Query(1, description="1-based page number"),
    limit: Optional[int] = Query(None, description="Page size"),
    search: str = Query("", description="Substring matched against nama or jenis"),
    sort_by: str = Query(DEFAULT_SORT_COLUMN, alias="sortBy", description="Sort column"),
    order: str = Query("ASC", description="ASC or DESC"),
    settings: Settings = Depends(get_app_settings)
) -> AnimalListParams:
    """
    Get list parameters from the query string.

    Returns:
        Validated list parameters
    """
    return AnimalListParams(
        page=page,
        limit=limit if limit is not None else settings.pagination_default_limit,
        search=search,
        sort_by=sort_by,
        order=order,
        max_limit=settings.pagination_max_limit
    )
