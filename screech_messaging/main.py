import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from screech_messaging.core.config import get_settings
from screech_messaging.core.errors import MessagingError
from screech_messaging.database.connection import close_mongo_connection, connect_to_mongo
from screech_messaging.repositories.device_repository import DeviceRepository
from screech_messaging.repositories.notification_repository import NotificationRepository
from screech_messaging.routers.chat import router as chat_router
from screech_messaging.routers.conversations import router as conversations_router
from screech_messaging.routers.devices import router as devices_router
from screech_messaging.routers.presence import router as presence_router
from screech_messaging.services.messaging_service import MessagingService
from screech_messaging.services.notification_service import NotificationService
from screech_messaging.utils.realtime_bus import close_bus
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings = get_settings()
    configure_logging(settings.log_level)
    db = await connect_to_mongo(settings)
    coordinator = DeliveryCoordinator(push_timeout=settings.push_timeout)
    service = MessagingService.from_database(
        db, coordinator, settings, notifier=NotificationService.from_settings(db, settings)
    )
    await service.ensure_indexes()
    await DeviceRepository(db).ensure_indexes()
    await NotificationRepository(db).ensure_indexes()
    app.state.coordinator = coordinator
    app.state.messaging_service = service
    try:
        yield
    finally:
        await service.drain_side_effects()
        await close_bus()
        await close_mongo_connection()


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.kind})


def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title="Screech private messaging", lifespan=lifespan if use_lifespan else None)
    app.add_exception_handler(MessagingError, messaging_error_handler)
    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(presence_router)
    app.include_router(devices_router)

    @app.get("/")
    async def root(request: Request):
        coordinator = getattr(request.app.state, "coordinator", None)
        return {"message": "Screech messaging", "online": coordinator.online_count() if coordinator else 0}

    return app


app = create_app()
