import logging

from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from screech_messaging.core.config import Settings, get_settings
from screech_messaging.utils.dependencies import get_coordinator
from screech_messaging.utils.realtime_bus import get_bus
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, coordinator: DeliveryCoordinator = Depends(get_coordinator), settings: Settings = Depends(get_settings)):
    """Online if connected to this instance, or to another one when Redis presence is enabled."""
    online = coordinator.is_reachable(user_id)
    if not online:
        bus = await get_bus(settings)
        if bus.enabled:
            try:
                online = await bus.is_present(user_id)
            except RedisError as exc:
                logger.warning("Presence lookup for %s failed: %s", user_id, exc)
    return {"user_id": user_id, "online": bool(online)}
