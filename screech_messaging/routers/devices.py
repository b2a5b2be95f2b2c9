from fastapi import APIRouter, Depends

from screech_messaging.database.connection import mongo_db_dependency
from screech_messaging.repositories.device_repository import DeviceRepository
from screech_messaging.schemas.messaging import DeviceRegistration
from screech_messaging.utils.dependencies import get_current_user_id


router = APIRouter(prefix="/devices", tags=["push"])


@router.post("/register")
async def register_device(payload: DeviceRegistration, current_user: str = Depends(get_current_user_id), db = Depends(mongo_db_dependency)):
    repo = DeviceRepository(db)
    doc = await repo.register(current_user, payload.platform, payload.token)
    return {"ok": True, "device": {"platform": doc["platform"], "token": doc["token"]}}
