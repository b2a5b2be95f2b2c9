import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from screech_messaging.core.config import Settings, get_settings
from screech_messaging.services.messaging_service import MessagingService
from screech_messaging.utils.security import user_id_from_token
from screech_messaging.utils.websocket_manager import DeliveryCoordinator


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return user_id_from_token(credentials.credentials, settings)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None


def get_coordinator(conn: HTTPConnection) -> DeliveryCoordinator:
    return conn.app.state.coordinator


def get_messaging_service(conn: HTTPConnection) -> MessagingService:
    return conn.app.state.messaging_service
