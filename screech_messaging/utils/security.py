from typing import Any, Dict

import jwt

from screech_messaging.core.config import Settings


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    """Decode and verify a bearer token; raises ``jwt.InvalidTokenError``."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def user_id_from_token(token: str, settings: Settings) -> str:
    payload = decode_access_token(token, settings)
    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise jwt.InvalidTokenError("Token carries no subject")
    return str(user_id)
