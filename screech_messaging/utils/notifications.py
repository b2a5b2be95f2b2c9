import asyncio
import logging
from typing import Dict, List, Optional

from pyfcm import FCMNotification

from screech_messaging.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


class NoopPush:

    enabled = False

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Dict[str, str] | None = None) -> int:
        return 0


class FcmPush:

    enabled = True

    def __init__(self, service_account_file: str, project_id: str) -> None:
        self._client = FCMNotification(service_account_file=service_account_file, project_id=project_id)

    async def send_fcm(self, tokens: List[str], title: str, body: str, data: Dict[str, str] | None = None) -> int:
        """Push to every token; returns how many sends succeeded."""
        sent = 0
        for token in tokens:
            # pyfcm is blocking
            try:
                await asyncio.to_thread(
                    self._client.notify,
                    fcm_token=token,
                    notification_title=title,
                    notification_body=body,
                    data_payload=data or {},
                )
                sent += 1
            except Exception as exc:
                logger.warning("FCM push to a device failed: %s", exc)
        return sent


_push: Optional[NoopPush | FcmPush] = None


def get_push(settings: Settings | None = None):
    global _push
    if _push is not None:
        return _push
    settings = settings or get_settings()
    if not settings.fcm_enabled:
        _push = NoopPush()
        return _push
    _push = FcmPush(settings.fcm_service_account_file, settings.fcm_project_id)
    return _push
