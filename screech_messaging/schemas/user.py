from typing import Optional

from pydantic import BaseModel


class DisplayInfo(BaseModel):

    id: str
    username: str
    avatar_color: Optional[str] = None
    clan_emoji: Optional[str] = None
