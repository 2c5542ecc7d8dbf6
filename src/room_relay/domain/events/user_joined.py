from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UserJoined:
    room_id: str
    user_id: str
    display_name: str
