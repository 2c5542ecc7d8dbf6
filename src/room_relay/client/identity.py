"""Local persistence of the user's id and display name.

The server may mint an id on first contact; losing it would orphan the
receipts of every message sent under it, so it is written to disk as soon
as it is known.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredIdentity:
    user_id: str
    display_name: str


class IdentityStore:
    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self, default_name: str) -> StoredIdentity:
        """Return the saved identity, creating and saving a fresh one if none exists."""
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return StoredIdentity(
                user_id=str(raw["user_id"]),
                display_name=str(raw.get("display_name") or default_name),
            )
        except FileNotFoundError:
            pass
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring unreadable identity file %s", self._path)

        identity = StoredIdentity(user_id=str(uuid.uuid4()), display_name=default_name)
        self.save(identity)
        return identity

    def save(self, identity: StoredIdentity) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(identity)), encoding="utf-8")
