"""Scoreboard registry mirrored to a flat JSON file."""
from __future__ import annotations

import secrets
import string
from pathlib import Path
from typing import Any, Iterable, List, Optional

from scorehub import events
from scorehub.errors import ValidationError
from scorehub.events import ChangeNotifier
from scorehub.log import get_logger
from scorehub.models import Scoreboard, to_wire
from scorehub.persistence import JsonFileMirror

log = get_logger("scorehub.scoreboard_store")

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 8
DEFAULT_SCOREBOARDS = ("Stadium Scoreboard", "Grandstand Scoreboard")


class ScoreboardStore(ChangeNotifier):
    """Owns the ordered scoreboard list and its backing file.

    Readers get copies; every mutation goes through `create`, `delete` or
    `update_all`, rewrites the whole file and emits a change notification.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self._mirror = JsonFileMirror(path)
        self._scoreboards: List[Scoreboard] = []

    @property
    def path(self) -> Path:
        return self._mirror.path

    @property
    def writes(self) -> int:
        return self._mirror.writes

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self) -> None:
        try:
            raw = await self._mirror.read()
            self._scoreboards = _normalize(raw)
            log.info(f"Loaded {len(self._scoreboards)} scoreboards from {self.path}")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            log.warning(f"Could not read {self.path} ({e}); seeding defaults")
            self._scoreboards = []
            for name in DEFAULT_SCOREBOARDS:
                self._scoreboards.append(Scoreboard(id=self._new_id(), name=name))
            await self.flush()

    async def flush(self) -> bool:
        return await self._mirror.write(lambda: [to_wire(s) for s in self._scoreboards])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_all(self) -> List[Scoreboard]:
        return list(self._scoreboards)

    def find_one(self, scoreboard_id: str) -> Optional[Scoreboard]:
        for scoreboard in self._scoreboards:
            if scoreboard.id == scoreboard_id:
                return scoreboard
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _new_id(self) -> str:
        taken = {s.id for s in self._scoreboards}
        while True:
            candidate = "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))
            if candidate not in taken:
                return candidate

    async def create(self, name: str) -> Scoreboard:
        scoreboard = Scoreboard(id=self._new_id(), name=name)
        self._scoreboards.append(scoreboard)
        await self.flush()
        await self.notify(events.CREATED, scoreboard)
        return scoreboard

    async def delete(self, scoreboard_id: str) -> bool:
        scoreboard = self.find_one(scoreboard_id)
        if scoreboard is None:
            return False
        self._scoreboards.remove(scoreboard)
        await self.flush()
        await self.notify(events.DELETED, scoreboard)
        return True

    async def update_all(self, items: Iterable[Any]) -> List[Scoreboard]:
        """Replace the whole collection; all-or-nothing validation first."""
        if isinstance(items, (str, bytes, dict)) or not hasattr(items, "__iter__"):
            raise ValidationError("Scoreboards data must be an array")

        replacement: List[Scoreboard] = []
        for index, item in enumerate(items):
            sid = _field(item, "id")
            name = _field(item, "name")
            if not isinstance(sid, str) or not sid:
                raise ValidationError("Each scoreboard must have a valid id", details={"index": index})
            if not isinstance(name, str) or not name:
                raise ValidationError("Each scoreboard must have a valid name", details={"index": index})
            replacement.append(Scoreboard(id=sid, name=name))

        self._scoreboards = replacement
        await self.flush()
        await self.notify(events.REPLACED, list(replacement))
        return list(replacement)


def _field(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def _normalize(raw: Any) -> List[Scoreboard]:
    """Accept the current format and the legacy `courtname` one."""
    if not isinstance(raw, list):
        raise ValueError("scoreboard file must hold a list")
    scoreboards = []
    for index, entry in enumerate(raw):
        sid = entry.get("id") or str(index + 1)
        name = entry.get("name") or entry.get("courtname") or f"Scoreboard {index + 1}"
        scoreboards.append(Scoreboard(id=str(sid), name=str(name)))
    return scoreboards
