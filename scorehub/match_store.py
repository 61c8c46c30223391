"""Tennis match records, one live match per scoreboard.

`create` prunes the scoreboard's existing matches *before* appending, so a
scoreboard that already had a match briefly carries two (the survivor and
the new one) until its next create/update prunes again. `update` prunes
after merging; the updated record carries the newest timestamp and always
survives.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from scorehub import events
from scorehub.events import ChangeNotifier
from scorehub.log import get_logger
from scorehub.models import MatchData, TennisMatch, to_wire
from scorehub.persistence import JsonFileMirror

log = get_logger("scorehub.match_store")


class MonotonicClock:
    """UTC wall clock that never returns the same instant twice."""

    def __init__(self) -> None:
        self._last: Optional[datetime] = None

    def observe(self, moment: datetime) -> None:
        if self._last is None or moment > self._last:
            self._last = moment

    def now(self) -> datetime:
        moment = datetime.now(timezone.utc)
        if self._last is not None and moment <= self._last:
            moment = self._last + timedelta(microseconds=1)
        self._last = moment
        return moment


class MatchStore(ChangeNotifier):
    def __init__(self, path: Path | str, clock: Optional[MonotonicClock] = None) -> None:
        super().__init__()
        self._mirror = JsonFileMirror(path)
        self._matches: List[TennisMatch] = []
        self._clock = clock or MonotonicClock()

    @property
    def path(self) -> Path:
        return self._mirror.path

    @property
    def writes(self) -> int:
        return self._mirror.writes

    async def load(self) -> None:
        """Read the match file; only an unreadable file resets the store.

        Records that fail validation are skipped and logged, the rest load.
        """
        try:
            raw = await self._mirror.read()
            if not isinstance(raw, list):
                raise ValueError("match file must hold a list")
        except (OSError, ValueError) as e:
            log.warning(f"Could not read {self.path} ({e}); starting empty")
            self._matches = []
            await self.flush()
            return

        self._matches = []
        for index, entry in enumerate(raw):
            try:
                match = TennisMatch.model_validate(entry)
            except SchemaError as e:
                log.warning(f"Skipping invalid match #{index} in {self.path}: {e.error_count()} errors")
                continue
            self._clock.observe(match.updated_at)
            self._matches.append(match)
        log.info(f"Loaded {len(self._matches)} matches from {self.path}")

    async def flush(self) -> bool:
        return await self._mirror.write(lambda: [to_wire(m) for m in self._matches])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_all(self) -> List[TennisMatch]:
        return list(self._matches)

    def find_one(self, match_id: str) -> Optional[TennisMatch]:
        return next((m for m in self._matches if m.id == match_id), None)

    def find_by_scoreboard(self, scoreboard_id: str) -> Optional[TennisMatch]:
        return next((m for m in self._matches if m.scoreboard_id == scoreboard_id), None)

    def get_current_match(self) -> Optional[TennisMatch]:
        """Most recently updated match across the whole store.

        `max` keeps the first maximal element, so ties resolve to the
        earliest inserted record.
        """
        if not self._matches:
            return None
        return max(self._matches, key=_updated_key)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _prune(self, scoreboard_id: str) -> List[TennisMatch]:
        """Keep only the newest match for `scoreboard_id`; return the dropped ones."""
        candidates = [m for m in self._matches if m.scoreboard_id == scoreboard_id]
        if len(candidates) <= 1:
            return []
        candidates.sort(key=_updated_key, reverse=True)
        dropped = candidates[1:]
        dropped_ids = {m.id for m in dropped}
        self._matches = [m for m in self._matches if m.id not in dropped_ids]
        log.debug(f"Pruned {len(dropped)} stale matches for scoreboard {scoreboard_id}")
        return dropped

    async def create(self, data: MatchData) -> TennisMatch:
        if data.scoreboard_id:
            self._prune(data.scoreboard_id)

        now = self._clock.now()
        match = TennisMatch(
            **data.model_dump(),
            id=uuid.uuid4().hex,
            created_at=now,
            updated_at=now,
        )
        self._matches.append(match)
        await self.flush()
        await self.notify(events.CREATED, match)
        return match

    async def update(self, match_id: str, data: BaseModel) -> Optional[TennisMatch]:
        """Merge the fields set on `data` over the stored record.

        `data` may be a full `MatchData` or a partial `MatchPatch`; only the
        fields the caller actually set replace stored values.
        """
        index = next((i for i, m in enumerate(self._matches) if m.id == match_id), None)
        if index is None:
            return None

        merged: Dict[str, Any] = self._matches[index].model_dump()
        merged.update(data.model_dump(exclude_unset=True))
        merged["id"] = match_id
        merged["updated_at"] = self._clock.now()
        match = TennisMatch.model_validate(merged)
        self._matches[index] = match

        self._prune(match.scoreboard_id)

        await self.flush()
        await self.notify(events.UPDATED, match)
        return match

    async def delete(self, match_id: str) -> bool:
        match = self.find_one(match_id)
        if match is None:
            return False
        self._matches.remove(match)
        await self.flush()
        await self.notify(events.DELETED, match)
        return True


def _updated_key(match: TennisMatch) -> datetime:
    return match.updated_at
