"""
Dashboard display settings.

A single process-wide settings document. Reads return the defaults until
the first update; updates merge the supplied fields and stamp who changed
them and when.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.logging import get_logger

from ..auth.tokens import utc_now

DEFAULT_SETTINGS: Dict[str, Any] = {
    "theme": "light",
    "itemsPerPage": 20,
    "dateFormat": "YYYY-MM-DD",
    "language": "en",
}


class DisplaySettingsUpdate(BaseModel):
    """Update body; omitted fields keep their current value."""
    model_config = ConfigDict(extra="forbid")

    theme: Optional[Literal["light", "dark"]] = None
    itemsPerPage: Optional[int] = Field(default=None, ge=5, le=100)
    dateFormat: Optional[str] = Field(default=None, min_length=1, max_length=32)
    language: Optional[Literal["en", "fr", "es"]] = None


class DisplaySettingsStore:
    """In-memory display settings."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._settings: Dict[str, Any] = dict(DEFAULT_SETTINGS)
        self._updated_at: Optional[str] = None
        self._updated_by: Optional[str] = None
        self._lock = asyncio.Lock()
        self.logger = get_logger("reporting.display_settings")

    def _snapshot(self) -> Dict[str, Any]:
        return {**self._settings, "updatedAt": self._updated_at, "updatedBy": self._updated_by}

    async def get(self) -> Dict[str, Any]:
        async with self._lock:
            return self._snapshot()

    async def update(self, changes: DisplaySettingsUpdate, user_id: str) -> Dict[str, Any]:
        async with self._lock:
            self._settings.update(changes.model_dump(exclude_none=True))
            self._updated_at = self._clock().isoformat().replace("+00:00", "Z")
            self._updated_by = user_id
            self.logger.info("Display settings updated", user_id=user_id,
                             fields=sorted(changes.model_dump(exclude_none=True)))
            return self._snapshot()
