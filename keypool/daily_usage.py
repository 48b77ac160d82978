"""Per-credential request counts for the current calendar day.

The whole store is a single JSON record::

    {"day": "2026-02-13", "counts": {"<credential>": 12, ...}}

A record for any other day is never merged: it is treated as all zeros and
replaced on the next write.
"""

import asyncio
import json
import logging
import time
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from zoneinfo import ZoneInfo

import aiofiles

logger = logging.getLogger(__name__)


class DailyUsageStore:
    """Calendar-day counters, persisted after every increment.

    ``add`` and ``clear`` only touch memory; the scheduler calls them under
    its own lock and writes the file with ``save`` after releasing it. Saves
    are serialized and each one writes the counts as they are when it starts
    writing, so an older state never lands on disk after a newer one.
    """

    def __init__(
        self,
        file_path: Union[str, Path],
        tz: Optional[tzinfo] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.file_path = Path(file_path)
        self.tz = tz or ZoneInfo("UTC")
        self._clock = clock
        self._day: str = self.today()
        self._counts: Dict[str, int] = {}
        self._save_lock = asyncio.Lock()

    def today(self) -> str:
        return datetime.fromtimestamp(self._clock(), self.tz).date().isoformat()

    @property
    def day(self) -> str:
        return self._day

    def get(self, credential: str) -> int:
        if self._day != self.today():
            return 0
        return self._counts.get(credential, 0)

    def snapshot(self) -> Dict[str, int]:
        if self._day != self.today():
            return {}
        return dict(self._counts)

    def add(self, credential: str) -> int:
        self._roll_over()
        count = self._counts.get(credential, 0) + 1
        self._counts[credential] = count
        return count

    def clear(self) -> None:
        self._day = self.today()
        self._counts = {}

    async def increment(self, credential: str) -> int:
        count = self.add(credential)
        await self.save()
        return count

    async def reset(self) -> None:
        self.clear()
        await self.save()

    async def load(self) -> None:
        """Load today's counts; anything unusable starts the day empty."""
        today = self.today()
        self._day = today
        self._counts = {}

        if not self.file_path.exists():
            logger.info("No usage file at %s, starting fresh", self.file_path)
            return

        try:
            async with aiofiles.open(self.file_path, "r", encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content) if content.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to read usage file %s: %s", self.file_path, e)
            return

        if not isinstance(data, dict) or data.get("day") != today:
            logger.info(
                "Usage file %s is from %s, resetting for %s",
                self.file_path,
                data.get("day") if isinstance(data, dict) else None,
                today,
            )
            return

        counts = data.get("counts", {})
        if isinstance(counts, dict):
            self._counts = {
                str(k): int(v) for k, v in counts.items() if isinstance(v, int)
            }
        logger.info(
            "Loaded usage for %d keys from %s", len(self._counts), self.file_path
        )

    async def save(self) -> None:
        """Write the store atomically (temp file, then rename)."""
        async with self._save_lock:
            payload = json.dumps({"day": self._day, "counts": self._counts}, indent=2)
            temp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                temp_path.replace(self.file_path)
            except OSError as e:
                logger.error("Failed to save usage file %s: %s", self.file_path, e)
                raise

    def _roll_over(self) -> None:
        today = self.today()
        if self._day != today:
            logger.info("Day changed from %s to %s, resetting counts", self._day, today)
            self._day = today
            self._counts = {}
