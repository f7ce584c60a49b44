"""Spill oversized tool output to disk and keep a short preview in the conversation."""

import time
import uuid
from pathlib import Path

from meow.logging import get_logger

log = get_logger(__name__)

SPILL_PREFIX = "meow_tool_"


class OverflowStore:
    """Writes full tool payloads to files under one directory."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def spill(self, data: bytes) -> Path:
        """Write the payload and return the reference path."""
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y%m%d_%H%M%S")
        path = self.directory / f"{SPILL_PREFIX}{stamp}_{uuid.uuid4().hex[:8]}.txt"
        path.write_bytes(data)
        log.info("Tool output spilled", path=str(path), size=len(data))
        return path

    @staticmethod
    def preview(data: bytes, limit: int) -> str:
        """Decode the payload and cut it to `limit` characters."""
        text = data.decode("utf-8", errors="replace")
        if len(text) <= limit:
            return text
        return text[:limit]
