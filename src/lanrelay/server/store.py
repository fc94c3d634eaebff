"""Durable, collision-free storage of received files."""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from pathlib import Path
from urllib.parse import quote

import aiofiles
import aiofiles.os

from lanrelay.errors import StorageWriteError
from lanrelay.server.models import StoredFile

logger = logging.getLogger(__name__)

FILES_PREFIX = "/files"
FALLBACK_NAME = "file.bin"
# In UTF-8 bytes; leaves room for the "<stamp>-" prefix under the
# usual 255-byte file name limit.
MAX_NAME_LENGTH = 200

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_filename(name: str) -> str:
    """Reduce an untrusted file name to a single safe path component."""
    name = _CONTROL_RE.sub("", name or "")
    # Keep only the last component for either separator style.
    name = name.replace("\\", "/").split("/")[-1]
    name = name.strip().lstrip(".").strip()
    if not name:
        return FALLBACK_NAME
    # Lone surrogates cannot be written to disk.
    encoded = name.encode("utf-8", errors="ignore")
    # Keep the tail so the extension survives; drop a split character.
    name = encoded[-MAX_NAME_LENGTH:].decode("utf-8", errors="ignore")
    return name or FALLBACK_NAME


class DurableStore:
    """Owns write access to the content directory.

    Name generation is the only critical section; byte writes for distinct
    names run concurrently.
    """

    def __init__(self, content_dir: Path, base_url: str) -> None:
        self.content_dir = content_dir.resolve()
        self.base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self._last_stamp = 0

    def _reserve_name(self, safe_name: str) -> str:
        with self._lock:
            stamp = max(time.time_ns(), self._last_stamp + 1)
            while (self.content_dir / f"{stamp}-{safe_name}").exists():
                stamp += 1
            self._last_stamp = stamp
        return f"{stamp}-{safe_name}"

    def _resolve_inside(self, saved_as: str) -> Path:
        target = (self.content_dir / saved_as).resolve()
        if target.parent != self.content_dir:
            raise StorageWriteError(f"Refusing to write outside content dir: {saved_as!r}")
        return target

    def make_reference(self, saved_as: str) -> tuple[str, str]:
        """Relative and absolute URLs for a stored name."""
        relative = f"{FILES_PREFIX}/{quote(saved_as)}"
        return relative, f"{self.base_url}{relative}"

    async def persist(self, original_name: str, data: bytes) -> StoredFile:
        """Write *data* under a fresh unique name and return its reference.

        The bytes land in a hidden temporary file first and are moved into
        place with an atomic replace, so the final name is either complete
        or absent.
        """
        partial = self.content_dir / f".{uuid.uuid4().hex}.part"

        try:
            saved_as = self._reserve_name(sanitize_filename(original_name))
            target = self._resolve_inside(saved_as)
            await aiofiles.os.makedirs(self.content_dir, exist_ok=True)
            async with aiofiles.open(partial, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(partial, target)
        except OSError as exc:
            try:
                await aiofiles.os.remove(partial)
            except FileNotFoundError:
                pass
            except OSError as cleanup_exc:
                logger.warning("Could not remove %s: %s", partial, cleanup_exc)
            raise StorageWriteError(f"Could not store {original_name!r}: {exc}") from exc

        relative, full = self.make_reference(saved_as)
        logger.info("Stored %s as %s (%d bytes)", original_name, saved_as, len(data))
        return StoredFile(
            original_name=original_name,
            saved_as=saved_as,
            path=str(target),
            relative_url=relative,
            full_url=full,
            size=len(data),
        )
