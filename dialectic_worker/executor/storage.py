"""File storage for contribution artifacts.

Writes are exclusive: a path that already exists is never overwritten.
A collision means two artifacts resolved to the same name, which is a
naming defect, so it surfaces as StorageConflictError instead of being
retried around.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dialectic_worker.errors import StorageConflictError

logger = logging.getLogger(__name__)

STORAGE_ROOT = os.environ.get("DIALECTIC_STORAGE_ROOT", str(Path.cwd() / "dialectic_storage"))


class FileStorage:
    """Local filesystem storage rooted at a directory."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or STORAGE_ROOT)

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root.resolve()):
            raise ValueError(f"Storage path escapes root: {path}")
        return full

    def upload(self, path: str, content: bytes) -> str:
        """Write content at path. Raises StorageConflictError if it exists."""
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(full, "xb") as f:
                f.write(content)
        except FileExistsError:
            logger.error(f"[storage] Conflict writing {path}")
            raise StorageConflictError(path) from None
        logger.info(f"[storage] Wrote {path} ({len(content)} bytes)")
        return path

    def download(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def list(self, prefix: str = "") -> list[str]:
        """Relative paths of every file under prefix, sorted."""
        base = self._resolve(prefix) if prefix else self.root
        if not base.exists():
            return []
        return sorted(
            str(p.relative_to(self.root)).replace(os.sep, "/")
            for p in base.rglob("*")
            if p.is_file()
        )

    def delete(self, path: str) -> None:
        """Remove a file written by this run. Missing paths are ignored."""
        self._resolve(path).unlink(missing_ok=True)
        logger.info(f"[storage] Deleted {path}")
