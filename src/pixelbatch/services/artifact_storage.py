"""Artifact byte storage.

The production deployment points this at object storage; the filesystem
implementation serves local mode and tests.
"""

import asyncio
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
}


@dataclass
class StoredArtifact:
    key: str
    url: str
    size_bytes: int


def generate_artifact_key(owner_id: str, content_type: str) -> str:
    """Build a unique key ``generated/{owner}/{millis}_{random}.{ext}``."""
    ext = _EXTENSIONS.get(content_type.lower(), "bin")
    safe_owner = "".join(c if c.isalnum() or c in "-_" else "_" for c in owner_id) or "anonymous"
    return f"generated/{safe_owner}/{int(time.time() * 1000)}_{secrets.token_hex(4)}.{ext}"


class ArtifactStorage(ABC):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> StoredArtifact:
        ...


class FilesystemArtifactStorage(ArtifactStorage):
    """Writes artifacts under ``root`` and addresses them under ``base_url``."""

    def __init__(self, root: str | Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, key: str, data: bytes, content_type: str) -> StoredArtifact:
        path = self.root / key
        await asyncio.to_thread(self._write, path, data)
        return StoredArtifact(key=key, url=f"{self.base_url}/{key}", size_bytes=len(data))
