"""
Media Store: folder-keyed blob storage for report photos.

Each report stage writes its photos under its own folder, keyed by link:

    report_upload/reports/{link_id}/{epoch_ms}_{safe_name}   (report created)
    in_progress/{link_id}/{epoch_ms}_{safe_name}             (progress update)
    report_upload/resolved/{link_id}/{epoch_ms}_{safe_name}  (resolution)

There is no manifest: listing a folder is the index.
"""

import asyncio
import logging
import re
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Sequence

from ..core.config import get_settings

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".heic", ".heif")


# =============================================================================
# EXCEPTIONS
# =============================================================================


class MediaStoreError(Exception):
    """Blob could not be written or addressed."""
    pass


class ObjectExistsError(MediaStoreError):
    """An object is already stored at the path."""
    pass


# =============================================================================
# PATH CONVENTIONS
# =============================================================================


class StageFolder(str, Enum):
    REPORTS = "report_upload/reports"
    IN_PROGRESS = "in_progress"
    RESOLVED = "report_upload/resolved"

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]


STAGE_LABELS = {
    StageFolder.IN_PROGRESS: "In Progress",
    StageFolder.REPORTS: "Reports",
    StageFolder.RESOLVED: "Resolved",
}


def safe_file_name(name: str) -> str:
    """Replace anything outside [a-zA-Z0-9._-] with an underscore."""
    return re.sub(r"[^a-zA-Z0-9._-]", "_", name or "image")


def link_folder(stage: StageFolder, link_id: str) -> str:
    """Folder holding one stage's photos for a link."""
    link_id = (link_id or "").strip().replace("/", "_")
    if not link_id or link_id in (".", ".."):
        raise MediaStoreError("A link id is required to address stage photos")
    return f"{stage.value}/{link_id}"


def stage_object_path(
    stage: StageFolder,
    link_id: str,
    filename: str,
    now: datetime | None = None,
    unique: str | None = None,
) -> str:
    """`{epoch_ms}_{safe_name}` under the stage folder, with `unique` between the two when given."""
    now = now or datetime.now(timezone.utc)
    epoch_ms = int(now.timestamp() * 1000)
    prefix = f"{epoch_ms}_{unique}" if unique else str(epoch_ms)
    return f"{link_folder(stage, link_id)}/{prefix}_{safe_file_name(filename)}"


def is_image_name(name: str | None) -> bool:
    return bool(name) and name.lower().endswith(IMAGE_EXTENSIONS)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ImageUpload:
    """An uploaded image waiting to be stored."""
    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").lower().startswith("image/")


@dataclass
class StoredObject:
    path: str
    url: str
    size: int | None = None


# =============================================================================
# STORES
# =============================================================================


class MediaStore(ABC):
    """Abstract blob store addressed by slash-separated paths."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str) -> StoredObject:
        """Store a blob. Existing paths are never overwritten."""

    @abstractmethod
    async def list_folder(self, folder: str) -> list[StoredObject]:
        """List blobs directly under a folder. Missing folders are empty."""

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Public URL of a stored blob."""


class LocalMediaStore(MediaStore):
    """Filesystem-backed store served from a static URL prefix."""

    def __init__(self, root: str | Path, public_base_url: str):
        self._root = Path(root)
        self._public_base_url = public_base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if not target.is_relative_to(self._root.resolve()):
            raise MediaStoreError(f"Path escapes media root: {path}")
        return target

    async def put(self, path: str, data: bytes, content_type: str) -> StoredObject:
        target = self._resolve(path)
        await asyncio.to_thread(self._write, target, data)
        logger.debug(f"Stored {len(data)} bytes at {path} ({content_type})")
        return StoredObject(path=path, url=self.public_url(path), size=len(data))

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(target, "xb") as fh:
                fh.write(data)
        except FileExistsError:
            raise ObjectExistsError(f"Object already exists: {target.name}")

    async def list_folder(self, folder: str) -> list[StoredObject]:
        directory = self._resolve(folder)
        entries = await asyncio.to_thread(self._scan, directory)
        return [
            StoredObject(
                path=f"{folder}/{name}",
                url=self.public_url(f"{folder}/{name}"),
                size=size,
            )
            for name, size in entries
        ]

    @staticmethod
    def _scan(directory: Path) -> list[tuple[str, int]]:
        if not directory.is_dir():
            return []
        return sorted(
            (entry.name, entry.stat().st_size)
            for entry in directory.iterdir()
            if entry.is_file()
        )

    def public_url(self, path: str) -> str:
        return f"{self._public_base_url}/{path}"


@lru_cache
def get_media_store() -> MediaStore:
    """Get the configured media store."""
    settings = get_settings()
    return LocalMediaStore(settings.media_root, settings.media_public_base_url)


# =============================================================================
# STAGE HELPERS
# =============================================================================


async def upload_stage_images(
    store: MediaStore,
    stage: StageFolder,
    link_id: str,
    images: Sequence[ImageUpload],
    now: datetime | None = None,
) -> list[str]:
    """Upload a stage's photos in order and return their public URLs.

    A name already taken in the same millisecond gets a random suffix.
    """
    urls = []
    for image in images:
        path = stage_object_path(stage, link_id, image.filename, now)
        try:
            stored = await store.put(path, image.data, image.content_type)
        except ObjectExistsError:
            path = stage_object_path(
                stage, link_id, image.filename, now, unique=secrets.token_hex(4)
            )
            stored = await store.put(path, image.data, image.content_type)
        urls.append(stored.url)
    if urls:
        logger.info(f"Uploaded {len(urls)} image(s) to {link_folder(stage, link_id)}")
    return urls


async def list_stage_images(store: MediaStore, link_id: str) -> dict[str, list[str]]:
    """Photo gallery for a link: public image URLs grouped by stage label."""
    gallery: dict[str, list[str]] = {}
    for stage in (StageFolder.IN_PROGRESS, StageFolder.REPORTS, StageFolder.RESOLVED):
        try:
            objects = await store.list_folder(link_folder(stage, link_id))
        except (MediaStoreError, OSError) as e:
            logger.warning(f"Could not list {stage.value} photos for {link_id}: {e}")
            objects = []
        gallery[stage.label] = [obj.url for obj in objects if is_image_name(obj.path)]
    return gallery
