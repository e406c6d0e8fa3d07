"""
Media file housekeeping for the admin API.

Assets live under ``<media_root>/<assets_dir>/<trigger_type>/`` and are
referenced from the trigger document as ``./<assets_dir>/<trigger_type>/<file>``.
"""

import logging
import re
import time
from pathlib import Path
from typing import Dict, List, Union

from common.errors import MediaNotFoundError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
_UNSAFE_CHARS = re.compile(r"[^a-z0-9\-_]", re.IGNORECASE)


def sanitize_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("-", name)


class MediaStore:
    def __init__(self, media_root: Union[str, Path] = ".", assets_dir: str = "assets"):
        self.media_root = Path(media_root)
        self.assets_dir = assets_dir.strip("/") or "assets"

    @property
    def assets_path(self) -> Path:
        return self.media_root / self.assets_dir

    def _type_dir(self, trigger_type: str) -> Path:
        if not trigger_type or sanitize_name(trigger_type) != trigger_type:
            raise ValueError(f"Invalid trigger type: {trigger_type!r}")
        return self.assets_path / trigger_type

    def reference(self, trigger_type: str, filename: str) -> str:
        return f"./{self.assets_dir}/{trigger_type}/{filename}"

    def save_upload(self, trigger_id: str, trigger_type: str, original_name: str, data: bytes) -> str:
        """Store an uploaded file and return its document reference."""
        target_dir = self._type_dir(trigger_type)
        target_dir.mkdir(parents=True, exist_ok=True)

        timestamp = int(time.time() * 1000)
        filename = f"{sanitize_name(trigger_id)}-{timestamp}{Path(original_name).suffix.lower()}"
        (target_dir / filename).write_bytes(data)

        logger.info(f"[media] Stored upload for trigger {trigger_id} at {target_dir / filename}")
        return self.reference(trigger_type, filename)

    def list_images(self, trigger_type: str) -> List[Dict[str, str]]:
        media_dir = self._type_dir(trigger_type)
        if not media_dir.is_dir():
            return []

        files = []
        for path in sorted(media_dir.iterdir()):
            if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS:
                files.append({
                    "name": path.name,
                    "path": f"/{self.assets_dir}/{trigger_type}/{path.name}",
                    "fullPath": self.reference(trigger_type, path.name),
                })
        return files

    def rename(self, old_path: str, new_name: str, trigger_type: str) -> Dict[str, str]:
        """
        Rename an asset, keeping its extension.

        Raises MediaNotFoundError if the file is missing and FileExistsError
        if the target name is taken. Callers must remap document references.
        """
        type_dir = self._type_dir(trigger_type).resolve()
        old_file = (self.media_root / old_path).resolve()
        if old_file.parent != type_dir:
            raise ValueError(f"{old_path!r} is not inside {self.reference(trigger_type, '')}")
        if not old_file.is_file():
            raise MediaNotFoundError(old_path)

        sanitized = sanitize_name(new_name)
        if not sanitized:
            raise ValueError("New name is empty")
        new_filename = f"{sanitized}{old_file.suffix}"
        new_file = type_dir / new_filename
        if new_file.exists():
            raise FileExistsError(f"A file named {new_filename} already exists")

        old_file.rename(new_file)
        new_path = self.reference(trigger_type, new_filename)
        logger.info(f"[media] Renamed {old_path} -> {new_path}")
        return {"oldPath": old_path, "newPath": new_path}
