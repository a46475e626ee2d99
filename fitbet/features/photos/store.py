"""
Local filesystem photo storage.

Layout: <PHOTOS_DIRECTORY>/<participant_id>/<stage>/<slot>.jpg
where stage is "start" or "checkin-<n>". References are POSIX paths relative
to the root, so the root can move without rewriting stored references.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

from fitbet.core.config import settings
from fitbet.core.errors import NotFoundError, ValidationError
from fitbet.models.participant import PHOTO_SLOTS


class PhotoStore(Protocol):
    def save(self, raw: bytes, participant_id: int, slot: str, stage: Union[int, str] = "start") -> str:
        ...

    def load(self, reference: str) -> bytes:
        ...


class LocalPhotoStore:
    def __init__(self, root: Optional[Union[str, Path]] = None):
        self.root = Path(root or settings.PHOTOS_DIRECTORY).resolve()

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def _path_for(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if self.root not in path.parents:
            raise ValidationError(f"Photo reference escapes storage root: {reference}")
        return path

    def save(self, raw: bytes, participant_id: int, slot: str, stage: Union[int, str] = "start") -> str:
        if slot not in PHOTO_SLOTS:
            raise ValidationError(f"Unknown photo slot: {slot}")
        if not raw:
            raise ValidationError("Photo is empty")

        stage_dir = "start" if stage == "start" else f"checkin-{stage}"
        reference = f"{participant_id}/{stage_dir}/{slot}.jpg"
        path = self._path_for(reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(raw)
        return reference

    def load(self, reference: str) -> bytes:
        path = self._path_for(reference)
        if not path.is_file():
            raise NotFoundError(f"Photo not found: {reference}")
        return path.read_bytes()

    def health(self) -> Dict[str, Any]:
        try:
            root = self.ensure_root()
            probe = root / ".probe_write"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
            return {"status": "ok", "kind": "local_fs", "root": root.as_posix()}
        except OSError as e:
            return {"status": "error", "kind": "local_fs", "root": self.root.as_posix(), "error": str(e)}
