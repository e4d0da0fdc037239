"""
media/avatars.py -- Profile image hosting.

The account service treats an avatar as an opaque AvatarRef{id, url}: it
stores whatever upload() returns and never looks inside. LocalAvatarHost
keeps files on disk under a uuid name; api/main.py serves that directory at
AVATAR_BASE_URL. A CDN-backed host only needs the same upload()/delete()
signatures.

Uploads arrive either as raw bytes or as a base64 data URI
("data:image/png;base64,...") -- the registration form posts the latter.

Layer rule: imports auth.models (for AvatarRef) and core/ only.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
import uuid
from pathlib import Path
from typing import Protocol

from auth.models import AvatarRef
from core.errors import ValidationError

logger = logging.getLogger("kindiyo.media")

MAX_AVATAR_BYTES = 2 * 1024 * 1024

_DEFAULT_FILENAME = "default.png"
_DEFAULT_IMAGE = Path(__file__).with_name(_DEFAULT_FILENAME)
_DEFAULT_ID = "default"

_DATA_URI = re.compile(r"^data:image/(?P<ext>png|jpe?g|gif|webp);base64,(?P<data>.+)$", re.DOTALL)


class AvatarHost(Protocol):
    default: AvatarRef

    def upload(self, image: bytes | str) -> AvatarRef: ...

    def delete(self, avatar: AvatarRef) -> None: ...


def decode_image(image: bytes | str) -> tuple[bytes, str]:
    """Return (content, extension) for raw bytes or a base64 image data URI."""
    if isinstance(image, bytes):
        return image, "png"
    match = _DATA_URI.match(image.strip())
    if match is None:
        raise ValidationError("Avatar must be a base64 image data URI")
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Avatar data is not valid base64") from exc
    ext = match.group("ext").replace("jpeg", "jpg")
    return content, ext


class LocalAvatarHost:
    """Stores avatars as files in upload_dir, addressed as base_url/<file>.

    The placeholder image is copied into upload_dir on construction so the
    default URL resolves from the same static mount as uploaded files.
    """

    def __init__(self, upload_dir: str | Path, base_url: str) -> None:
        self.upload_dir = Path(upload_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")
        self.default = AvatarRef(id=_DEFAULT_ID, url=f"{self.base_url}/{_DEFAULT_FILENAME}")
        default_path = self.upload_dir / _DEFAULT_FILENAME
        if not default_path.exists():
            shutil.copyfile(_DEFAULT_IMAGE, default_path)

    def upload(self, image: bytes | str) -> AvatarRef:
        content, ext = decode_image(image)
        if not content:
            raise ValidationError("Avatar image is empty")
        if len(content) > MAX_AVATAR_BYTES:
            raise ValidationError("Avatar image cannot exceed 2 MB")
        avatar_id = f"avatars/{uuid.uuid4().hex}"
        filename = f"{avatar_id.split('/', 1)[1]}.{ext}"
        (self.upload_dir / filename).write_bytes(content)
        return AvatarRef(id=avatar_id, url=f"{self.base_url}/{filename}")

    def delete(self, avatar: AvatarRef) -> None:
        """Remove an uploaded file. The shared placeholder is never removed."""
        if avatar.id == _DEFAULT_ID:
            return
        filename = avatar.url.rsplit("/", 1)[-1]
        path = self.upload_dir / filename
        if path.parent != self.upload_dir or not path.is_file():
            return
        path.unlink(missing_ok=True)
        logger.info("Deleted avatar %s", avatar.id)
