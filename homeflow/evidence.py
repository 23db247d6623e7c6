"""Evidence photo storage.

Photos are written once under a key derived from the job, the visit (or
the job itself) and a photo type, and read back through time-limited
signed URLs. ``LocalEvidenceStore`` keeps files on disk and signs URLs
with HMAC-SHA256.
"""

import hashlib
import hmac
import logging
import secrets
import time
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Union
from urllib.parse import parse_qs, quote, unquote, urlparse

from homeflow.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_PHOTO_BYTES = 10 * 1024 * 1024


class PhotoType(str, Enum):
    SCOPE = "SCOPE"
    PARTS = "PARTS"
    MISMATCH = "MISMATCH"
    FLAG = "FLAG"
    ISSUE = "ISSUE"
    COMPLETION = "COMPLETION"


class EvidenceStore(Protocol):
    """Write-once photo storage with signed reads."""

    def put(
        self, job_id: str, owner_id: str, photo_type: PhotoType, data: bytes
    ) -> str:
        """Store a photo and return its key."""
        ...

    def put_many(
        self, job_id: str, owner_id: str, photo_type: PhotoType, photos: Sequence[bytes]
    ) -> List[str]:
        """Store several photos, all or none, and return their keys."""
        ...

    def delete(self, key: str) -> bool:
        """Remove a photo. Returns False if it was not there."""
        ...

    def signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """A URL that grants read access until it expires."""
        ...


class LocalEvidenceStore:
    """Evidence store backed by a local directory."""

    def __init__(
        self,
        root: Union[str, Path],
        secret: str,
        base_url: str = "/evidence",
        default_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("Evidence signing secret is required")
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._secret = secret.encode()
        self.base_url = base_url.rstrip("/")
        self.default_ttl = default_ttl
        self.clock = clock

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValidationError("Invalid evidence key")
        return path

    def put(self, job_id: str, owner_id: str, photo_type: PhotoType, data: bytes) -> str:
        if not data:
            raise ValidationError("Photo is empty")
        if len(data) > MAX_PHOTO_BYTES:
            raise ValidationError("Photo exceeds 10 MB")
        photo_type = PhotoType(photo_type)
        key = f"{job_id}/{owner_id}/{photo_type.value.lower()}/{int(self.clock())}-{secrets.token_hex(4)}"
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise ConflictError(f"Evidence {key} already exists") from e
        logger.debug(f"Stored {photo_type.value} evidence {key} ({len(data)} bytes)")
        return key

    def put_many(
        self, job_id: str, owner_id: str, photo_type: PhotoType, photos: Sequence[bytes]
    ) -> List[str]:
        keys = []
        try:
            for data in photos:
                keys.append(self.put(job_id, owner_id, photo_type, data))
        except Exception:
            for key in keys:
                self.delete(key)
            raise
        return keys

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Deleted evidence {key}")
        return True

    def read(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise NotFoundError(f"Evidence {key} not found")
        return path.read_bytes()

    def _signature(self, key: str, expires: int) -> str:
        message = f"{key}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def signed_url(self, key: str, expires_in: Optional[int] = None) -> str:
        expires = int(self.clock()) +(expires_in or self.default_ttl)
        signature = self._signature(key, expires)
        return f"{self.base_url}/{quote(key)}?expires={expires}&signature={signature}"

    def verify_url(self, url: str, now: Optional[float] = None) -> str:
        """Check a signed URL and return the key it grants.

        Raises:
            ValidationError: If the signature is wrong or the URL has expired
        """
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        try:
            expires = int(params["expires"][0])
            signature = params["signature"][0]
        except (KeyError, IndexError, ValueError):
            raise ValidationError("Malformed evidence URL") from None
        prefix = f"{self.base_url}/"
        if not parsed.path.startswith(prefix):
            raise ValidationError("Malformed evidence URL")
        key = unquote(parsed.path[len(prefix):])
        if not hmac.compare_digest(signature, self._signature(key, expires)):
            raise ValidationError("Invalid evidence signature")
        if (now if now is not None else self.clock()) > expires:
            raise ValidationError("Evidence URL has expired")
        return key
