"""
Device Identity

Derives the anonymized identity merged into every payload: a one-way hash
of the installation identifier, the platform level and the application
version code.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from submission.errors import BuildFailure

Hasher = Callable[[str, str], str]
InstallationIdSource = Callable[[], str]

IDENTITY_SALT = ""


def make_hasher(algorithm: str = "sha256") -> Hasher:
    """Return a hasher producing the lowercase hex digest of ``text + salt``."""

    def _hash(text: str, salt: str) -> str:
        try:
            digest = hashlib.new(algorithm)
        except (ValueError, TypeError) as e:
            raise BuildFailure(f"Unsupported hash algorithm: {algorithm}") from e
        digest.update((text + salt).encode("utf-8"))
        return digest.hexdigest()

    return _hash


sha256_hex = make_hasher("sha256")


class FileInstallationId:
    """Installation identifier kept in a local file, created on first read."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def __call__(self) -> str:
        if self._path.is_file():
            value = self._path.read_text(encoding="utf-8").strip()
            if value:
                return value
        value = uuid.uuid4().hex[:16]
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(value, encoding="utf-8")
        return value


@dataclass(frozen=True)
class DeviceIdentity:
    """Identity fields transmitted with every payload."""

    android_id: str
    android_sdk: int
    netguard: int

    def as_fields(self) -> dict[str, str | int]:
        return {
            "android_id": self.android_id,
            "android_sdk": self.android_sdk,
            "netguard": self.netguard,
        }


class IdentityProvider:
    """Recomputes the device identity from live sources on each call."""

    def __init__(
        self,
        installation_id: InstallationIdSource,
        sdk_level: int,
        version_code: int,
        hasher: Optional[Hasher] = None,
    ):
        self._installation_id = installation_id
        self._sdk_level = sdk_level
        self._version_code = version_code
        self._hasher = hasher or sha256_hex

    def current(self) -> DeviceIdentity:
        """
        Build the identity for one submission.

        Raises:
            BuildFailure: if the identifier cannot be read or hashed
        """
        try:
            raw = self._installation_id()
        except OSError as e:
            raise BuildFailure(f"Installation identifier unreadable: {type(e).__name__}") from e

        if not isinstance(raw, str) or not raw:
            raise BuildFailure("Installation identifier unavailable")

        try:
            hashed = self._hasher(raw, IDENTITY_SALT)
        except BuildFailure:
            raise
        except Exception as e:
            raise BuildFailure(f"Hashing failed: {type(e).__name__}") from e

        if not isinstance(hashed, str) or not hashed or hashed == raw:
            raise BuildFailure("Hasher returned an unusable identifier")

        return DeviceIdentity(
            android_id=hashed,
            android_sdk=self._sdk_level,
            netguard=self._version_code,
        )
