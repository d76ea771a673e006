from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

from src.config import Config
from src.services.errors import CartPersistenceError


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class CartStorage(ABC):
    """Key-value boundary holding the whole cart as one serialized blob per key."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        """Return the stored blob, or None when nothing has been saved yet."""

    @abstractmethod
    def save(self, key: str, blob: str) -> None:
        """Replace the stored blob. Raises CartPersistenceError on failure."""

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryCartStorage(CartStorage):
    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}

    def load(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def save(self, key: str, blob: str) -> None:
        self._blobs[key] = blob

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)


class JsonFileCartStorage(CartStorage):
    """
    One JSON file per storage key.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so readers only ever see a complete snapshot.
    """

    def __init__(self, directory: Path | str | None = None) -> None:
        self.directory = Path(directory) if directory is not None else Config.CART_STORAGE_DIR

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def load(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CartPersistenceError(f"Could not read cart file {path}: {exc}") from exc

    def save(self, key: str, blob: str) -> None:
        path = self._path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".cart-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(blob)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise CartPersistenceError(f"Could not write cart file {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CartPersistenceError(f"Could not delete cart file for {key}: {exc}") from exc


class SessionCartStorage(CartStorage):
    """
    Stores the cart blob in the signed Flask session cookie of one browser.

    Browsers drop cookies above roughly 4 KB without telling the server, so
    when a ``serializer`` is given the signed session is measured before the
    write and an oversized cart raises ``CartPersistenceError`` instead.
    """

    def __init__(
        self,
        session: MutableMapping[str, Any],
        serializer: Any = None,
        max_bytes: Optional[int] = None,
    ) -> None:
        self.session = session
        self.serializer = serializer
        self.max_bytes = max_bytes

    def _check_size(self, key: str, blob: str) -> None:
        if self.serializer is None or self.max_bytes is None:
            return
        candidate = dict(self.session)
        candidate[key] = blob
        size = len(self.serializer.dumps(candidate))
        if size > self.max_bytes:
            raise CartPersistenceError(
                f"Cart needs {size} bytes but the session cookie allows {self.max_bytes}"
            )

    def load(self, key: str) -> Optional[str]:
        try:
            blob = self.session.get(key)
        except RuntimeError as exc:
            raise CartPersistenceError(f"Session unavailable: {exc}") from exc
        return blob if isinstance(blob, str) else None

    def save(self, key: str, blob: str) -> None:
        try:
            self._check_size(key, blob)
            self.session[key] = blob
            if hasattr(self.session, "modified"):
                self.session.modified = True
        except RuntimeError as exc:
            raise CartPersistenceError(f"Session unavailable: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.session.pop(key, None)
        except RuntimeError as exc:
            raise CartPersistenceError(f"Session unavailable: {exc}") from exc
