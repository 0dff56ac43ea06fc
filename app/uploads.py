import logging
import re
import uuid
from pathlib import Path
from typing import BinaryIO

from errors import ExtensionNotAllowed, FileTooLarge, StorageError

logger = logging.getLogger("shortdrop.uploads")

CHUNK_SIZE = 64 * 1024

# Names we generate: 32 hex chars + "." + extension. Anything else is not ours.
STORED_NAME = re.compile(r"[0-9a-f]{32}\.[a-z0-9]{1,8}")


def extension_of(filename: str) -> str:
    name = Path(filename or "").name
    if "." not in name.strip("."):
        return ""
    return name.rsplit(".", 1)[-1].lower()


def stored_path(upload_dir: Path, name: str) -> Path | None:
    """Map a generated name to its path, or None if it could not be one of ours."""
    if not STORED_NAME.fullmatch(name or ""):
        return None
    return Path(upload_dir) / name


class UploadWriter:
    """Write one upload to disk as its bytes arrive.

    The declared name only contributes its extension, which is checked before
    anything touches the disk. ``write`` keeps a running total and abandons the
    upload (removing the partial file) as soon as it passes ``max_bytes``.
    Any failure leaves nothing behind.
    """

    def __init__(self, declared_filename: str, upload_dir: Path, max_bytes: int, allowed_extensions):
        ext = extension_of(declared_filename)
        if ext not in allowed_extensions:
            logger.warning("Rejected upload %r: extension %r not allowed", declared_filename, ext)
            raise ExtensionNotAllowed(f"File type '.{ext}' not allowed" if ext else "File type not allowed")

        self.declared_filename = declared_filename
        self.max_bytes = max_bytes
        self.name = f"{uuid.uuid4().hex}.{ext}"
        self.written = 0

        upload_dir = Path(upload_dir)
        self.path = upload_dir / self.name
        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create upload dir %s: %s", upload_dir, exc)
            raise StorageError("Failed to create uploads directory") from exc
        try:
            self._out = open(self.path, "xb")
        except OSError as exc:
            logger.error("Failed to open upload %s: %s", self.path, exc)
            raise StorageError("Failed to save file") from exc

    def write(self, chunk: bytes) -> None:
        self.written += len(chunk)
        if self.written > self.max_bytes:
            self.abort()
            logger.warning("Rejected upload %r: exceeds %d bytes", self.declared_filename, self.max_bytes)
            raise FileTooLarge(f"File too large. Max size: {self.max_bytes} bytes")
        try:
            self._out.write(chunk)
        except OSError as exc:
            self.abort()
            logger.error("Failed to write upload %s: %s", self.path, exc)
            raise StorageError("Failed to save file") from exc

    def close(self) -> str:
        """Finish the upload and return its generated name."""
        try:
            self._out.close()
        except OSError as exc:
            self.abort()
            logger.error("Failed to write upload %s: %s", self.path, exc)
            raise StorageError("Failed to save file") from exc
        logger.info("Stored upload %s (%d bytes)", self.name, self.written)
        return self.name

    def abort(self) -> None:
        if not self._out.closed:
            try:
                self._out.close()
            except OSError:
                logger.exception("Failed to close partial upload %s", self.path)
        _discard(self.path)


def accept(
    stream: BinaryIO,
    declared_filename: str,
    upload_dir: Path,
    max_bytes: int,
    allowed_extensions,
) -> str:
    """Copy ``stream`` into ``upload_dir`` and return the generated file name.

    Raises ExtensionNotAllowed / FileTooLarge for client mistakes and
    StorageError when the disk (or the stream) lets us down.
    """
    writer = UploadWriter(declared_filename, upload_dir, max_bytes, allowed_extensions)
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
    except OSError as exc:
        writer.abort()
        logger.error("Failed to read upload %r: %s", declared_filename, exc)
        raise StorageError("Failed to save file") from exc
    except Exception:
        writer.abort()
        raise
    return writer.close()


def remove(upload_dir: Path, name: str) -> bool:
    """Delete a stored file. Returns False when it could not be removed."""
    path = stored_path(upload_dir, name)
    if path is None:
        logger.error("Refusing to delete unexpected file name %r", name)
        return False
    try:
        path.unlink()
    except FileNotFoundError:
        logger.warning("Stored file %s was already missing", path)
        return False
    except OSError as exc:
        logger.error("Failed to delete stored file %s: %s", path, exc)
        return False
    return True


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to remove partial upload %s", path)
