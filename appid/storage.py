"""
File helpers shared by the registry, backup, and recovery code.

All writes go through atomic_write_text: content lands in a temp file in
the destination directory and is moved into place with os.replace, so a
concurrent reader sees either the old file or the new one, never a torn
write.
"""

import os
import tempfile
from pathlib import Path

from .errors import StorageIOFailure


def atomic_write_text(path: Path, content: str) -> None:
    """Write text to path atomically (temp file + fsync + rename).

    Newlines are written exactly as given, and surrogate-escaped bytes
    from read_text_exact are written back as the original bytes. Raises
    StorageIOFailure.
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp",
        )
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageIOFailure(path, e) from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def read_text_exact(path: Path) -> str:
    """Read a UTF-8 file without newline translation or decode errors.

    Bytes that are not valid UTF-8 come back as lone surrogates
    (surrogateescape), so writing the text back reproduces the file exactly.

    FileNotFoundError propagates so callers can treat a missing file
    separately; other OS errors become StorageIOFailure.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
            return f.read()
    except FileNotFoundError:
        raise
    except OSError as e:
        raise StorageIOFailure(path, e) from e


def encode_exact(text: str) -> bytes:
    """The file bytes a read_text_exact() string came from."""
    return text.encode("utf-8", errors="surrogateescape")


def readable_text(text: str) -> str:
    """`text` with any undecodable bytes shown as U+FFFD."""
    return encode_exact(text).decode("utf-8", errors="replace")
