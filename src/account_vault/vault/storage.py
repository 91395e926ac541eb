# Vault - Blob Storage
#
# Reads and atomically replaces encrypted blobs on disk. Writes go to a
# sibling temp file (mode 600), are fsynced, then renamed over the target,
# so a crash mid-write never leaves a torn blob behind.

import logging
import os
from pathlib import Path
from typing import Optional, Union

from ..errors import IOFailure

logger = logging.getLogger(__name__)


def read_blob(path: Union[str, Path]) -> Optional[bytes]:
    """Read a blob, returning None when the file does not exist."""
    p = Path(path)
    try:
        return p.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise IOFailure(f"Failed to read {p}: {exc}") from exc


def write_blob_atomic(path: Union[str, Path], data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file + os.replace."""
    p = Path(path)
    tmp_path = p.with_name(p.name + ".tmp")
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(tmp_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, p)
    except OSError as exc:
        # Clean up temp file on failure
        if tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                logger.debug("Could not remove temp file %s", tmp_path, exc_info=True)
        raise IOFailure(f"Failed to write {p}: {exc}") from exc
