"""Write-then-rename helper for pointer files, route tables, and the registry."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path | str, content: str, *, encoding: str = "utf-8") -> Path:
    """Replace ``path`` with ``content`` so concurrent readers never see a partial file.

    The temporary file is created in the destination directory so the final
    ``os.replace`` stays on one filesystem. The parent directory must exist.
    """

    target = Path(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target
