"""File-backed scratch buffer for a command's raw output."""

from pathlib import Path
from typing import BinaryIO

import aiofiles

from http_diag.utils import ensure_directory


class ScanOutputBuffer:
    """Transient sink holding the current step's stdout and stderr.

    Steps run strictly one after another, so a single buffer is reused for
    the whole run without locking. Each command launch reopens the file
    for writing, which means only the final attempt's output survives a
    retry loop.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def open_for_command(self) -> BinaryIO:
        """Open the buffer for a child process to write into.

        The caller owns the returned file object and must close it once
        the process has been spawned.
        """
        ensure_directory(self.path.parent)
        return open(self.path, "wb")

    async def read(self) -> str:
        """Read the buffered output, decoding leniently."""
        if not self.path.exists():
            return ""
        async with aiofiles.open(self.path, "rb") as handle:
            data = await handle.read()
        return data.decode("utf-8", errors="replace")

    def truncate(self) -> None:
        """Empty the buffer, leaving the file in place."""
        if self.path.parent.is_dir():
            with open(self.path, "wb"):
                pass

    def is_empty(self) -> bool:
        return not self.path.exists() or self.path.stat().st_size == 0
