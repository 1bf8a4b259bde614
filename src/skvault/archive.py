"""Packing dump output into the single payload archive.

The pipeline only needs "a payload file on disk". When sources are
configured, TarArchiver produces it the way the old cron script did with
``tar --remove-files -cf current_backup.tar ...``. Compress dumps yourself
before packing; the archive is plain tar.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger("skvault.archive")


class Archiver(ABC):
    """Produces the payload file from a list of sources."""

    @abstractmethod
    def pack(self, sources: list[Path], output: Path, remove_sources: bool = False) -> Path:
        """Pack ``sources`` into ``output`` and return it."""


class TarArchiver(Archiver):
    """Uncompressed tar archiver.

    Each source is stored under its own name, so
    ``/opt/backup/dumps/db.sql.gz`` becomes ``db.sql.gz`` and a source
    directory keeps its tree beneath its name. Two sources with the same
    name are rejected.
    """

    def pack(self, sources: list[Path], output: Path, remove_sources: bool = False) -> Path:
        """Pack sources into a tar archive.

        Args:
            sources: Files or directories to include.
            output: Archive path; replaced if it exists.
            remove_sources: Delete each source once the archive is complete.

        Returns:
            Path to the archive.

        Raises:
            FileNotFoundError: If a source is missing. Nothing is written.
            ValueError: If two sources share a name. Nothing is written.
        """
        output = Path(output)
        missing = [str(s) for s in sources if not Path(s).exists()]
        if missing:
            raise FileNotFoundError(f"Dump sources not found: {', '.join(missing)}")

        seen: dict[str, Path] = {}
        for source in sources:
            name = Path(source).name
            if name in seen:
                raise ValueError(
                    f"Dump sources {seen[name]} and {source} would both be stored as '{name}'"
                )
            seen[name] = Path(source)

        partial = output.with_name(output.name + ".part")
        try:
            with tarfile.open(partial, "w") as tar:
                for source in sources:
                    source = Path(source)
                    tar.add(source, arcname=source.name)
                    logger.debug("Packed %s", source)
            os.chmod(partial, 0o600)
            os.replace(partial, output)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        if remove_sources:
            for source in sources:
                source = Path(source)
                if source.is_dir() and not source.is_symlink():
                    shutil.rmtree(source)
                else:
                    source.unlink()

        logger.info("Packed %d source(s) into %s", len(sources), output)
        return output
