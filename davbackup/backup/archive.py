"""
Archive handlers for backup artifacts.

Supports multiple formats:
- tar: Plain tar, gzipped in place after writing when compression is on
- zip: Zip container (deflated or stored)
- rar: Built with the external ``rar`` tool, when it is installed

Every format is filled through the same entry naming rules, so a directory
tree produces identical entry names whatever the codec.
"""

import os
import gzip
import shutil
import tarfile
import zipfile
import tempfile
import subprocess
from enum import Enum
from typing import Iterator, List, Tuple


RAR_EXECUTABLE = 'rar'


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


class ArchiveType(str, Enum):
    TAR = 'tar'
    ZIP = 'zip'
    RAR = 'rar'


def parse_archive_type(value) -> ArchiveType:
    """
    Convert a user supplied archive type into an ArchiveType.

    Args:
        value: ArchiveType member or its string value (case-insensitive)

    Returns:
        Matching ArchiveType

    Raises:
        ArchiveError: If the value names no known format
    """
    if isinstance(value, ArchiveType):
        return value

    try:
        return ArchiveType(str(value).strip().lower())
    except ValueError:
        raise ArchiveError(
            f"Invalid archive type: {value}. "
            f"Valid options: {[t.value for t in ArchiveType]}"
        )


def _rar_available() -> bool:
    return shutil.which(RAR_EXECUTABLE) is not None


# Capability registry: format -> check telling whether this host can write it
_CAPABILITIES = {
    ArchiveType.TAR: lambda: True,
    ArchiveType.ZIP: lambda: True,
    ArchiveType.RAR: _rar_available,
}


def is_available(archive_type) -> bool:
    """Check whether this host can write archives of the given type."""
    return _CAPABILITIES[parse_archive_type(archive_type)]()


def available_types() -> List[ArchiveType]:
    """List the archive types this host can write."""
    return [t for t in ArchiveType if _CAPABILITIES[t]()]


def require_available(archive_type) -> ArchiveType:
    """
    Resolve an archive type and make sure it can be written here.

    Raises:
        ArchiveError: If the type is unknown or its codec is missing
    """
    archive_type = parse_archive_type(archive_type)
    if not _CAPABILITIES[archive_type]():
        raise ArchiveError(
            f"Archive type '{archive_type.value}' is not supported on this host "
            f"(available: {[t.value for t in available_types()]})"
        )
    return archive_type


def artifact_name(prefix: str, archive_type, compression: bool) -> str:
    """
    Build the final artifact filename.

    Format: {prefix}.tar, {prefix}.tar.gz, {prefix}.zip or {prefix}.rar

    Args:
        prefix: Job prefix
        archive_type: Archive type
        compression: Whether compression was requested

    Returns:
        Filename (without path)
    """
    archive_type = parse_archive_type(archive_type)
    if archive_type is ArchiveType.TAR and compression:
        return f"{prefix}.tar.gz"
    return f"{prefix}.{archive_type.value}"


def iter_tree_entries(root: str) -> Iterator[Tuple[str, str]]:
    """
    Walk a directory tree and yield its regular files.

    Symlinks to files are yielded like the files they point to; every codec
    stores the target contents. Broken links and links to directories are
    skipped. Entry names are relative to ``root`` and always use forward slashes.
    Directories are walked in sorted order so the output is reproducible.

    Args:
        root: Directory to walk

    Yields:
        (absolute file path, entry name) tuples
    """
    root = os.path.abspath(root)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if not os.path.isfile(path):
                continue
            entry_name = os.path.relpath(path, root).replace(os.sep, '/')
            yield path, entry_name


class ArchiveHandle:
    """
    In-progress archive bound to a single file on disk.

    Subclasses implement the codec specific ``_open``, ``_write`` and
    ``_close`` steps.
    """

    extension = None

    def __init__(self, base_path: str, compression: bool = True):
        """
        Open the archive for writing.

        Args:
            base_path: Archive path without extension
            compression: Whether the codec should compress entries

        Raises:
            ArchiveError: If the archive cannot be created
        """
        self.base_path = base_path
        self.path = f"{base_path}.{self.extension}"
        self.compression = compression
        self.entries = []
        self.finalized = False

        try:
            self._open()
        except Exception as e:
            self.discard()
            raise ArchiveError(f"Failed to create archive {self.path}: {e}") from e

    def add_file(self, source_path: str, entry_name: str):
        """
        Add a single file to the archive.

        Args:
            source_path: File on disk
            entry_name: Name of the entry inside the archive
        """
        if self.finalized:
            raise ArchiveError(f"Archive already finalized: {self.path}")

        if not os.path.isfile(source_path):
            raise ArchiveError(f"Path is not a regular file: {source_path}")

        entry_name = entry_name.replace(os.sep, '/').lstrip('/')

        try:
            self._write(source_path, entry_name)
        except Exception as e:
            raise ArchiveError(f"Failed to add {source_path} as {entry_name}: {e}") from e

        self.entries.append(entry_name)

    def add_directory_tree(self, root: str) -> int:
        """
        Add every regular file below ``root``.

        Args:
            root: Directory to add

        Returns:
            Number of files added
        """
        if not os.path.isdir(root):
            raise ArchiveError(f"Not a directory: {root}")

        count = 0
        for path, entry_name in iter_tree_entries(root):
            self.add_file(path, entry_name)
            count += 1
        return count

    def finalize(self) -> str:
        """
        Flush the archive to disk.

        Returns:
            Path to the finished artifact
        """
        if self.finalized:
            return self.path

        try:
            artifact = self._close()
        except Exception as e:
            raise ArchiveError(f"Failed to finalize archive {self.path}: {e}") from e

        self.finalized = True
        self.path = artifact
        return artifact

    def discard(self):
        """Close the archive and remove whatever was written, ignoring errors."""
        try:
            self._abort()
        except Exception:
            pass

        for path in (self.path, f"{self.base_path}.{self.extension}"):
            if path and os.path.exists(path):
                try:
                    os.remove(path)
                except OSError:
                    pass

    def _open(self):
        raise NotImplementedError

    def _write(self, source_path: str, entry_name: str):
        raise NotImplementedError

    def _close(self) -> str:
        raise NotImplementedError

    def _abort(self):
        pass


class TarArchive(ArchiveHandle):
    """Tar archive, gzipped in place on finalize when compression is on."""

    extension = 'tar'

    def _open(self):
        self._tar = None
        self._tar = tarfile.open(self.path, 'w', dereference=True)

    def _write(self, source_path, entry_name):
        self._tar.add(source_path, arcname=entry_name, recursive=False)

    def _close(self):
        self._tar.close()

        if not self.compression:
            return self.path

        gz_path = f"{self.path}.gz"
        with open(self.path, 'rb') as src, gzip.open(gz_path, 'wb') as dst:
            shutil.copyfileobj(src, dst)
        os.remove(self.path)
        return gz_path

    def _abort(self):
        if self._tar is not None:
            self._tar.close()
        gz_path = f"{self.base_path}.tar.gz"
        if os.path.exists(gz_path):
            os.remove(gz_path)


class ZipArchive(ArchiveHandle):
    """Zip container, deflated when compression is on."""

    extension = 'zip'

    def _open(self):
        self._zip = None
        method = zipfile.ZIP_DEFLATED if self.compression else zipfile.ZIP_STORED
        self._zip = zipfile.ZipFile(self.path, 'w', method)

    def _write(self, source_path, entry_name):
        self._zip.write(source_path, entry_name)

    def _close(self):
        self._zip.close()
        return self.path

    def _abort(self):
        if self._zip is not None:
            self._zip.close()


class RarArchive(ArchiveHandle):
    """
    Rar archive built by the ``rar`` command line tool.

    Entries are staged under their final names in a scratch directory next to
    the archive and packed in one ``rar a`` call on finalize.
    """

    extension = 'rar'

    def _open(self):
        self._staging = None
        require_available(ArchiveType.RAR)
        self._staging = tempfile.mkdtemp(
            prefix=f"{os.path.basename(self.base_path)}.rar-",
            dir=os.path.dirname(os.path.abspath(self.path))
        )

    def _write(self, source_path, entry_name):
        dest = os.path.join(self._staging, *entry_name.split('/'))
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        try:
            os.link(source_path, dest)
        except OSError:
            shutil.copy2(source_path, dest)

    def _close(self):
        level = '-m3' if self.compression else '-m0'
        try:
            if not self.entries:
                raise ArchiveError("No files to archive")
            subprocess.run(
                [RAR_EXECUTABLE, 'a', '-r', '-y', '-idq', level, os.path.abspath(self.path), '*'],
                cwd=self._staging,
                check=True,
                capture_output=True
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or b'').decode('utf-8', errors='replace').strip()
            raise ArchiveError(f"rar exited with status {e.returncode}: {stderr}") from e
        finally:
            shutil.rmtree(self._staging, ignore_errors=True)

        return self.path

    def _abort(self):
        if self._staging:
            shutil.rmtree(self._staging, ignore_errors=True)


_HANDLERS = {
    ArchiveType.TAR: TarArchive,
    ArchiveType.ZIP: ZipArchive,
    ArchiveType.RAR: RarArchive,
}


def open_archive(base_path: str, archive_type, compression: bool = True) -> ArchiveHandle:
    """
    Open an archive of the given type for writing.

    Args:
        base_path: Path where the archive should be created (without extension)
        archive_type: Archive type to create
        compression: Whether compression was requested

    Returns:
        ArchiveHandle ready for entries

    Raises:
        ArchiveError: If the type is unavailable or the file cannot be created
    """
    archive_type = require_available(archive_type)
    return _HANDLERS[archive_type](base_path, compression)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")
