"""
Archivers for the application files backup.

Supports:
- TarArchiver: runs the external ``tar`` tool (default)
- TarfileArchiver: pure-Python gzip tar via the tarfile module

Both honour the same exclude patterns: a path is skipped when any of its
components matches one of the glob patterns.
"""

import os
import subprocess
import tarfile
from fnmatch import fnmatch
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import ArchiveFailure


def is_excluded(relative_path: str, exclude_patterns: Sequence[str]) -> bool:
    """
    Check a path (relative to the archive root) against exclude patterns.

    Args:
        relative_path: Path relative to the source root
        exclude_patterns: Glob patterns such as 'node_modules' or '*.log'

    Returns:
        True if any path component matches any pattern
    """
    parts = Path(relative_path).parts
    for pattern in exclude_patterns:
        if fnmatch(relative_path, pattern):
            return True
        if any(fnmatch(part, pattern) for part in parts):
            return True
    return False


class TarArchiver:
    """
    Creates a gzip tarball by invoking the system ``tar`` binary.
    """

    def __init__(self, tar_binary: str = 'tar', timeout: Optional[int] = None):
        """
        Args:
            tar_binary: Name or path of the tar executable
            timeout: Seconds before the child process is killed (None = no limit)
        """
        self.tar_binary = tar_binary
        self.timeout = timeout

    def build_command(self, source_root: str, exclude_patterns: Sequence[str], output_path: str) -> List[str]:
        """
        Build the tar command line.

        Returns:
            argv list, e.g. ['tar', '-czf', out, '--exclude=.git', '-C', root, '.']
        """
        command = [self.tar_binary, '-czf', output_path]
        command.extend(f'--exclude={pattern}' for pattern in exclude_patterns)
        output_inside = _relative_inside(source_root, output_path)
        if output_inside is not None:
            command.append(f'--exclude=./{output_inside}')
        command.extend(['-C', source_root, '.'])
        return command

    def archive(self, source_root: str, exclude_patterns: Sequence[str], output_path: str) -> str:
        """
        Archive source_root into output_path.

        Args:
            source_root: Directory to archive
            exclude_patterns: Glob patterns to leave out
            output_path: Destination .tar.gz file

        Returns:
            output_path

        Raises:
            ArchiveFailure: If tar is missing, times out or exits non-zero
        """
        if not os.path.isdir(source_root):
            raise ArchiveFailure(f"Source directory does not exist: {source_root}")

        command = self.build_command(source_root, exclude_patterns, output_path)

        # The directory entry must exist before tar walks the tree, otherwise
        # tar sees its parent directory change and exits 1
        if _relative_inside(source_root, output_path) is not None:
            try:
                open(output_path, 'wb').close()
            except OSError as e:
                raise ArchiveFailure(f"Cannot create archive {output_path}: {e}") from e

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError as e:
            raise ArchiveFailure(f"Archive tool not found: {e}") from e
        except subprocess.TimeoutExpired as e:
            _remove_partial(output_path)
            raise ArchiveFailure(f"Archive creation timed out after {self.timeout}s") from e

        if result.returncode != 0:
            _remove_partial(output_path)
            stderr = (result.stderr or '').strip()
            raise ArchiveFailure(f"tar exited with code {result.returncode}: {stderr}")

        return output_path


class TarfileArchiver:
    """
    Creates a gzip tarball with the tarfile module, no child process.
    """

    def archive(self, source_root: str, exclude_patterns: Sequence[str], output_path: str) -> str:
        """
        Archive source_root into output_path.

        Raises:
            ArchiveFailure: If the archive cannot be written
        """
        root = Path(source_root)
        if not root.is_dir():
            raise ArchiveFailure(f"Source directory does not exist: {source_root}")

        output = Path(output_path).resolve()

        def _filter(member: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
            relative = os.path.normpath(member.name)
            if relative == '.':
                return member
            if is_excluded(relative, exclude_patterns):
                return None
            if (root / relative).resolve() == output:
                return None
            return member

        try:
            with tarfile.open(output_path, 'w:gz') as tar:
                tar.add(str(root), arcname='.', recursive=True, filter=_filter)
        except (OSError, tarfile.TarError) as e:
            _remove_partial(output_path)
            raise ArchiveFailure(f"Failed to create archive: {e}") from e

        return output_path


def create_archiver(kind: str = 'tar', timeout: Optional[int] = None):
    """
    Build the archiver named in the configuration.

    Args:
        kind: 'tar' (external tool) or 'tarfile' (pure Python)
        timeout: Child process timeout for the tar archiver

    Raises:
        ArchiveFailure: If kind is unknown
    """
    if kind == 'tar':
        return TarArchiver(timeout=timeout)
    if kind == 'tarfile':
        return TarfileArchiver()
    raise ArchiveFailure(f"Invalid archiver: {kind}. Valid options: ['tar', 'tarfile']")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveFailure: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except OSError as e:
        raise ArchiveFailure(f"Failed to get archive size: {e}") from e


def _relative_inside(root: str, path: str) -> Optional[str]:
    """Path of `path` relative to `root` when it lies below it, else None."""
    real_root = os.path.realpath(root)
    real_path = os.path.realpath(path)
    if os.path.commonpath([real_root, real_path]) != real_root:
        return None
    relative = os.path.relpath(real_path, real_root)
    return None if relative == '.' else relative


def _remove_partial(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass
