"""Source file selection for repository audits.

Walks a local checkout or a ZIP archive and returns the code files worth
sending to the analyzer: known text extensions only, VCS/dependency/build
output skipped, user exclude patterns applied, oversized files dropped,
shallow paths first.
"""

import fnmatch
import logging
import os
import zipfile
import zlib
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Optional

from auditflow.config import settings
from auditflow.engine.errors import InvalidScanConfiguration
from auditflow.models import SourceFile

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({
    ".js", ".ts", ".tsx", ".jsx", ".py", ".java", ".go", ".rs", ".cpp", ".c",
    ".h", ".cc", ".hh", ".cs", ".php", ".rb", ".kt", ".swift", ".sql", ".sh",
    ".json", ".yml", ".yaml",
})

SYSTEM_DIRECTORIES = frozenset({
    ".git", ".svn", ".hg", "node_modules", "bower_components", "vendor",
    "dist", "build", ".next", ".nuxt", "target", "out", "__pycache__",
    ".pytest_cache", ".mypy_cache", ".tox", ".venv", "venv", "coverage",
    ".nyc_output", ".idea", ".vscode", ".vs",
})

EXCLUDED_SUFFIXES = (
    ".min.js", ".min.css", ".map", ".lock", "-lock.json", ".pyc", ".class",
    ".jar", ".exe", ".dll", ".so", ".dylib", ".png", ".jpg", ".jpeg", ".gif",
    ".ico", ".pdf", ".zip", ".gz", ".woff", ".woff2", ".ttf",
)

ALLOWED_HIDDEN_FILES = frozenset({".gitignore", ".env.example", ".editorconfig", ".prettierrc"})

LANGUAGE_BY_EXTENSION = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".py": "python",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".c": "cpp",
    ".h": "cpp",
    ".cc": "cpp",
    ".hh": "cpp",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".php": "php",
    ".rb": "ruby",
    ".kt": "kotlin",
    ".swift": "swift",
    ".sql": "sql",
    ".sh": "shell",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
}


def detect_language(path: str) -> str:
    """Language label for a path, from its extension."""
    return LANGUAGE_BY_EXTENSION.get(PurePosixPath(path).suffix.lower(), "text")


def extension_for_language(language: str) -> str:
    """Inverse of detect_language, used to name instant-analysis snippets."""
    language = language.strip().lower()
    for extension, name in LANGUAGE_BY_EXTENSION.items():
        if name == language:
            return extension
    return ".txt"


def is_system_excluded(path: str) -> bool:
    """VCS, dependency, build, cache and IDE paths, hidden files and binaries."""
    parts = PurePosixPath(path).parts
    if any(part in SYSTEM_DIRECTORIES for part in parts[:-1]):
        return True
    name = parts[-1] if parts else path
    if name.startswith(".") and name not in ALLOWED_HIDDEN_FILES:
        return True
    if any(part.startswith(".") for part in parts[:-1]):
        return True
    lowered = name.lower()
    return any(lowered.endswith(suffix) for suffix in EXCLUDED_SUFFIXES)


def matches_exclude_pattern(path: str, pattern: str) -> bool:
    """
    Apply one user exclude pattern to a relative path.

    - "dir/**" excludes everything under dir
    - a pattern containing "*" or "?" is a glob over the whole path
    - anything else is a substring match
    """
    pattern = pattern.strip()
    if not pattern:
        return False
    if pattern.endswith("/**"):
        prefix = pattern[:-3].strip("/")
        return path == prefix or path.startswith(prefix + "/") or f"/{prefix}/" in f"/{path}"
    if "*" in pattern or "?" in pattern:
        return fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(PurePosixPath(path).name, pattern)
    return pattern in path


def is_candidate(path: str, exclude_patterns: Iterable[str] = ()) -> bool:
    if PurePosixPath(path).suffix.lower() not in TEXT_EXTENSIONS:
        return False
    if is_system_excluded(path):
        return False
    return not any(matches_exclude_pattern(path, p) for p in exclude_patterns)


def _depth(path: str) -> int:
    return len(PurePosixPath(path).parts) - 1


def order_for_analysis(files: list[SourceFile]) -> list[SourceFile]:
    """Shallow, short paths first so the max_files cap keeps the top of the tree."""
    return sorted(files, key=lambda f: (len(f.path), f.path))


def _iter_directory(root: Path) -> Iterator[tuple[str, Path]]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if d not in SYSTEM_DIRECTORIES and not d.startswith(".")
        )
        for filename in sorted(filenames):
            full_path = Path(dirpath) / filename
            yield full_path.relative_to(root).as_posix(), full_path


def collect_source_files(
    source: str | Path,
    exclude_patterns: Iterable[str] = (),
    max_depth: Optional[int] = None,
    max_file_size_bytes: Optional[int] = None,
) -> list[SourceFile]:
    """
    Collect analyzable files from a directory or a .zip archive.

    Returns every selected file in analysis order. Only metadata is read
    here; content is loaded when a file is dispatched, and the scheduler
    applies the max_files cap so the task can record the original total.

    Raises:
        InvalidScanConfiguration: if the source does not exist, is not a
            directory/zip, or cannot be read
    """
    path = Path(source)
    patterns = [p for p in exclude_patterns if p and p.strip()]
    size_limit = max_file_size_bytes or settings.max_file_size_bytes

    try:
        if path.is_dir():
            files = _collect_from_directory(path, patterns, max_depth, size_limit)
        elif path.is_file() and zipfile.is_zipfile(path):
            files = _collect_from_zip(path, patterns, max_depth, size_limit)
        else:
            raise InvalidScanConfiguration(f"Source is not a directory or zip archive: {source}")
    except (OSError, zipfile.BadZipFile, zlib.error) as e:
        logger.warning(f"Could not read source {source}: {e}")
        raise InvalidScanConfiguration(f"Could not read source {source}: {e}") from e

    ordered = order_for_analysis(files)
    logger.info(f"Selected {len(ordered)} files from {source}")
    return ordered


def _collect_from_directory(
    root: Path, patterns: list[str], max_depth: Optional[int], size_limit: int
) -> list[SourceFile]:
    files: list[SourceFile] = []
    for rel_path, full_path in _iter_directory(root):
        if max_depth is not None and _depth(rel_path) > max_depth:
            continue
        if not is_candidate(rel_path, patterns):
            continue
        size = full_path.stat().st_size
        if size > size_limit:
            logger.debug(f"Skipping {rel_path}: larger than {size_limit} bytes")
            continue
        files.append(
            SourceFile.deferred(rel_path, detect_language(rel_path), size, full_path.read_bytes)
        )
    return files


def _strip_archive_root(names: list[str]) -> str:
    """GitHub-style archives wrap everything in one top-level folder."""
    roots = {name.split("/", 1)[0] for name in names if name}
    if len(roots) == 1 and all("/" in name for name in names if name):
        return roots.pop() + "/"
    return ""


def _read_zip_member(archive_path: Path, member: str) -> bytes:
    try:
        with zipfile.ZipFile(archive_path) as archive:
            return archive.read(member)
    except (zipfile.BadZipFile, zlib.error) as e:
        raise OSError(f"Corrupt archive member {member}: {e}") from e


def _collect_from_zip(
    archive_path: Path, patterns: list[str], max_depth: Optional[int], size_limit: int
) -> list[SourceFile]:
    files: list[SourceFile] = []
    with zipfile.ZipFile(archive_path) as archive:
        entries = [info for info in archive.infolist() if not info.is_dir()]
    prefix = _strip_archive_root([info.filename for info in entries])
    for info in entries:
        rel_path = info.filename[len(prefix):] if prefix else info.filename
        if not rel_path:
            continue
        if max_depth is not None and _depth(rel_path) > max_depth:
            continue
        if not is_candidate(rel_path, patterns):
            continue
        if info.file_size > size_limit:
            logger.debug(f"Skipping {rel_path}: larger than {size_limit} bytes")
            continue
        files.append(
            SourceFile.deferred(
                rel_path,
                detect_language(rel_path),
                info.file_size,
                partial(_read_zip_member, archive_path, info.filename),
            )
        )
    return files
