from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from langchain_core.tools import tool

from .state import LibraryContext, empty_library_context

logger = logging.getLogger(__name__)

DEFAULT_COMPONENT_PATTERN = "**/*.{tsx,jsx}"
USAGE_SEARCH_PATTERN = "**/*.{tsx,jsx,ts,js}"
LIBRARY_CATEGORIES: tuple[str, ...] = ("icons", "elements", "components", "modules")
_BRACE_PATTERN = re.compile(r"\{([^{}]+)\}")
_IMPORT_LINE = re.compile(r"import.*from")


def resolve_path(path: str | Path) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else Path.cwd() / candidate


def _display_path(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


def _expand_braces(pattern: str) -> list[str]:
    """Expand one level of ``{a,b}`` alternation, which ``Path.glob`` does not support."""
    match = _BRACE_PATTERN.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(f"{head}{option.strip()}{tail}"))
    return expanded


def _glob_files(base_dir: Path, pattern: str) -> list[Path]:
    found: set[Path] = set()
    for expanded in _expand_braces(pattern):
        found.update(path for path in base_dir.glob(expanded) if path.is_file())
    return sorted(found)


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so a crash mid-write never leaves a
    truncated component behind.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# -- Plain capabilities --


def list_component_files(directory: str, pattern: str = DEFAULT_COMPONENT_PATTERN) -> list[dict[str, Any]]:
    base_dir = resolve_path(directory)
    if not base_dir.is_dir():
        raise FileNotFoundError(f"Component directory does not exist: {directory}")
    components: list[dict[str, Any]] = []
    for path in _glob_files(base_dir, pattern):
        stats = path.stat()
        components.append(
            {
                "path": _display_path(path),
                "name": path.stem,
                "extension": path.suffix,
                "size": stats.st_size,
                "mtime": datetime.fromtimestamp(stats.st_mtime, UTC).isoformat(),
            }
        )
    return components


def read_component_source(file_path: str) -> dict[str, Any]:
    path = resolve_path(file_path)
    code = path.read_text(encoding="utf-8")
    return {"path": file_path, "code": code, "lines": len(code.splitlines())}


def read_component_sources(file_paths: list[str]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for file_path in file_paths:
        try:
            results.append(read_component_source(file_path))
        except (OSError, UnicodeDecodeError) as exc:
            results.append({"path": file_path, "error": str(exc)})
    return results


def find_component_usage(component_name: str, search_directory: str) -> list[dict[str, Any]]:
    """Scan source files under ``search_directory`` for lines mentioning ``component_name``.

    Each match records whether the line is an import statement and whether it
    renders the component as a JSX element.
    """
    if not component_name.strip():
        raise ValueError("component_name must be non-empty")
    base_dir = resolve_path(search_directory)
    if not base_dir.is_dir():
        raise FileNotFoundError(f"Search directory does not exist: {search_directory}")
    usage_tag = re.compile(rf"<{re.escape(component_name)}[\s/>]")
    usages: list[dict[str, Any]] = []
    for path in _glob_files(base_dir, USAGE_SEARCH_PATTERN):
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Skipping unreadable file %s: %s", path, exc)
            continue
        matches = [
            {
                "line": index,
                "content": line.strip(),
                "is_import": bool(_IMPORT_LINE.search(line)),
                "is_usage": bool(usage_tag.search(line)),
            }
            for index, line in enumerate(lines, start=1)
            if component_name in line
        ]
        if matches:
            usages.append({"path": _display_path(path), "match_count": len(matches), "matches": matches})
    return usages


def write_component_file(file_path: str, code: str, create_backup: bool = True) -> dict[str, Any]:
    """Write ``code`` to ``file_path``, keeping a ``.backup`` copy of any existing file.

    Args:
        file_path: Destination path, relative to cwd or absolute.
        code: Component source to write.
        create_backup: When True and the file exists, copy it to ``<file>.backup`` first.

    Returns:
        Dict with ``success``, ``path``, ``backup_created`` and, when a backup
        was written, ``backup_path``.
    """
    path = resolve_path(file_path)
    result: dict[str, Any] = {"success": True, "path": file_path, "backup_created": False}
    if path.is_file() and create_backup:
        backup_path = path.with_name(path.name + ".backup")
        atomic_write_text(backup_path, path.read_text(encoding="utf-8"))
        result["backup_created"] = True
        result["backup_path"] = _display_path(backup_path)
        logger.info("Backed up %s to %s", file_path, backup_path.name)
    atomic_write_text(path, code)
    result["lines_written"] = len(code.splitlines())
    return result


def scan_library(output_path: str | Path) -> LibraryContext:
    """Snapshot component names per library category under ``output_path``."""
    root = resolve_path(output_path)
    context = empty_library_context()
    for category in LIBRARY_CATEGORIES:
        category_dir = root / category
        if not category_dir.is_dir():
            continue
        names = sorted({path.stem for path in _glob_files(category_dir, "*.{tsx,jsx}")})
        context[category] = [name for name in names if not name.endswith((".update", ".stories"))]
    return context


# -- Model-facing tools --


def _tool_error(exc: Exception) -> str:
    return json.dumps({"success": False, "error": str(exc)})


@tool("list_components")
def list_components(directory: str, pattern: str = DEFAULT_COMPONENT_PATTERN) -> str:
    """List React component files in a directory with basic metadata.

    Use this to discover which components already exist before reading
    specific ones in detail.

    Args:
        directory: Directory to scan, e.g. ``nextjs-app/ui/elements``.
        pattern: Glob pattern relative to ``directory``. Defaults to ``**/*.{tsx,jsx}``.

    Returns:
        JSON string with ``success``, ``directory``, ``total_files`` and a
        ``components`` list of ``{path, name, extension, size, mtime}``.
    """
    logger.debug("list_components directory=%s pattern=%s", directory, pattern)
    try:
        components = list_component_files(directory, pattern)
    except (OSError, ValueError) as exc:
        return _tool_error(exc)
    return json.dumps(
        {"success": True, "directory": directory, "total_files": len(components), "components": components},
        indent=2,
    )


@tool("read_component_file")
def read_component_file(file_path: str) -> str:
    """Read the full source of one component file.

    Use this to examine props, variants, structure and dependencies of an
    existing component when judging whether it matches a design component.

    Args:
        file_path: Path to the component file.

    Returns:
        JSON string with ``success``, ``path``, ``code`` and ``lines``.
    """
    logger.debug("read_component_file path=%s", file_path)
    try:
        payload = read_component_source(file_path)
    except (OSError, UnicodeDecodeError) as exc:
        return _tool_error(exc)
    return json.dumps({"success": True, **payload}, indent=2)


@tool("read_multiple_files")
def read_multiple_files(file_paths: list[str]) -> str:
    """Read several component files at once for side-by-side comparison.

    Args:
        file_paths: Paths of the files to read.

    Returns:
        JSON string with a ``files`` list; each entry carries ``code`` or ``error``.
    """
    logger.debug("read_multiple_files count=%d", len(file_paths))
    files = read_component_sources(file_paths)
    return json.dumps({"success": True, "files": files}, indent=2)


@tool("search_component_usage")
def search_component_usage(component_name: str, search_directory: str = "nextjs-app") -> str:
    """Find where a component is imported or rendered across the codebase.

    Call this before recommending an update to measure how many files would
    be affected.

    Args:
        component_name: Component identifier, e.g. ``Button``.
        search_directory: Directory to search. Defaults to ``nextjs-app``.

    Returns:
        JSON string with ``success``, ``component_name``, ``total_files`` and a
        ``usages`` list of ``{path, match_count, matches}``.
    """
    logger.debug("search_component_usage name=%s dir=%s", component_name, search_directory)
    try:
        usages = find_component_usage(component_name, search_directory)
    except (OSError, ValueError) as exc:
        return _tool_error(exc)
    return json.dumps(
        {"success": True, "component_name": component_name, "total_files": len(usages), "usages": usages},
        indent=2,
    )


@tool("write_component")
def write_component(file_path: str, code: str, create_backup: bool = True) -> str:
    """Write component source to disk, backing up any existing file first.

    Args:
        file_path: Destination path of the component.
        code: Full component source.
        create_backup: Keep a ``.backup`` copy of an existing file. Defaults to True.

    Returns:
        JSON string with ``success``, ``path`` and ``backup_created``.
    """
    try:
        payload = write_component_file(file_path, code, create_backup)
    except OSError as exc:
        return _tool_error(exc)
    return json.dumps(payload, indent=2)


INSPECTION_TOOLS = [list_components, read_component_file, read_multiple_files, search_component_usage]
