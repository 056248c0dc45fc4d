"""Local file/content store.

Files are addressed by locators of the form ``share:/path/to/file``. Each
share maps to a directory on disk. Owner and content-type metadata live in
a ``.roomagent-meta.yaml`` file at the share root, updated under a file
lock; timestamps come from the filesystem.
"""

from __future__ import annotations

import asyncio
import fnmatch
import mimetypes
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from filelock import FileLock

from roomagent.logging import get_logger
from roomagent.markup import MarkupNode, format_display_time

log = get_logger("storage")

META_FILE = ".roomagent-meta.yaml"
META_LOCK = ".roomagent-meta.lock"
_HIDDEN = {META_FILE, META_LOCK}


class WriteMode(Enum):
    """How write() combines new content with an existing file."""

    CREATE = "create"  # Fails if the file exists
    WRITE = "write"  # Overwrite
    APPEND = "append"
    APPEND_LINE = "appendLine"
    APPEND_TIMESTAMP_LINE = "appendTimestampLine"


class SearchMode(Enum):
    CONTENT = "content"
    FILENAME = "filename"


def parse_locator(locator: str) -> tuple[str, str]:
    """Split ``share:/path`` into (share, path) with the leading slashes removed."""
    share, sep, path = locator.partition(":/")
    if not sep or not share:
        raise ValueError("Path must be in format 'share:/path/to/file'")
    return share, path.lstrip("/")


def guess_content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    if path.endswith((".md", ".markdown")):
        return "text/markdown"
    return content_type or "text/plain"


def _file_time(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp).astimezone()


@dataclass
class StoredFile:
    """A file read from the store."""

    share: str
    path: str
    content_type: str
    owner: str
    created_at: datetime
    updated_at: datetime
    text: str | None = None
    data: bytes | None = None

    @property
    def locator(self) -> str:
        return f"{self.share}:/{self.path}"

    @property
    def size(self) -> int:
        if self.text is not None:
            return len(self.text)
        return len(self.data or b"")

    @property
    def line_count(self) -> int:
        return self.text.count("\n") if self.text is not None else 0

    @property
    def open_content(self) -> str:
        """What a window shows for this file."""
        if self.text is not None:
            return self.text
        return f"Binary file ({self.size} bytes)"


@dataclass
class FileStat:
    locator: str
    share: str
    content_type: str
    size: int
    line_count: int
    created_at: datetime
    updated_at: datetime
    owner: str

    def to_markup(self) -> MarkupNode:
        return MarkupNode(
            "file",
            {
                "path": self.locator,
                "share": self.share,
                "contentType": self.content_type,
                "size": str(self.size),
                "lineCount": str(self.line_count),
                "createdAt": format_display_time(self.created_at),
                "updatedAt": format_display_time(self.updated_at),
                "owner": self.owner,
            },
        )


@dataclass
class SearchMatch:
    """One search hit.

    line_number is 0 for filename matches; content matches carry the
    matching line with one line of context on either side.
    """

    locator: str
    content_type: str
    size: int
    created_at: datetime
    updated_at: datetime
    owner: str
    line_number: int = 0
    before_line: str | None = None
    match_line: str | None = None
    after_line: str | None = None

    def to_markup(self, suppress_content: bool = False) -> MarkupNode:
        node = MarkupNode(
            "searchMatch",
            {
                "path": self.locator,
                "contentType": self.content_type,
                "size": str(self.size),
                "createdAt": format_display_time(self.created_at),
                "updatedAt": format_display_time(self.updated_at),
                "owner": self.owner,
            },
        )
        if suppress_content:
            node.attributes["lineNumber"] = str(self.line_number)
            node.attributes["matchContent"] = "suppressed"
        elif self.line_number == 0:
            node.attributes["matchContent"] = "filename"
        else:
            node.attributes["lineNumber"] = str(self.line_number)
            lines = [self.before_line, self.match_line, self.after_line]
            node.content = "\n".join(line for line in lines if line is not None)
        return node


class LocalContentStore:
    """Share-based store over local directories.

    The public API is async; disk work runs in a worker thread.
    """

    def __init__(self, shares: dict[str, str | Path], default_owner: str = "") -> None:
        self._shares = {name: Path(directory).expanduser() for name, directory in shares.items()}
        self._default_owner = default_owner

    @property
    def share_names(self) -> list[str]:
        return sorted(self._shares)

    # -------------------------------------------------------------------------
    # Path and metadata helpers
    # -------------------------------------------------------------------------

    def _resolve(self, locator: str) -> tuple[str, Path, str]:
        """Return (share, absolute path, share-relative posix path)."""
        share, relative = parse_locator(locator)
        if share not in self._shares:
            raise KeyError(f"Share not found: {share}")
        root = self._shares[share].resolve()
        target = (root / relative).resolve()
        if target != root and not target.is_relative_to(root):
            raise PermissionError(f"Path escapes share {share}: {relative}")
        if target.name in _HIDDEN:
            raise PermissionError(f"Reserved file name: {target.name}")
        return share, target, target.relative_to(root).as_posix() if target != root else ""

    def _root(self, share: str) -> Path:
        return self._shares[share].resolve()

    def _load_meta(self, share: str) -> dict[str, Any]:
        path = self._root(share) / META_FILE
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            log.warning("Ignoring unreadable metadata %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _update_meta(self, share: str, path: str, entry: dict[str, Any] | None) -> None:
        root = self._root(share)
        root.mkdir(parents=True, exist_ok=True)
        with FileLock(root / META_LOCK, timeout=10):
            meta = self._load_meta(share)
            if entry is None:
                meta.pop(path, None)
            else:
                meta[path] = {**meta.get(path, {}), **entry}
            with open(root / META_FILE, "w", encoding="utf-8") as f:
                yaml.safe_dump(meta, f, default_flow_style=False, allow_unicode=True)

    def _describe(self, share: str, relative: str, target: Path, meta: dict[str, Any]) -> dict[str, Any]:
        info = meta.get(relative, {})
        st = target.stat()
        created = info.get("createdAt")
        return {
            "content_type": info.get("contentType") or guess_content_type(relative),
            "owner": info.get("owner") or self._default_owner,
            "created_at": datetime.fromisoformat(created) if created else _file_time(st.st_ctime),
            "updated_at": _file_time(st.st_mtime),
        }

    def _walk(self, share: str, target: Path) -> list[Path]:
        if target.is_file():
            return [target]
        if not target.is_dir():
            return []
        return sorted(p for p in target.rglob("*") if p.is_file() and p.name not in _HIDDEN)

    # -------------------------------------------------------------------------
    # Sync implementations
    # -------------------------------------------------------------------------

    def _read(self, locator: str) -> StoredFile | None:
        share, target, relative = self._resolve(locator)
        if not target.is_file():
            return None
        raw = target.read_bytes()
        desc = self._describe(share, relative, target, self._load_meta(share))
        try:
            return StoredFile(share, relative, text=raw.decode("utf-8"), **desc)
        except UnicodeDecodeError:
            return StoredFile(share, relative, data=raw, **desc)

    def _write(self, locator: str, content: str, owner: str, content_type: str, mode: WriteMode) -> None:
        share, target, relative = self._resolve(locator)
        if not relative:
            raise IsADirectoryError(f"Cannot write to share root: {locator}")
        exists = target.exists()
        if mode is WriteMode.CREATE and exists:
            raise FileExistsError(f"File already exists: {locator}")

        target.parent.mkdir(parents=True, exist_ok=True)
        if mode in (WriteMode.CREATE, WriteMode.WRITE):
            target.write_text(content, encoding="utf-8")
        else:
            if mode is WriteMode.APPEND_LINE:
                content = "\n" + content
            elif mode is WriteMode.APPEND_TIMESTAMP_LINE:
                content = f"\n[{format_display_time()}] {content}"
            with open(target, "a", encoding="utf-8") as f:
                f.write(content)

        entry: dict[str, Any] = {"contentType": content_type or guess_content_type(relative)}
        if not exists:
            entry["owner"] = owner or self._default_owner
            entry["createdAt"] = datetime.now().astimezone().isoformat(timespec="seconds")
        self._update_meta(share, relative, entry)

    def _delete(self, locator: str) -> None:
        share, target, relative = self._resolve(locator)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {locator}")
        target.unlink()
        self._update_meta(share, relative, None)

    def _search(self, locator: str, query: str, mode: SearchMode) -> list[SearchMatch]:
        share, target, _ = self._resolve(locator)
        root = self._root(share)
        meta = self._load_meta(share)
        needle = query.lower()
        pattern = needle if any(c in needle for c in "*?[") else f"*{needle}*"
        matches: list[SearchMatch] = []

        for path in self._walk(share, target):
            relative = path.relative_to(root).as_posix()
            desc = self._describe(share, relative, path, meta)
            file_locator = f"{share}:/{relative}"

            if mode is SearchMode.FILENAME:
                if fnmatch.fnmatchcase(file_locator.lower(), pattern) or fnmatch.fnmatchcase(
                    relative.lower(), pattern
                ):
                    matches.append(SearchMatch(file_locator, size=path.stat().st_size, **desc))
                continue

            try:
                text = path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                continue
            lines = text.split("\n")
            for i, line in enumerate(lines):
                if needle in line.lower():
                    matches.append(
                        SearchMatch(
                            file_locator,
                            size=len(text),
                            line_number=i + 1,
                            before_line=lines[i - 1] if i > 0 else None,
                            match_line=line,
                            after_line=lines[i + 1] if i < len(lines) - 1 else None,
                            **desc,
                        )
                    )
        return matches

    def _tree(self, locator: str) -> str:
        share, target, relative = self._resolve(locator)
        root = self._root(share)
        meta = self._load_meta(share)
        files = self._walk(share, target)
        if not files:
            return f"No files found in {share}:/{relative}"

        lines = [f"Directory tree for {share}:/{relative}"]
        current: list[str] = []
        for path in files:
            rel = path.relative_to(root).as_posix()
            parts = rel.split("/")
            common = 0
            while common < len(current) and common < len(parts) - 1 and current[common] == parts[common]:
                common += 1
            del current[common:]
            while len(current) < len(parts) - 1:
                lines.append(f"{'  ' * len(current)}{parts[len(current)]}/")
                current.append(parts[len(current)])
            content_type = (meta.get(rel) or {}).get("contentType") or guess_content_type(rel)
            lines.append(f"{'  ' * len(current)}{parts[-1]} ({content_type})")
        return "\n".join(lines)

    def _stat(self, locator: str) -> FileStat | None:
        file = self._read(locator)
        if file is None:
            return None
        return FileStat(
            locator=file.locator,
            share=file.share,
            content_type=file.content_type,
            size=file.size,
            line_count=file.text.count("\n") + 1 if file.text is not None else 0,
            created_at=file.created_at,
            updated_at=file.updated_at,
            owner=file.owner,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def read(self, locator: str) -> StoredFile | None:
        return await asyncio.to_thread(self._read, locator)

    async def write(
        self,
        locator: str,
        content: str,
        owner: str = "",
        content_type: str = "",
        mode: WriteMode = WriteMode.WRITE,
    ) -> None:
        await asyncio.to_thread(self._write, locator, content, owner, content_type, mode)

    async def delete(self, locator: str) -> None:
        await asyncio.to_thread(self._delete, locator)

    async def search(self, locator: str, query: str, mode: SearchMode = SearchMode.CONTENT) -> list[SearchMatch]:
        return await asyncio.to_thread(self._search, locator, query, mode)

    async def tree(self, locator: str) -> str:
        return await asyncio.to_thread(self._tree, locator)

    async def stat(self, locator: str) -> FileStat | None:
        return await asyncio.to_thread(self._stat, locator)


def parse_shares(specs: list[str]) -> dict[str, str]:
    """Parse `NAME=DIR` items into a share map."""
    shares: dict[str, str] = {}
    for item in specs:
        name, sep, directory = item.partition("=")
        if not sep or not name or not directory:
            raise ValueError(f"Invalid share spec {item!r}, expected NAME=DIR")
        shares[name] = directory
    return shares
