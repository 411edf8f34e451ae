"""In-memory workspace filesystem backing uploads and tool execution.

Each chat session owns one VirtualWorkspace. It is snapshotted into the
session store after every completed response and rebuilt from that
snapshot whenever the session is loaded.
"""
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from gridchat.engine.errors import WorkspaceError

logger = logging.getLogger(__name__)

HOME_DIR = "/home/user"
UPLOADS_DIR = f"{HOME_DIR}/uploads"
KEEP_FILE = f"{UPLOADS_DIR}/.keep"

_IMAGE_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
}

_MIME_TYPES = {
    "txt": "text/plain",
    "csv": "text/csv",
    "json": "application/json",
    "xml": "application/xml",
    "html": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "ts": "application/typescript",
    "md": "text/markdown",
    "pdf": "application/pdf",
}


@dataclass(frozen=True)
class WorkspaceFile:
    """One regular file captured in a workspace snapshot."""
    path: str
    data: bytes


def get_file_type(filename: str) -> tuple[bool, str]:
    """Return ``(is_image, mime_type)`` based on the file extension."""
    ext = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    if ext in _IMAGE_TYPES:
        return True, _IMAGE_TYPES[ext]
    return False, _MIME_TYPES.get(ext, "application/octet-stream")


def resolve_path(path: str) -> str:
    """Absolute paths are normalized; relative ones land in uploads/."""
    if not path:
        raise WorkspaceError(path, "empty path")
    full = path if path.startswith("/") else f"{UPLOADS_DIR}/{path}"
    normalized = posixpath.normpath(full)
    # normpath keeps a leading "//"; collapse it
    return "/" + normalized.lstrip("/")


class VirtualWorkspace:
    """A small in-memory filesystem of regular files, directories and symlinks."""

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = set()
        self._symlinks: dict[str, str] = {}
        self.reset()

    def reset(self) -> None:
        """Drop everything and re-seed the uploads directory."""
        self._files.clear()
        self._dirs.clear()
        self._symlinks.clear()
        self._dirs.add("/")
        self.write_file(KEEP_FILE, b"")

    # ── Directories ──

    def mkdir(self, path: str) -> None:
        """Create *path* and any missing parents."""
        full = resolve_path(path)
        if full in self._files or full in self._symlinks:
            raise WorkspaceError(full, "not a directory")
        current = ""
        for segment in full.strip("/").split("/"):
            if not segment:
                continue
            current = f"{current}/{segment}"
            if current in self._files:
                raise WorkspaceError(current, "not a directory")
            self._dirs.add(current)

    def is_dir(self, path: str) -> bool:
        return resolve_path(path) in self._dirs

    # ── Files ──

    def write_file(self, path: str, content: str | bytes) -> str:
        """Write a file, creating parent directories. Returns the full path."""
        full = resolve_path(path)
        if full in self._dirs:
            raise WorkspaceError(full, "is a directory")
        parent = posixpath.dirname(full)
        if parent and parent != "/":
            self.mkdir(parent)
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
        self._symlinks.pop(full, None)
        self._files[full] = data
        return full

    def symlink(self, target: str, link_path: str) -> str:
        full = resolve_path(link_path)
        if full in self._files or full in self._dirs:
            raise WorkspaceError(full, "already exists")
        parent = posixpath.dirname(full)
        if parent and parent != "/":
            self.mkdir(parent)
        self._symlinks[full] = target
        return full

    def read_file(self, path: str) -> bytes:
        full = resolve_path(path)
        target = self._symlinks.get(full)
        if target is not None:
            full = resolve_path(target)
        if full in self._dirs:
            raise WorkspaceError(full, "is a directory")
        try:
            return self._files[full]
        except KeyError:
            raise WorkspaceError(full, "no such file") from None

    def read_text(self, path: str, encoding: str = "utf-8") -> str:
        return self.read_file(path).decode(encoding)

    def exists(self, path: str) -> bool:
        full = resolve_path(path)
        return full in self._files or full in self._dirs or full in self._symlinks

    def is_file(self, path: str) -> bool:
        return resolve_path(path) in self._files

    def delete_file(self, path: str) -> None:
        full = resolve_path(path)
        if full in self._files:
            del self._files[full]
        elif full in self._symlinks:
            del self._symlinks[full]
        else:
            raise WorkspaceError(full, "no such file")

    def list_uploads(self) -> list[str]:
        """Names of entries directly inside uploads/, excluding the seed file."""
        prefix = UPLOADS_DIR + "/"
        names: set[str] = set()
        for p in list(self._files) + list(self._symlinks) + list(self._dirs):
            if p.startswith(prefix):
                names.add(p[len(prefix):].split("/", 1)[0])
        names.discard(".keep")
        return sorted(names)

    def all_paths(self) -> list[str]:
        return sorted(set(self._files) | self._dirs | set(self._symlinks))

    # ── Snapshots ──

    async def snapshot(self) -> list[WorkspaceFile]:
        """Capture every regular file. Entries that cannot be read are skipped."""
        files: list[WorkspaceFile] = []
        for path in self.all_paths():
            if not self.is_file(path):
                continue
            try:
                data = self.read_file(path)
            except (WorkspaceError, OSError) as exc:
                logger.warning("Skipping unreadable workspace entry %s: %s", path, exc)
                continue
            files.append(WorkspaceFile(path=path, data=data))
        return files

    async def restore(self, files: list[WorkspaceFile]) -> None:
        """Replace all contents with *files*."""
        self.reset()
        for f in files:
            try:
                self.write_file(f.path, f.data)
            except WorkspaceError as exc:
                logger.warning("Skipping workspace file %s on restore: %s", f.path, exc)
        logger.debug("Workspace restored with %d files", len(files))
