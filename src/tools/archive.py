"""Generated project files and their zip packaging."""

from __future__ import annotations

import base64
import io
import posixpath
import zipfile
from dataclasses import dataclass

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico", ".bmp", ".avif"}


@dataclass(frozen=True)
class GeneratedFile:
    path: str
    content: str
    encoding: str = "utf-8"  # "utf-8" or "base64"

    def to_bytes(self) -> bytes:
        if self.encoding == "base64":
            return base64.b64decode(self.content)
        return self.content.encode("utf-8")


def is_binary_path(path: str) -> bool:
    return posixpath.splitext(path.lower())[1] in IMAGE_EXTENSIONS


def encoding_for(path: str) -> str:
    return "base64" if is_binary_path(path) else "utf-8"


def file_from_bytes(path: str, raw: bytes) -> GeneratedFile:
    """Images and any non-UTF-8 content (fonts, archives) are kept as base64."""
    if not is_binary_path(path):
        try:
            return GeneratedFile(path, raw.decode("utf-8"), "utf-8")
        except UnicodeDecodeError:
            pass
    return GeneratedFile(path, base64.b64encode(raw).decode(), "base64")


def normalize_path(path: str) -> str | None:
    """Return *path* as a clean relative POSIX path, or ``None`` if it escapes the root."""
    if not path or "\\" in path or path.startswith("/"):
        return None
    parts = [p for p in path.split("/") if p not in ("", ".")]
    if not parts or ".." in parts:
        return None
    return "/".join(parts)


def make_zip(files: list[GeneratedFile]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for f in files:
            zf.writestr(f.path, f.to_bytes())
    return buf.getvalue()


def read_zip(archive: bytes) -> list[GeneratedFile]:
    """Unpack a zip produced by :func:`make_zip` back into files.

    Images and undecodable entries come back base64-encoded, everything
    else as UTF-8 text.
    """
    files: list[GeneratedFile] = []
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            path = normalize_path(info.filename)
            if path is None:
                continue
            files.append(file_from_bytes(path, zf.read(info)))
    return files
