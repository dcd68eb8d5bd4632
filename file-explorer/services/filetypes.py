"""File type classification shared by the local and SSH adapters."""

from __future__ import annotations

import mimetypes
import os


IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".bmp"}
VIDEO_EXTS = {".mp4", ".webm", ".mov", ".avi", ".mkv"}
AUDIO_EXTS = {".mp3", ".wav", ".ogg", ".flac", ".m4a"}
CODE_EXTS = {
    ".js", ".ts", ".jsx", ".tsx", ".py", ".rb", ".go", ".rs", ".java", ".c", ".cpp", ".h",
    ".css", ".scss", ".html", ".json", ".yaml", ".yml", ".toml", ".md", ".sh", ".bash", ".zsh",
}
DOC_EXTS = {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".txt"}
ARCHIVE_EXTS = {".zip", ".tar", ".gz", ".rar", ".7z"}

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".bmp": "image/bmp",
}

# Text previews are capped at this many bytes.
PREVIEW_MAX_BYTES = 500_000


def extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower()


def file_type(filename: str) -> str:
    ext = extension(filename)
    if ext in IMAGE_EXTS:
        return "image"
    if ext in VIDEO_EXTS:
        return "video"
    if ext in AUDIO_EXTS:
        return "audio"
    if ext in CODE_EXTS:
        return "code"
    if ext in DOC_EXTS:
        return "document"
    if ext in ARCHIVE_EXTS:
        return "archive"
    return "file"


def file_icon(filename: str, is_dir: bool) -> str:
    if is_dir:
        return "folder"
    return file_type(filename)


def is_text_previewable(filename: str) -> bool:
    ext = extension(filename)
    return file_type(filename) == "code" or ext in (".txt", ".md")


def image_mime_type(filename: str) -> str:
    return IMAGE_MIME_TYPES.get(extension(filename), "image/png")


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"
