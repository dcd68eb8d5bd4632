"""File-operation contract, local adapter and the shared request dispatcher.

``FileBackend`` is implemented once per execution substrate (``LocalFs``
here, ``SshFs`` in :mod:`services.ssh_exec`). ``handle_operation`` turns an
incoming Flask request for ``/api/<op>`` into a backend call and shapes the
response, so a listing answered over SSH has exactly the same envelope as one
answered from the local disk.
"""

from __future__ import annotations

import base64
import contextlib
import datetime
import os
import shutil
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote as _url_quote

from flask import Request, Response, jsonify, send_file

from services import filetypes, fuzzy
from services.errors import ApiError, BadRequest, Conflict, InternalError, NotFound
from services.logging_setup import core_log as _core_log
from services.recent import RecentFiles
from services.sandbox import breadcrumbs, relative_to_root, resolve_safe_path
from services.schemas import ContentBody, PathBody, RecentBody, RenameBody


SEARCH_MIN_QUERY = 2
SEARCH_MAX_DEPTH = 5
LOCAL_SEARCH_MAX_ENTRIES = 100


# --------------------------- Helpers ---------------------------


def iso_timestamp(epoch: Optional[float]) -> Optional[str]:
    """Epoch seconds -> ``2024-01-31T12:00:00.000Z``."""
    if epoch is None:
        return None
    dt = datetime.datetime.fromtimestamp(float(epoch), tz=datetime.timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def sort_entries(files: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Directories first, then by name (ordinal, case-sensitive)."""
    return sorted(files, key=lambda f: (not f["isDirectory"], f["name"]))


def file_item(name: str, rel_path: str, is_dir: bool, size: int, mtime: Optional[float]) -> Dict[str, Any]:
    return {
        "name": name,
        "path": rel_path,
        "isDirectory": is_dir,
        "icon": filetypes.file_icon(name, is_dir),
        "size": size,
        "modified": iso_timestamp(mtime),
    }


def copy_name(base: str, ext: str, n: int) -> str:
    return f"{base} copy{ext}" if n < 2 else f"{base} copy {n}{ext}"


def preview_image(filename: str, data: bytes) -> Dict[str, Any]:
    return {
        "type": "image",
        "mimeType": filetypes.image_mime_type(filename),
        "content": base64.b64encode(data).decode("ascii"),
    }


def preview_text(filename: str, content: str) -> Dict[str, Any]:
    return {
        "type": "text",
        "language": filetypes.extension(filename)[1:],
        "content": content,
    }


def preview_unsupported(filename: str) -> Dict[str, Any]:
    return {
        "type": "unsupported",
        "message": f"Preview not available for {filetypes.extension(filename)} files",
    }


def _sanitize_download_filename(name: str, *, default: str = "download") -> str:
    """Sanitize filename for Content-Disposition header (prevent header injection)."""
    s = os.path.basename((name or "").strip())
    s = s.replace("\r", "").replace("\n", "").replace('"', "")
    if not s:
        s = default
    return s[:180]


def content_disposition_attachment(filename: str) -> str:
    fn = _sanitize_download_filename(filename)
    # RFC 5987 filename* improves UTF-8 handling in modern browsers.
    fn_star = _url_quote(fn, safe="")
    return f"attachment; filename=\"{fn}\"; filename*=UTF-8''{fn_star}"


@dataclass
class Download:
    filename: str
    path: Optional[str] = None
    data: Optional[bytes] = None


# --------------------------- Contract ---------------------------


class FileBackend:
    """File-operation contract shared by every execution substrate.

    Paths are always relative to the backend's root. Methods return plain
    JSON-ready dicts and raise :class:`services.errors.ApiError` subclasses.
    """

    name = "backend"

    def list(self, path: str, show_hidden: bool = False) -> Dict[str, Any]:
        raise NotImplementedError

    def search(self, path: str, query: str) -> Dict[str, Any]:
        raise NotImplementedError

    def preview(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def info(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def download(self, path: str) -> Download:
        raise NotImplementedError

    def mkdir(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def touch(self, path: str, content: str = "") -> Dict[str, Any]:
        raise NotImplementedError

    def rename(self, src: str, dst: str) -> Dict[str, Any]:
        raise NotImplementedError

    def delete(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    def save(self, path: str, content: str) -> Dict[str, Any]:
        raise NotImplementedError

    def upload(self, directory: str, filename: str, data: bytes) -> Dict[str, Any]:
        raise NotImplementedError

    def duplicate(self, path: str) -> Dict[str, Any]:
        raise NotImplementedError

    # Recency is per-instance state; substrates without a store answer neutrally.
    def recent(self) -> List[Dict[str, Any]]:
        return []

    def track_recent(self, body: RecentBody) -> None:
        return None


# --------------------------- Local adapter ---------------------------


@contextlib.contextmanager
def _os_errors(action: str) -> Iterator[None]:
    try:
        yield
    except ApiError:
        raise
    except FileNotFoundError:
        raise NotFound("Path not found")
    except OSError as e:
        _core_log("warning", "localfs.error", action=action, error=str(e))
        raise InternalError(e.strerror or str(e) or f"Failed to {action}")


class LocalFs(FileBackend):
    name = "local"

    def __init__(self, root_dir: str, recent: Optional[RecentFiles] = None) -> None:
        self.root = os.path.realpath(root_dir)
        self.recent_store = recent

    def _resolve(self, path: Optional[str]) -> str:
        return resolve_safe_path(self.root, path)

    def _rel(self, abs_path: str) -> str:
        return relative_to_root(self.root, abs_path)

    def list(self, path: str, show_hidden: bool = False) -> Dict[str, Any]:
        target = self._resolve(path)
        with _os_errors("read directory"):
            if not os.path.isdir(target):
                if not os.path.exists(target):
                    raise NotFound("Path not found")
                raise BadRequest("Not a directory")
            files: List[Dict[str, Any]] = []
            with os.scandir(target) as it:
                for entry in it:
                    if not show_hidden and entry.name.startswith("."):
                        continue
                    try:
                        is_dir = entry.is_dir()
                    except OSError:
                        is_dir = False
                    size, mtime = 0, None
                    try:
                        st = entry.stat()
                        size, mtime = int(st.st_size), st.st_mtime
                    except OSError:
                        # dangling symlink or permission problem; keep the entry
                        pass
                    files.append(file_item(entry.name, self._rel(entry.path), is_dir, size, mtime))
        rel = self._rel(target)
        return {"path": rel, "breadcrumbs": breadcrumbs(rel, os.sep), "files": sort_entries(files)}

    def search(self, path: str, query: str) -> Dict[str, Any]:
        if not query or len(query) < SEARCH_MIN_QUERY:
            return {"results": []}
        start = self._resolve(path)
        found: List[Dict[str, Any]] = []

        def _walk(d: str, depth: int) -> None:
            if depth > SEARCH_MAX_DEPTH or len(found) >= LOCAL_SEARCH_MAX_ENTRIES:
                return
            try:
                with os.scandir(d) as it:
                    entries = list(it)
            except OSError:
                return
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                try:
                    is_dir = entry.is_dir()
                except OSError:
                    is_dir = False
                found.append({
                    "name": entry.name,
                    "path": self._rel(entry.path),
                    "isDirectory": is_dir,
                    "icon": filetypes.file_icon(entry.name, is_dir),
                    "size": 0,
                })
                if is_dir and len(found) < LOCAL_SEARCH_MAX_ENTRIES:
                    _walk(entry.path, depth + 1)

        _walk(start, 0)
        return {"results": fuzzy.rank(query, found)}

    def preview(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        filename = os.path.basename(target)
        with _os_errors("read file"):
            st = os.stat(target)
            if os.path.isdir(target):
                raise BadRequest("Cannot preview directory")
            if filetypes.file_type(filename) == "image":
                with open(target, "rb") as f:
                    return preview_image(filename, f.read())
            if filetypes.is_text_previewable(filename):
                if st.st_size > filetypes.PREVIEW_MAX_BYTES:
                    raise BadRequest("File too large to preview")
                with open(target, "r", encoding="utf-8", errors="replace") as f:
                    return preview_text(filename, f.read())
        return preview_unsupported(filename)

    def info(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        filename = os.path.basename(target)
        with _os_errors("get file info"):
            st = os.stat(target)
        is_dir = os.path.isdir(target)
        created = getattr(st, "st_birthtime", None) or st.st_ctime
        return {
            "name": filename,
            "path": path,
            "isDirectory": is_dir,
            "size": int(st.st_size),
            "created": iso_timestamp(created),
            "modified": iso_timestamp(st.st_mtime),
            "accessed": iso_timestamp(st.st_atime),
            "icon": filetypes.file_icon(filename, is_dir),
            "type": filetypes.file_type(filename),
        }

    def download(self, path: str) -> Download:
        target = self._resolve(path)
        if not os.path.exists(target):
            raise NotFound("Path not found")
        if os.path.isdir(target):
            raise BadRequest("Cannot download directory")
        return Download(filename=os.path.basename(target), path=target)

    def mkdir(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        with _os_errors("create folder"):
            os.makedirs(target, exist_ok=True)
        _core_log("info", "localfs.mkdir", path=path)
        return {"success": True, "path": path}

    def touch(self, path: str, content: str = "") -> Dict[str, Any]:
        target = self._resolve(path)
        with _os_errors("create file"):
            os.makedirs(os.path.dirname(target), exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                f.write(content or "")
        return {"success": True, "path": path}

    def rename(self, src: str, dst: str) -> Dict[str, Any]:
        sp = self._resolve(src)
        dp = self._resolve(dst)
        with _os_errors("rename"):
            if os.path.lexists(dp):
                raise Conflict("Destination already exists")
            os.rename(sp, dp)
        _core_log("info", "localfs.rename", src=src, dst=dst)
        return {"success": True}

    def delete(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        if target == self.root:
            raise BadRequest("Cannot delete root directory")
        with _os_errors("delete"):
            if not os.path.lexists(target):
                raise NotFound("Path not found")
            if os.path.isdir(target) and not os.path.islink(target):
                shutil.rmtree(target)
            else:
                os.unlink(target)
        _core_log("info", "localfs.delete", path=path)
        return {"success": True}

    def save(self, path: str, content: str) -> Dict[str, Any]:
        target = self._resolve(path)
        with _os_errors("save"):
            with open(target, "w", encoding="utf-8") as f:
                f.write(content)
        return {"success": True}

    def upload(self, directory: str, filename: str, data: bytes) -> Dict[str, Any]:
        target = self._resolve(os.path.join(directory or "", filename))
        with _os_errors("upload"):
            with open(target, "wb") as f:
                f.write(data)
        return {"success": True, "path": self._rel(target)}

    def duplicate(self, path: str) -> Dict[str, Any]:
        src = self._resolve(path)
        if src == self.root:
            raise BadRequest("Cannot duplicate root directory")
        parent = os.path.dirname(src)
        base, ext = os.path.splitext(os.path.basename(src))
        n = 1
        dst = os.path.join(parent, copy_name(base, ext, n))
        while os.path.lexists(dst):
            n += 1
            dst = os.path.join(parent, copy_name(base, ext, n))
        with _os_errors("duplicate"):
            if os.path.isdir(src):
                shutil.copytree(src, dst, symlinks=True)
            else:
                shutil.copy2(src, dst)
        return {"success": True, "path": self._rel(dst)}

    def recent(self) -> List[Dict[str, Any]]:
        return self.recent_store.list() if self.recent_store is not None else []

    def track_recent(self, body: RecentBody) -> None:
        if self.recent_store is not None:
            self.recent_store.track(body.path, body.name, body.type, body.size)


# --------------------------- Dispatcher ---------------------------


def _arg(req: Request, name: str) -> str:
    return str(req.args.get(name, "") or "")


def _json(req: Request) -> Any:
    data = req.get_json(silent=True)
    if data is None and req.get_data(cache=True):
        raise BadRequest("Invalid JSON body")
    return data


def _op_files(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.list(_arg(req, "path"), _arg(req, "showHidden") == "true"))


def _op_search(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.search(_arg(req, "path"), _arg(req, "q")))


def _op_recent(backend: FileBackend, req: Request) -> Any:
    if req.method == "POST":
        backend.track_recent(RecentBody.parse(_json(req)))
        return jsonify({"success": True})
    return jsonify({"files": backend.recent()})


def _op_preview(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.preview(_arg(req, "path")))


def _op_info(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.info(_arg(req, "path")))


def _op_download(backend: FileBackend, req: Request) -> Any:
    dl = backend.download(_arg(req, "path"))
    if dl.path is not None:
        resp = send_file(dl.path, mimetype=filetypes.guess_mime_type(dl.filename), conditional=False)
    else:
        resp = Response(dl.data or b"", mimetype=filetypes.guess_mime_type(dl.filename))
    resp.headers["Content-Disposition"] = content_disposition_attachment(dl.filename)
    return resp


def _op_mkdir(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.mkdir(PathBody.parse(_json(req)).path))


def _op_touch(backend: FileBackend, req: Request) -> Any:
    body = ContentBody.parse(_json(req))
    return jsonify(backend.touch(body.path, body.content))


def _op_rename(backend: FileBackend, req: Request) -> Any:
    body = RenameBody.parse(_json(req))
    return jsonify(backend.rename(body.src, body.dst))


def _op_delete(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.delete(PathBody.parse(_json(req)).path))


def _op_save(backend: FileBackend, req: Request) -> Any:
    body = ContentBody.parse(_json(req), content_required=True)
    return jsonify(backend.save(body.path, body.content))


def _op_upload(backend: FileBackend, req: Request) -> Any:
    f = req.files.get("file")
    if f is None or not f.filename:
        raise BadRequest("No file provided")
    filename = os.path.basename(f.filename.replace("\\", "/"))
    if not filename or filename in (".", ".."):
        raise BadRequest("Invalid file name")
    directory = str(req.form.get("path", "") or "")
    return jsonify(backend.upload(directory, filename, f.read()))


def _op_duplicate(backend: FileBackend, req: Request) -> Any:
    return jsonify(backend.duplicate(PathBody.parse(_json(req)).path))


OPERATIONS: Dict[str, Tuple[Tuple[str, ...], Callable[[FileBackend, Request], Any]]] = {
    "files": (("GET",), _op_files),
    "search": (("GET",), _op_search),
    "recent": (("GET", "POST"), _op_recent),
    "preview": (("GET",), _op_preview),
    "info": (("GET",), _op_info),
    "download": (("GET",), _op_download),
    "mkdir": (("POST",), _op_mkdir),
    "touch": (("POST",), _op_touch),
    "rename": (("POST",), _op_rename),
    "delete": (("POST",), _op_delete),
    "save": (("POST",), _op_save),
    "upload": (("POST",), _op_upload),
    "duplicate": (("POST",), _op_duplicate),
}


def handle_operation(backend: FileBackend, op: str, req: Request) -> Any:
    """Run file operation ``op`` for ``req`` against ``backend``."""
    entry = OPERATIONS.get(op)
    if entry is None:
        raise NotFound("Unknown operation")
    methods, handler = entry
    method = "GET" if req.method == "HEAD" else req.method
    if method not in methods:
        return jsonify({"error": "Method not allowed"}), 405
    return handler(backend, req)
