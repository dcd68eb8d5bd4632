"""SSH execution adapter.

Every file operation is one remote shell command run through the system
``ssh`` binary (key-based, ``BatchMode=yes``). Paths are confined to the
device's remote root lexically and always interpolated with
:func:`shlex.quote`; payloads (file contents) travel base64-encoded, either in
a heredoc or over stdin, and are never logged.
"""

from __future__ import annotations

import base64
import os
import posixpath
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from services import filetypes, fuzzy
from services.errors import ApiError, BadGateway, BadRequest, Conflict, NotFound
from services.fileops import (
    SEARCH_MAX_DEPTH,
    SEARCH_MIN_QUERY,
    Download,
    FileBackend,
    copy_name,
    file_item,
    iso_timestamp,
    preview_image,
    preview_text,
    preview_unsupported,
    sort_entries,
)
from services.logging_setup import core_log as _core_log
from services.sandbox import breadcrumbs, remote_relative, resolve_remote_path


TEXT_TIMEOUT = 15.0
BINARY_TIMEOUT = 30.0
CONNECT_TIMEOUT = 5
REMOTE_SEARCH_MAX_ENTRIES = 500

CODE_TIMEOUT = 124
CODE_NO_BINARY = 127

# Exit codes our own scripts use to report expected conditions.
_EXIT_NOT_DIR = 3
_EXIT_MISSING = 4
_EXIT_EXISTS = 5
_EXIT_IS_DIR = 6


@dataclass
class SshResult:
    code: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.code == 0

    def stderr_tail(self, limit: int = 300) -> str:
        s = (self.stderr or b"").decode("utf-8", "replace").strip()
        return s[-limit:]


class SshRunner:
    def __init__(self, ssh_bin: str = "ssh", connect_timeout: int = CONNECT_TIMEOUT) -> None:
        self.ssh_bin = ssh_bin or "ssh"
        self.connect_timeout = int(connect_timeout)

    def argv(self, host: str, command: str) -> List[str]:
        return [
            self.ssh_bin,
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            host,
            command,
        ]

    def run(self, host: str, command: str, *, stdin: Optional[bytes] = None, timeout: float = TEXT_TIMEOUT) -> SshResult:
        env = os.environ.copy()
        env["LC_ALL"] = "C"
        try:
            p = subprocess.Popen(
                self.argv(host, command),
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            return SshResult(CODE_NO_BINARY, b"", str(e).encode("utf-8", "replace"))

        try:
            out, err = p.communicate(input=stdin, timeout=timeout)
        except subprocess.TimeoutExpired:
            p.kill()
            out, err = p.communicate()
            return SshResult(CODE_TIMEOUT, out or b"", (err or b"") + f"\ntimed out after {timeout:g}s".encode())
        return SshResult(int(p.returncode or 0), out or b"", err or b"")


def _q(s: str) -> str:
    return shlex.quote(s)


# ls + per-entry stat; BSD stat first, GNU second.
_LIST_LOOP = (
    "while IFS= read -r f; do "
    "if [ -d \"$f\" ]; then t=d; else t=f; fi; "
    "sm=$(stat -L -f '%z|%m' -- \"$f\" 2>/dev/null) || sm=$(stat -L -c '%s|%Y' -- \"$f\" 2>/dev/null) || sm='0|0'; "
    "printf '%s|%s|%s\\n' \"$t\" \"$f\" \"$sm\"; "
    "done"
)


class SshFs(FileBackend):
    name = "ssh"

    def __init__(self, host: str, remote_root: str, runner: Optional[SshRunner] = None) -> None:
        self.host = host
        self.root = posixpath.normpath(remote_root or "/")
        self.runner = runner or SshRunner()

    # --------------------------- transport ---------------------------

    def run(self, command: str, *, stdin: Optional[bytes] = None, timeout: float = TEXT_TIMEOUT) -> SshResult:
        return self.runner.run(self.host, command, stdin=stdin, timeout=timeout)

    def _exec(
        self,
        command: str,
        *,
        op: str,
        stdin: Optional[bytes] = None,
        timeout: float = TEXT_TIMEOUT,
        expected: Optional[Mapping[int, ApiError]] = None,
    ) -> bytes:
        res = self.run(command, stdin=stdin, timeout=timeout)
        if res.ok:
            return res.stdout
        if expected and res.code in expected:
            raise expected[res.code]
        tail = res.stderr_tail()
        _core_log("warning", "ssh.command_failed", host=self.host, op=op, code=res.code, stderr=tail)
        if res.code == CODE_TIMEOUT:
            raise BadGateway(f"SSH command timed out: {self.host}")
        raise BadGateway(tail or f"SSH command failed with exit code {res.code}")

    def _resolve(self, path: Optional[str]) -> str:
        return resolve_remote_path(self.root, path)

    def _rel(self, abs_path: str) -> str:
        return remote_relative(self.root, abs_path)

    def probe_home(self, timeout: float) -> str:
        """Check connectivity; return the remote ``$HOME``."""
        res = self.run("echo ok && echo $HOME", timeout=timeout)
        lines = res.stdout.decode("utf-8", "replace").splitlines()
        if not res.ok or not lines or lines[0].strip() != "ok":
            tail = res.stderr_tail()
            _core_log("warning", "ssh.probe_failed", host=self.host, code=res.code, stderr=tail)
            raise BadGateway(f"Cannot reach {self.host} over SSH" + (f": {tail}" if tail else ""))
        return lines[1].strip() if len(lines) > 1 else ""

    # --------------------------- operations ---------------------------

    def list(self, path: str, show_hidden: bool = False) -> Dict[str, Any]:
        target = self._resolve(path)
        q = _q(target)
        ls = "ls -1A" if show_hidden else "ls -1"
        script = (
            f"[ -e {q} ] || exit {_EXIT_MISSING}; "
            f"[ -d {q} ] || exit {_EXIT_NOT_DIR}; "
            f"cd -- {q} || exit 1; "
            # a failing ls must not be masked by the loop's status
            f"names=$({ls}) || exit $?; "
            f"[ -n \"$names\" ] || exit 0; "
            f"printf '%s\\n' \"$names\" | {_LIST_LOOP}"
        )
        out = self._exec(script, op="list", expected={
            _EXIT_MISSING: NotFound("Path not found"),
            _EXIT_NOT_DIR: BadRequest("Not a directory"),
        })
        files: List[Dict[str, Any]] = []
        for line in out.decode("utf-8", "replace").splitlines():
            if len(line) < 2 or line[1] != "|":
                continue
            try:
                name, size, mtime = line[2:].rsplit("|", 2)
                size_i, mtime_i = int(size), int(mtime)
            except ValueError:
                continue
            if not name:
                continue
            files.append(file_item(
                name,
                self._rel(posixpath.join(target, name)),
                line[0] == "d",
                size_i,
                mtime_i or None,
            ))
        rel = self._rel(target)
        return {"path": rel, "breadcrumbs": breadcrumbs(rel, "/"), "files": sort_entries(files)}

    def search(self, path: str, query: str) -> Dict[str, Any]:
        if not query or len(query) < SEARCH_MIN_QUERY:
            return {"results": []}
        q = _q(self._resolve(path))
        script = (
            f"find {q} -mindepth 1 -maxdepth {SEARCH_MAX_DEPTH} -name '.*' -prune -o -print 2>/dev/null "
            f"| head -n {REMOTE_SEARCH_MAX_ENTRIES} "
            "| while IFS= read -r p; do if [ -d \"$p\" ]; then t=d; else t=f; fi; printf '%s|%s\\n' \"$t\" \"$p\"; done"
        )
        out = self._exec(script, op="search")
        found: List[Dict[str, Any]] = []
        for line in out.decode("utf-8", "replace").splitlines():
            if len(line) < 3 or line[1] != "|":
                continue
            abs_path = line[2:]
            name = posixpath.basename(abs_path)
            is_dir = line[0] == "d"
            found.append({
                "name": name,
                "path": self._rel(abs_path),
                "isDirectory": is_dir,
                "icon": filetypes.file_icon(name, is_dir),
                "size": 0,
            })
        return {"results": fuzzy.rank(query, found)}

    def preview(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        q = _q(target)
        filename = posixpath.basename(target)
        guard = f"[ -e {q} ] || exit {_EXIT_MISSING}; [ -d {q} ] && exit {_EXIT_IS_DIR}; "
        expected = {
            _EXIT_MISSING: NotFound("Path not found"),
            _EXIT_IS_DIR: BadRequest("Cannot preview directory"),
        }
        if filetypes.file_type(filename) == "image":
            data = self._exec(guard + f"cat -- {q}", op="preview", timeout=BINARY_TIMEOUT, expected=expected)
            return preview_image(filename, data)
        if filetypes.is_text_previewable(filename):
            data = self._exec(guard + f"head -c {filetypes.PREVIEW_MAX_BYTES} -- {q}", op="preview", expected=expected)
            return preview_text(filename, data.decode("utf-8", "replace"))
        return preview_unsupported(filename)

    def info(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        q = _q(target)
        filename = posixpath.basename(target)
        script = (
            f"[ -e {q} ] || exit {_EXIT_MISSING}; "
            f"out=$(stat -L -f '%z|%B|%m|%a|%HT' -- {q} 2>/dev/null) "
            f"|| out=$(stat -L -c '%s|%W|%Y|%X|%F' -- {q}) && printf '%s\\n' \"$out\""
        )
        out = self._exec(script, op="info", expected={_EXIT_MISSING: NotFound("Path not found")})
        lines = [ln for ln in out.decode("utf-8", "replace").splitlines() if ln.strip()]
        if not lines:
            raise BadGateway("Unexpected stat output")
        try:
            size, birth, mtime, atime, kind = lines[-1].split("|", 4)
            size_i, birth_i, mtime_i, atime_i = int(size), int(birth), int(mtime), int(atime)
        except ValueError:
            raise BadGateway("Unexpected stat output")
        is_dir = kind.strip().lower() == "directory"
        return {
            "name": filename,
            "path": path,
            "isDirectory": is_dir,
            "size": size_i,
            # GNU stat reports 0 when the filesystem has no birth time.
            "created": iso_timestamp(birth_i if birth_i > 0 else mtime_i),
            "modified": iso_timestamp(mtime_i),
            "accessed": iso_timestamp(atime_i),
            "icon": filetypes.file_icon(filename, is_dir),
            "type": filetypes.file_type(filename),
        }

    def download(self, path: str) -> Download:
        target = self._resolve(path)
        q = _q(target)
        data = self._exec(
            f"[ -e {q} ] || exit {_EXIT_MISSING}; [ -d {q} ] && exit {_EXIT_IS_DIR}; cat -- {q}",
            op="download",
            timeout=BINARY_TIMEOUT,
            expected={
                _EXIT_MISSING: NotFound("Path not found"),
                _EXIT_IS_DIR: BadRequest("Cannot download directory"),
            },
        )
        return Download(filename=posixpath.basename(target), data=data)

    def mkdir(self, path: str) -> Dict[str, Any]:
        self._exec(f"mkdir -p -- {_q(self._resolve(path))}", op="mkdir")
        _core_log("info", "ssh.mkdir", host=self.host, path=path)
        return {"success": True, "path": path}

    def touch(self, path: str, content: str = "") -> Dict[str, Any]:
        target = self._resolve(path)
        b64 = base64.b64encode((content or "").encode("utf-8")).decode("ascii")
        script = (
            f"mkdir -p -- {_q(posixpath.dirname(target))} && "
            f"base64 -d > {_q(target)} <<'__FE_EOF__'\n{b64}\n__FE_EOF__\n"
        )
        self._exec(script, op="touch")
        return {"success": True, "path": path}

    def rename(self, src: str, dst: str) -> Dict[str, Any]:
        sq = _q(self._resolve(src))
        dq = _q(self._resolve(dst))
        script = (
            f"[ -e {sq} ] || [ -L {sq} ] || exit {_EXIT_MISSING}; "
            f"if [ -e {dq} ] || [ -L {dq} ]; then exit {_EXIT_EXISTS}; fi; "
            f"mv -- {sq} {dq}"
        )
        self._exec(script, op="rename", expected={
            _EXIT_MISSING: NotFound("Path not found"),
            _EXIT_EXISTS: Conflict("Destination already exists"),
        })
        _core_log("info", "ssh.rename", host=self.host, src=src, dst=dst)
        return {"success": True}

    def delete(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        if target == self.root:
            raise BadRequest("Cannot delete root directory")
        q = _q(target)
        self._exec(
            f"[ -e {q} ] || [ -L {q} ] || exit {_EXIT_MISSING}; rm -rf -- {q}",
            op="delete",
            expected={_EXIT_MISSING: NotFound("Path not found")},
        )
        _core_log("info", "ssh.delete", host=self.host, path=path)
        return {"success": True}

    def _write(self, target: str, data: bytes, op: str) -> None:
        payload = base64.b64encode(data)
        parent = _q(posixpath.dirname(target))
        self._exec(
            f"[ -d {parent} ] || exit {_EXIT_MISSING}; base64 -d > {_q(target)}",
            op=op,
            stdin=payload,
            timeout=BINARY_TIMEOUT,
            expected={_EXIT_MISSING: NotFound("Path not found")},
        )

    def save(self, path: str, content: str) -> Dict[str, Any]:
        self._write(self._resolve(path), content.encode("utf-8"), "save")
        return {"success": True}

    def upload(self, directory: str, filename: str, data: bytes) -> Dict[str, Any]:
        target = self._resolve(posixpath.join(directory or "", filename))
        self._write(target, data, "upload")
        return {"success": True, "path": self._rel(target)}

    def duplicate(self, path: str) -> Dict[str, Any]:
        target = self._resolve(path)
        if target == self.root:
            raise BadRequest("Cannot duplicate root directory")
        parent, name = posixpath.split(target)
        base, ext = posixpath.splitext(name)
        script = (
            f"cd -- {_q(parent)} || exit {_EXIT_MISSING}; "
            f"[ -e {_q(name)} ] || exit {_EXIT_MISSING}; "
            f"dst={_q(copy_name(base, ext, 1))}; n=2; "
            "while [ -e \"$dst\" ] || [ -L \"$dst\" ]; do "
            f"dst={_q(base + ' copy ')}\"$n\"{_q(ext)}; n=$((n+1)); "
            "done; "
            f"cp -r -- {_q(name)} \"$dst\" && printf '%s\\n' \"$dst\""
        )
        out = self._exec(script, op="duplicate", expected={_EXIT_MISSING: NotFound("Path not found")})
        lines = out.decode("utf-8", "replace").splitlines()
        if not lines:
            raise BadGateway("Duplicate produced no destination")
        return {"success": True, "path": self._rel(posixpath.join(parent, lines[-1]))}
