"""
Tests for the local file API (/api/files, /api/preview, /api/rename, ...).
"""

import base64
import io
import os

from conftest import PNG_BYTES


def _names(payload):
    return [f["name"] for f in payload["files"]]


class TestListing:
    def test_root_listing_dirs_first_then_ordinal(self, client):
        r = client.get("/api/files?path=")
        assert r.status_code == 200
        data = r.get_json()
        assert data["path"] == ""
        assert data["breadcrumbs"] == [{"name": "Home", "path": ""}]
        assert _names(data) == ["docs", "src", "Zeta.txt", "alpha.txt", "image.png", "notes.txt"]

    def test_item_shape(self, client):
        data = client.get("/api/files?path=").get_json()
        item = next(f for f in data["files"] if f["name"] == "notes.txt")
        assert item["path"] == "notes.txt"
        assert item["isDirectory"] is False
        assert item["icon"] == "document"
        assert item["size"] == len("hello notes")
        assert item["modified"].endswith("Z")
        docs = next(f for f in data["files"] if f["name"] == "docs")
        assert docs["isDirectory"] is True
        assert docs["icon"] == "folder"

    def test_show_hidden(self, client):
        data = client.get("/api/files?path=&showHidden=true").get_json()
        assert ".hidden" in _names(data)
        assert ".hidden" not in _names(client.get("/api/files?path=").get_json())

    def test_nested_breadcrumbs(self, client):
        data = client.get("/api/files?path=docs").get_json()
        assert data["path"] == "docs"
        assert data["breadcrumbs"][-1] == {"name": "docs", "path": "docs"}
        assert data["files"][0]["path"] == os.path.join("docs", "readme.md")

    def test_not_a_directory(self, client):
        r = client.get("/api/files?path=notes.txt")
        assert r.status_code == 400
        assert r.get_json() == {"error": "Not a directory"}

    def test_escape_rejected(self, client):
        r = client.get("/api/files?path=../")
        assert r.status_code == 400
        assert r.get_json()["error"] == "Invalid path"

    def test_missing_directory(self, client):
        assert client.get("/api/files?path=nope").status_code == 404

    def test_wrong_method(self, client):
        assert client.get("/api/mkdir").status_code == 405


class TestSearch:
    def test_short_query_is_empty(self, client):
        assert client.get("/api/search?q=a").get_json() == {"results": []}

    def test_substring_ranks_first(self, client):
        results = client.get("/api/search?q=notes").get_json()["results"]
        assert results[0]["name"] == "notes.txt"

    def test_finds_nested_entries(self, client):
        results = client.get("/api/search?q=main").get_json()["results"]
        assert results[0]["path"] == os.path.join("src", "main.py")
        assert results[0]["isDirectory"] is False

    def test_hidden_entries_skipped(self, client):
        results = client.get("/api/search?q=hidden").get_json()["results"]
        assert all(not r["name"].startswith(".") for r in results)


class TestRecent:
    def test_track_and_reorder(self, client):
        assert client.get("/api/recent").get_json() == {"files": []}
        for p in ("notes.txt", "alpha.txt", "notes.txt"):
            r = client.post("/api/recent", json={"path": p, "name": p, "type": "document", "size": 1})
            assert r.get_json() == {"success": True}
        files = client.get("/api/recent").get_json()["files"]
        assert [f["path"] for f in files] == ["notes.txt", "alpha.txt"]
        assert isinstance(files[0]["accessedAt"], int)

    def test_path_required(self, client):
        assert client.post("/api/recent", json={"name": "x"}).status_code == 400


class TestPreviewInfoDownload:
    def test_text_preview(self, client):
        data = client.get("/api/preview?path=notes.txt").get_json()
        assert data == {"type": "text", "language": "txt", "content": "hello notes"}

    def test_image_preview(self, client):
        data = client.get("/api/preview?path=image.png").get_json()
        assert data["type"] == "image"
        assert data["mimeType"] == "image/png"
        assert base64.b64decode(data["content"]) == PNG_BYTES

    def test_unsupported_preview(self, client, root_dir):
        (root_dir / "blob.bin").write_bytes(b"\x00\x01")
        data = client.get("/api/preview?path=blob.bin").get_json()
        assert data == {"type": "unsupported", "message": "Preview not available for .bin files"}

    def test_large_text_rejected(self, client, root_dir):
        (root_dir / "big.txt").write_text("a" * 500_001, encoding="utf-8")
        r = client.get("/api/preview?path=big.txt")
        assert r.status_code == 400
        assert r.get_json() == {"error": "File too large to preview"}

    def test_info(self, client):
        data = client.get("/api/info?path=notes.txt").get_json()
        assert data["name"] == "notes.txt"
        assert data["isDirectory"] is False
        assert data["size"] == 11
        assert data["type"] == "document"
        for key in ("created", "modified", "accessed"):
            assert data[key].endswith("Z")

    def test_info_missing(self, client):
        assert client.get("/api/info?path=missing.txt").status_code == 404

    def test_download(self, client):
        r = client.get("/api/download?path=notes.txt")
        assert r.status_code == 200
        assert r.data == b"hello notes"
        assert r.headers["Content-Disposition"].startswith('attachment; filename="notes.txt"')

    def test_download_directory_rejected(self, client):
        assert client.get("/api/download?path=docs").status_code == 400


class TestMutations:
    def test_mkdir_recursive(self, client, root_dir):
        r = client.post("/api/mkdir", json={"path": "a/b/c"})
        assert r.get_json() == {"success": True, "path": "a/b/c"}
        assert (root_dir / "a" / "b" / "c").is_dir()

    def test_touch_creates_parents(self, client, root_dir):
        r = client.post("/api/touch", json={"path": "new/dir/f.txt", "content": "x"})
        assert r.get_json() == {"success": True, "path": "new/dir/f.txt"}
        assert (root_dir / "new" / "dir" / "f.txt").read_text(encoding="utf-8") == "x"

    def test_rename(self, client, root_dir):
        r = client.post("/api/rename", json={"from": "alpha.txt", "to": "beta.txt"})
        assert r.get_json() == {"success": True}
        assert (root_dir / "beta.txt").exists()
        assert not (root_dir / "alpha.txt").exists()

    def test_rename_conflict(self, client):
        r = client.post("/api/rename", json={"from": "alpha.txt", "to": "notes.txt"})
        assert r.status_code == 409
        assert r.get_json() == {"error": "Destination already exists"}

    def test_rename_requires_both(self, client):
        assert client.post("/api/rename", json={"from": "alpha.txt"}).status_code == 400

    def test_delete(self, client, root_dir):
        assert client.post("/api/delete", json={"path": "docs"}).get_json() == {"success": True}
        assert not (root_dir / "docs").exists()
        assert client.post("/api/delete", json={"path": "alpha.txt"}).status_code == 200
        assert not (root_dir / "alpha.txt").exists()

    def test_delete_root_refused(self, client):
        r = client.post("/api/delete", json={"path": ""})
        assert r.status_code == 400
        assert r.get_json() == {"error": "Cannot delete root directory"}

    def test_delete_missing(self, client):
        assert client.post("/api/delete", json={"path": "ghost"}).status_code == 404

    def test_save(self, client, root_dir):
        assert client.post("/api/save", json={"path": "notes.txt", "content": "changed"}).get_json() == {"success": True}
        assert (root_dir / "notes.txt").read_text(encoding="utf-8") == "changed"

    def test_upload(self, client, root_dir):
        r = client.post(
            "/api/upload",
            data={"file": (io.BytesIO(b"uploaded"), "up.txt"), "path": "docs"},
            content_type="multipart/form-data",
        )
        assert r.get_json() == {"success": True, "path": os.path.join("docs", "up.txt")}
        assert (root_dir / "docs" / "up.txt").read_bytes() == b"uploaded"

    def test_upload_without_file(self, client):
        r = client.post("/api/upload", data={"path": ""}, content_type="multipart/form-data")
        assert r.status_code == 400
        assert r.get_json() == {"error": "No file provided"}

    def test_duplicate_probes_copy_names(self, client, root_dir):
        r1 = client.post("/api/duplicate", json={"path": "notes.txt"}).get_json()
        r2 = client.post("/api/duplicate", json={"path": "notes.txt"}).get_json()
        assert r1 == {"success": True, "path": "notes copy.txt"}
        assert r2 == {"success": True, "path": "notes copy 2.txt"}
        assert (root_dir / "notes copy 2.txt").read_text(encoding="utf-8") == "hello notes"

    def test_duplicate_directory(self, client, root_dir):
        r = client.post("/api/duplicate", json={"path": "docs"}).get_json()
        assert r["path"] == "docs copy"
        assert (root_dir / "docs copy" / "readme.md").exists()

    def test_non_object_body(self, client):
        r = client.post("/api/mkdir", json=[1, 2])
        assert r.status_code == 400
        assert r.get_json() == {"error": "Request body must be a JSON object"}
