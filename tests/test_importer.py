"""Tests for importer module."""
import json

import pytest

from mindmark_search.importer import import_chrome_bookmarks, read_chrome_bookmarks


class TestReadChromeBookmarks:
    def test_reads_all_bookmarks(self, sample_chrome_path):
        records = read_chrome_bookmarks(sample_chrome_path)
        assert len(records) == 5

    def test_records_folder_path(self, sample_chrome_path):
        records = {r["url"]: r for r in read_chrome_bookmarks(sample_chrome_path)}
        assert records["https://docs.python.org"]["folder"] == ""
        assert records["https://jira.example.com/board"]["folder"] == "Work"
        assert records["https://sqlite.org/guide"]["title"] == "SQLite Guide"

    def test_nested_folders(self, tmp_path):
        data = {"roots": {"bookmark_bar": {"type": "folder", "name": "Bar", "children": [
            {"type": "folder", "name": "Dev", "children": [
                {"type": "folder", "name": "Python", "children": [
                    {"type": "url", "name": "PEP 8", "url": "https://peps.python.org/pep-0008/"},
                ]},
            ]},
        ]}}}
        path = tmp_path / "Bookmarks"
        path.write_text(json.dumps(data))
        assert read_chrome_bookmarks(path)[0]["folder"] == "Dev/Python"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_chrome_bookmarks(tmp_path / "nope")

    def test_malformed_file(self, tmp_path):
        path = tmp_path / "Bookmarks"
        path.write_text("{not json")
        with pytest.raises(json.JSONDecodeError):
            read_chrome_bookmarks(path)


@pytest.mark.asyncio
class TestImportChromeBookmarks:
    async def test_imports_valid_and_skips_invalid(self, store, sample_chrome_path):
        summary = await import_chrome_bookmarks(store, "u1", sample_chrome_path)
        assert summary == {"imported": 4, "skipped": 1}

        bookmarks = {b.url: b for b in await store.list_bookmarks("u1")}
        assert bookmarks["https://jira.example.com/board"].collection_name == "Work"
        assert bookmarks["https://sqlite.org/guide"].collection_name == "Tutorials"
        assert bookmarks["https://docs.python.org/"].collection_name is None
        assert bookmarks["https://stackoverflow.com/"].content_type == "reference"

    async def test_second_import_skips_duplicates(self, store, sample_chrome_path):
        await import_chrome_bookmarks(store, "u1", sample_chrome_path)
        summary = await import_chrome_bookmarks(store, "u1", sample_chrome_path)
        assert summary == {"imported": 0, "skipped": 5}
