"""Tests for the /books and /bookmarks endpoints.

The job runner, processor and settings are replaced through
``app.dependency_overrides`` so no book is processed and nothing is
published.
"""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from bookpress.config import Settings, get_settings
from bookpress.dependencies import get_jobs, get_processor, get_registrar
from bookpress.errors import AlreadyProcessing
from bookpress.main import app
from bookpress.models.book import JobStatus
from bookpress.services.bookmarks import InMemoryBookmarkRegistrar
from bookpress.services.jobs import BookJobs

client = TestClient(app)

EPUB_BYTES = b"PK\x03\x04 pretend epub"


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear the slowapi in-memory counter before every test."""
    app.state.limiter._storage.reset()
    yield


@pytest.fixture
def jobs():
    mock = MagicMock(spec=BookJobs)
    app.dependency_overrides[get_jobs] = lambda: mock
    yield mock
    app.dependency_overrides.pop(get_jobs, None)


@pytest.fixture
def processor():
    mock = MagicMock()
    app.dependency_overrides[get_processor] = lambda: mock
    yield mock
    app.dependency_overrides.pop(get_processor, None)


@pytest.fixture
def settings():
    value = Settings(admin_ids=["admin", "42"], max_upload_bytes=1024)
    app.dependency_overrides[get_settings] = lambda: value
    yield value
    app.dependency_overrides.pop(get_settings, None)


@pytest.fixture
def registrar():
    value = InMemoryBookmarkRegistrar()
    app.dependency_overrides[get_registrar] = lambda: value
    yield value
    app.dependency_overrides.pop(get_registrar, None)


def _upload(user_id="42", filename="novel.epub", body=EPUB_BYTES):
    return client.post("/books", params={"user_id": user_id, "filename": filename}, content=body)


class TestUploadBook:
    def test_accepted(self, jobs, processor, settings):
        resp = _upload()
        assert resp.status_code == 202
        assert resp.json() == {"user_id": "42", "filename": "novel.epub", "status": "accepted"}

        user_id, filename, work = jobs.submit.call_args.args
        assert (user_id, filename) == ("42", "novel.epub")
        work()
        processor.process_archive.assert_called_once_with(EPUB_BYTES, "novel.epub")

    def test_user_not_on_allow_list(self, jobs, processor, settings):
        resp = _upload(user_id="intruder")
        assert resp.status_code == 403
        jobs.submit.assert_not_called()

    def test_empty_allow_list_admits_everyone(self, jobs, processor, settings):
        settings.admin_ids = []
        assert _upload(user_id="anyone").status_code == 202

    def test_rejects_non_epub(self, jobs, processor, settings):
        resp = _upload(filename="notes.pdf")
        assert resp.status_code == 400
        jobs.submit.assert_not_called()

    def test_rejects_empty_body(self, jobs, processor, settings):
        assert _upload(body=b"").status_code == 400

    def test_rejects_oversized_upload(self, jobs, processor, settings):
        resp = _upload(body=b"x" * 2048)
        assert resp.status_code == 413
        jobs.submit.assert_not_called()

    def test_duplicate_upload_conflicts(self, jobs, processor, settings):
        jobs.submit.side_effect = AlreadyProcessing("User 42 already has a book in progress")
        resp = _upload()
        assert resp.status_code == 409
        assert "already" in resp.json()["detail"]

    def test_missing_query_parameters(self, jobs, processor, settings):
        resp = client.post("/books", content=EPUB_BYTES)
        assert resp.status_code == 422


class TestBookStatus:
    def test_reports_status(self, jobs):
        jobs.status.return_value = JobStatus(
            user_id="42", filename="novel.epub", state="done", pages=["https://telegra.ph/p1"]
        )
        resp = client.get("/books/42")
        assert resp.status_code == 200
        body = resp.json()
        assert body["state"] == "done"
        assert body["pages"] == ["https://telegra.ph/p1"]

    def test_unknown_user(self, jobs):
        jobs.status.return_value = None
        assert client.get("/books/nobody").status_code == 404


class TestCancelBook:
    def test_cancels_running_book(self, jobs):
        jobs.cancel.return_value = True
        resp = client.delete("/books/42")
        assert resp.status_code == 202
        jobs.cancel.assert_called_once_with("42")

    def test_nothing_to_cancel(self, jobs):
        jobs.cancel.return_value = False
        assert client.delete("/books/42").status_code == 404


class TestBookmarks:
    def test_resolves_token(self, registrar):
        token = registrar.issue_token("Novel", "Novel (3)", "https://telegra.ph/Novel-3")
        resp = client.get(f"/bookmarks/{token}")
        assert resp.status_code == 200
        assert resp.json() == {
            "token": token,
            "book_name": "Novel",
            "page_title": "Novel (3)",
            "url": "https://telegra.ph/Novel-3",
        }

    def test_unknown_token(self, registrar):
        assert client.get("/bookmarks/bm_missing0").status_code == 404

    def test_token_format(self, registrar):
        token = registrar.issue_token("Novel", "Novel (1)", "https://telegra.ph/Novel-1")
        assert token.startswith("bm_")
        assert len(token) == 11


class TestHealth:
    def test_root(self):
        assert client.get("/").json() == {"message": "Hello from Bookpress"}
