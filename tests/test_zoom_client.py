"""
Tests for ZoomClient: identity resolution, listing, downloads and deletion
"""

import dataclasses
from unittest.mock import Mock, patch

import pytest
import requests

from zoomvault.credentials import CredentialCache
from zoomvault.exceptions import (
    AuthError,
    DeleteFailureReason,
    DownloadFailedError,
    IdentityNotFoundError,
    NetworkError,
    NoRecordingTokenError,
    NotFoundError,
    RecordingDeleteError,
)
from zoomvault.models import Identity, RecordingFile
from zoomvault.zoom_client import ZoomClient

from .fakes import make_file


def ok(payload):
    return Mock(status_code=200, json=lambda: payload)


def error(status_code, code=None, message="error"):
    return Mock(status_code=status_code, json=lambda: {"code": code, "message": message})


@pytest.fixture
def fetch_token():
    return Mock(return_value="api-token")


@pytest.fixture
def client(fetch_token):
    return ZoomClient(CredentialCache(fetch_token))


ROSTER = {
    "users": [
        {"id": "u1", "email": "Alice@Example.com", "first_name": "Alice", "last_name": "A"},
        {"id": "u2", "email": "bob@example.com", "display_name": "Bob"},
    ]
}


class TestResolveIdentity:
    @patch("requests.request")
    def test_empty_identifier_means_token_owner(self, mock_request, client):
        mock_request.return_value = ok({"id": "me-id", "email": "me@example.com"})

        identity = client.resolve_identity(None)

        assert identity == Identity("me-id", "me@example.com", "")
        assert mock_request.call_args.args[1].endswith("/users/me")

    @patch("requests.request")
    def test_case_insensitive_email_match(self, mock_request, client):
        mock_request.return_value = ok(ROSTER)

        identity = client.resolve_identity("alice@example.COM")

        assert identity.id == "u1"
        assert identity.display_name == "Alice A"

    @patch("requests.request")
    def test_unknown_email_never_falls_back_to_me(self, mock_request, client):
        mock_request.return_value = ok(ROSTER)

        with pytest.raises(IdentityNotFoundError):
            client.resolve_identity("nonexistent@example.com")

        called_urls = [c.args[1] for c in mock_request.call_args_list]
        assert not any(url.endswith("/users/me") for url in called_urls)

    @patch("requests.request")
    def test_ambiguous_email_rejected(self, mock_request, client):
        mock_request.return_value = ok(
            {"users": [{"id": "x", "email": "dup@example.com"}, {"id": "y", "email": "DUP@example.com"}]}
        )

        with pytest.raises(IdentityNotFoundError, match="matches 2"):
            client.resolve_identity("dup@example.com")

    @patch("requests.request")
    def test_roster_is_paginated(self, mock_request, client):
        mock_request.side_effect = [
            ok({"users": [{"id": "u1", "email": "a@example.com"}], "next_page_token": "p2"}),
            ok({"users": [{"id": "u2", "email": "b@example.com"}], "next_page_token": ""}),
        ]

        assert client.resolve_identity("b@example.com").id == "u2"
        assert mock_request.call_args_list[1].kwargs["params"]["next_page_token"] == "p2"


class TestListRecordings:
    IDENTITY = Identity("u1", "alice@example.com", "Alice")

    @patch("zoomvault.zoom_client._utc_today", return_value="2024-05-01")
    @patch("requests.request")
    def test_defaults_to_today(self, mock_request, _today, client):
        mock_request.return_value = ok({"meetings": []})

        assert client.list_recordings(self.IDENTITY) == []

        params = mock_request.call_args.kwargs["params"]
        assert params["from"] == "2024-05-01"
        assert params["to"] == "2024-05-01"
        assert params["page_size"] == 300

    @patch("requests.request")
    def test_all_pages_and_host_emails(self, mock_request, client):
        mock_request.side_effect = [
            ok(
                {
                    "meetings": [
                        {"id": 111, "uuid": "a==", "topic": "Standup", "host_id": "u1"},
                        {"id": 222, "uuid": "b==", "topic": "", "host_id": "u9"},
                    ],
                    "next_page_token": "next",
                }
            ),
            ok({"meetings": [{"id": 333, "uuid": "c==", "host_id": "u9"}]}),
            ok({"id": "u9", "email": "host9@example.com"}),
        ]

        entries = client.list_recordings(self.IDENTITY, "2024-05-01", "2024-05-07")

        assert [e.meeting_id for e in entries] == ["111", "222", "333"]
        assert entries[1].topic == "Meeting"
        assert [e.host_email for e in entries] == [
            "alice@example.com",
            "host9@example.com",
            "host9@example.com",
        ]
        # u9 looked up once, the caller's own email reused
        assert mock_request.call_count == 3

    @patch("requests.request")
    def test_host_lookup_failure_uses_sentinel(self, mock_request, client):
        mock_request.side_effect = [
            ok({"meetings": [{"id": 111, "host_id": "gone"}]}),
            error(404, 1001, "User does not exist"),
        ]

        entries = client.list_recordings(self.IDENTITY, "2024-05-01", "2024-05-01")

        assert entries[0].host_email == "unknown"

    @patch("requests.request")
    def test_entries_are_read_only(self, mock_request, client):
        mock_request.return_value = ok({"meetings": [{"id": 111, "host_id": "u1"}]})

        entry = client.list_recordings(self.IDENTITY, "2024-05-01", "2024-05-01")[0]

        assert entry.host_email == "alice@example.com"
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.host_email = "someone@example.com"


class TestListRecordingFiles:
    @patch("requests.request")
    def test_returns_token_and_completed_files(self, mock_request, client):
        mock_request.return_value = ok(
            {
                "id": 123456789,
                "download_access_token": "dl-token",
                "recording_files": [
                    {
                        "id": "f1",
                        "file_type": "MP4",
                        "file_extension": "mp4",
                        "file_size": "2000",
                        "download_url": "https://zoom.us/rec/download/f1",
                        "status": "completed",
                    },
                    {
                        "id": "f2",
                        "file_type": "M4A",
                        "download_url": "https://zoom.us/rec/download/f2",
                        "status": "processing",
                    },
                    {"id": "f3", "file_type": "TIMELINE"},
                ],
            }
        )

        token, files = client.list_recording_files("123456789")

        assert token == "dl-token"
        assert [f.file_id for f in files] == ["f1"]
        assert files[0].size_bytes == 2000
        assert files[0].file_extension == "MP4"
        assert files[0].meeting_id == "123456789"
        assert mock_request.call_args.kwargs["params"] == {
            "include_fields": "download_access_token"
        }

    @patch("requests.request")
    def test_missing_download_token(self, mock_request, client):
        mock_request.return_value = ok({"id": 1, "recording_files": []})

        with pytest.raises(NoRecordingTokenError):
            client.list_recording_files("123456789")

    @patch("requests.request")
    def test_uuid_is_double_encoded(self, mock_request, client):
        mock_request.return_value = ok({"download_access_token": "t", "recording_files": []})

        client.list_recording_files("/abc==")

        assert mock_request.call_args.args[1].endswith("/meetings/%252Fabc%253D%253D/recordings")


class TestRequests:
    @patch("requests.request")
    def test_401_refreshes_credential_once(self, mock_request, fetch_token, client):
        fetch_token.side_effect = ["stale", "fresh"]
        mock_request.side_effect = [error(401), ok({"id": "me", "email": "me@example.com"})]

        client.get_current_user()

        assert fetch_token.call_count == 2
        second_headers = mock_request.call_args_list[1].kwargs["headers"]
        assert second_headers["Authorization"] == "Bearer fresh"

    @patch("requests.request")
    def test_repeated_401_raises_auth_error(self, mock_request, client):
        mock_request.return_value = error(401)

        with pytest.raises(AuthError) as exc_info:
            client.get_current_user()
        assert mock_request.call_count == 2
        assert "ZOOM_CLIENT_SECRET" in exc_info.value.details

    @patch("requests.request")
    def test_network_error(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(NetworkError):
            client.get_current_user()

    @patch("requests.request")
    def test_not_found(self, mock_request, client):
        mock_request.return_value = error(404, 3301, "This recording does not exist.")

        with pytest.raises(NotFoundError):
            client.get_meeting_recordings("123456789")


class TestDownloadFile:
    @patch("requests.get")
    def test_streams_with_bearer_token(self, mock_get, client):
        response = Mock(status_code=200, headers={"content-length": "6"})
        response.iter_content.return_value = iter([b"abc", b"", b"def"])
        mock_get.return_value = response

        with client.download_file(make_file("f1", size=99), "dl-token") as download:
            assert download.total_length == 6
            assert b"".join(download.iter_chunks(3)) == b"abcdef"

        kwargs = mock_get.call_args.kwargs
        assert kwargs["stream"] is True
        assert kwargs["headers"]["Authorization"] == "Bearer dl-token"
        response.close.assert_called_once()

    @patch("requests.get")
    def test_http_error_carries_status_code(self, mock_get, client):
        response = Mock(status_code=500, headers={})
        mock_get.return_value = response

        with pytest.raises(DownloadFailedError) as exc_info:
            client.download_file(make_file("f1"), "dl-token")

        assert exc_info.value.status_code == 500
        response.close.assert_called_once()

    @patch("requests.get")
    def test_falls_back_to_listed_size(self, mock_get, client):
        mock_get.return_value = Mock(status_code=200, headers={})

        download = client.download_file(make_file("f1", size=1234), "t")

        assert download.total_length == 1234

    @patch("requests.get")
    def test_interrupted_stream(self, mock_get, client):
        response = Mock(status_code=200, headers={"content-length": "10"})

        def broken(chunk_size):
            yield b"12345"
            raise requests.exceptions.ChunkedEncodingError("reset")

        response.iter_content.side_effect = broken
        mock_get.return_value = response

        download = client.download_file(make_file("f1"), "t")
        with pytest.raises(DownloadFailedError, match="interrupted"):
            list(download.iter_chunks(5))

    def test_untrusted_url_rejected(self, client):
        file = RecordingFile("f1", "1", "MP4", "MP4", 1, "https://evil.example.com/f1")

        with pytest.raises(DownloadFailedError, match="untrusted"):
            client.download_file(file, "t")


class TestDeleteRecordingFile:
    @patch("requests.request")
    def test_trash_by_default(self, mock_request, client):
        mock_request.return_value = Mock(status_code=204)

        assert client.delete_recording_file("123456789", "f1") is True

        assert mock_request.call_args.args[0] == "DELETE"
        assert mock_request.call_args.kwargs["params"] == {"action": "trash"}

    @pytest.mark.parametrize(
        "response,reason",
        [
            (error(403, 200, "No permission"), DeleteFailureReason.NOT_PERMITTED),
            (error(400, 1010, "User not in account"), DeleteFailureReason.NOT_PERMITTED),
            (error(404, 3301, "Recording does not exist"), DeleteFailureReason.NOT_FOUND),
            (error(400, 3303, "Meeting in progress"), DeleteFailureReason.MEETING_INCOMPLETE),
            (error(429, None, "Too many requests"), DeleteFailureReason.RATE_LIMITED),
            (error(500, 9999, "Internal"), DeleteFailureReason.UNKNOWN),
        ],
    )
    @patch("requests.request")
    def test_failure_taxonomy(self, mock_request, client, response, reason):
        mock_request.return_value = response

        with pytest.raises(RecordingDeleteError) as exc_info:
            client.delete_recording_file("123456789", "f1", mode="delete")

        assert exc_info.value.reason is reason
        assert exc_info.value.to_dict()["reason"] == reason.value

    def test_invalid_mode(self, client):
        with pytest.raises(ValueError):
            client.delete_recording_file("123456789", "f1", mode="shred")
