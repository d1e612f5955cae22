import logging

from zoomvault.logger import RedactingFilter


def _record(msg, args=None):
    return logging.LogRecord("zoomvault", logging.INFO, __file__, 1, msg, args, None)


def test_bearer_token_redacted():
    record = _record("headers: Authorization: Bearer eyJhbGciOi.secret")

    RedactingFilter().filter(record)

    assert "eyJhbGciOi" not in record.getMessage()
    assert "Bearer [REDACTED]" in record.getMessage()


def test_query_token_redacted_in_args():
    record = _record("GET %s", ("https://zoom.us/rec/download/x?access_token=abc123&x=1",))

    RedactingFilter().filter(record)

    assert "abc123" not in record.getMessage()
    assert "x=1" in record.getMessage()


def test_download_access_token_redacted():
    record = _record("payload %s", ("{'download_access_token': 'dl-secret', 'id': 1}",))

    RedactingFilter().filter(record)

    assert "dl-secret" not in record.getMessage()


def test_other_messages_untouched():
    record = _record("Uploaded %s (%d bytes)", ("gs://b/a.mp4", 10))

    assert RedactingFilter().filter(record) is True
    assert record.getMessage() == "Uploaded gs://b/a.mp4 (10 bytes)"
