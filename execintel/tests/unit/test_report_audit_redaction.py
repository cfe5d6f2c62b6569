from __future__ import annotations

from execintel.services.report_audit import sanitize_metadata


def test_sensitive_keys_are_redacted_recursively() -> None:
    payload = {
        "api_key": "eik_abc",
        "nested": {"Authorization": "Bearer x", "fields": ["title"]},
        "items": [{"client_secret": "s"}, {"ok": 1}],
        "section_count": 3,
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["api_key"] == "[REDACTED]"
    assert sanitized["nested"]["Authorization"] == "[REDACTED]"
    assert sanitized["nested"]["fields"] == ["title"]
    assert sanitized["items"][0]["client_secret"] == "[REDACTED]"
    assert sanitized["items"][1] == {"ok": 1}
    assert sanitized["section_count"] == 3


def test_scalars_pass_through() -> None:
    assert sanitize_metadata("plain") == "plain"
    assert sanitize_metadata(None) is None
