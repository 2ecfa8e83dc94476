from __future__ import annotations

from paysync._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "type": "transaction_update",
        "token": "eyJhbGciOi",
        "Authorization": "Bearer abc",
        "payload": {"id": "t1", "upiId": "asha@bank", "accountNumber": "0042"},
    }

    redacted = redact_for_log(payload)
    assert redacted["type"] == "transaction_update"
    assert redacted["token"] == "<redacted>"
    assert redacted["Authorization"] == "<redacted>"
    assert redacted["payload"]["id"] == "t1"
    assert redacted["payload"]["upiId"] == "<redacted>"
    assert redacted["payload"]["accountNumber"] == "<redacted>"


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_shortens_long_lists() -> None:
    snapshot = [{"id": str(i)} for i in range(8)]

    redacted = redact_for_log(snapshot, max_items=3)

    assert redacted[:3] == [{"id": "0"}, {"id": "1"}, {"id": "2"}]
    assert redacted[3] == "<+5 more>"
    assert redact_for_log(b"\x00\x01") == "<bytes:2b>"
