"""Tests for core/logging.py."""

from fleetmux.core.logging import REDACTED, redact_secrets


def test_secret_fields_are_masked():
    event = {"event": "Provisioned", "alias": "markc", "password": "hunter2", "password_hash": "{SHA512-CRYPT}$6$x"}

    out = redact_secrets(None, "info", event)

    assert out["password"] == REDACTED
    assert out["password_hash"] == REDACTED
    assert out["alias"] == "markc"
    assert out["event"] == "Provisioned"
