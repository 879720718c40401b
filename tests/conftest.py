"""Shared fixtures for mailroute tests."""

import pytest


@pytest.fixture(autouse=True)
def _no_gmail(monkeypatch):
    """Ensure tests never talk to the real Gmail API."""
    monkeypatch.setattr("mailroute.cli.GMAIL_ACCESS_TOKEN", "")
