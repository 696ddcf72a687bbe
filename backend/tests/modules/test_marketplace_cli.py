"""Tests for the admin CLI."""

from __future__ import annotations

import jwt
import pytest
from click.testing import CliRunner

from cli import cli
from shared.config import get_settings

# HS256 keys shorter than 32 bytes draw an InsecureKeyLengthWarning from PyJWT
JWT_SECRET = "marketplace-test-secret-0123456789abcdef"


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    get_settings.cache_clear()
    yield CliRunner()
    get_settings.cache_clear()


def test_issue_token(runner):
    result = runner.invoke(cli, ["issue-token", "--uid", "ravi", "--ttl-minutes", "5"])

    assert result.exit_code == 0
    claims = jwt.decode(result.stdout.strip(), JWT_SECRET, algorithms=["HS256"])
    assert claims["sub"] == "ravi"


def test_show_missing_task(runner):
    result = runner.invoke(cli, ["tasks", "show", "nope"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_candidates_for_missing_task(runner):
    result = runner.invoke(cli, ["tasks", "candidates", "nope"])

    assert result.exit_code == 1
    assert "Task nope not found." in result.output


def test_expire_with_nothing_due(runner):
    result = runner.invoke(cli, ["tasks", "expire"])

    assert result.exit_code == 0
    assert "Expired 0 task(s)." in result.output
