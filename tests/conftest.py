"""Shared fixtures for reqfile tests."""

import json
import os

import pytest
from click.testing import CliRunner

from reqfile.executor import RequestResult


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def tmp_project(tmp_path):
    """Create a temporary project directory and cd into it."""
    original = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(original)


def make_request_result(
    status_code=200,
    body=None,
    headers=None,
    status_text="OK",
    elapsed_ms=42.0,
    error=None,
    raw_text="",
):
    """Factory for mock RequestResult objects."""
    r = RequestResult()
    r.status_code = status_code
    r.status_text = status_text
    r.headers = headers or []
    r.body = body
    r.elapsed_ms = elapsed_ms
    r.error = error
    r.raw_text = raw_text or (
        json.dumps(body) if isinstance(body, dict | list) else str(body or "")
    )
    return r
