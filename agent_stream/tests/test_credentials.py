"""Tests for credential sources."""

import json

from agent_stream.config.loader import AuthSettings
from agent_stream.core.credentials import (
    CredentialProvider,
    EnvCredentials,
    FileCredentials,
    StaticCredentials,
    credentials_from_settings,
)


def test_static_credentials():
    assert StaticCredentials("abc").get_token() == "abc"
    assert StaticCredentials("").get_token() is None
    assert StaticCredentials(None).get_token() is None


def test_env_credentials_read_each_call(monkeypatch):
    creds = EnvCredentials("CRM_TOKEN")
    assert creds.get_token() is None
    monkeypatch.setenv("CRM_TOKEN", "  t1 ")
    assert creds.get_token() == "t1"
    monkeypatch.setenv("CRM_TOKEN", "t2")
    assert creds.get_token() == "t2"


def test_file_credentials(tmp_path):
    path = tmp_path / "auth.json"
    creds = FileCredentials(path)
    assert creds.get_token() is None
    path.write_text(json.dumps({"token": "from-file"}))
    assert creds.get_token() == "from-file"
    path.write_text("{broken")
    assert creds.get_token() is None
    path.write_text(json.dumps(["token"]))
    assert creds.get_token() is None
    path.write_text(json.dumps({"token": 42}))
    assert creds.get_token() is None


def test_credentials_from_settings(tmp_path):
    assert isinstance(credentials_from_settings(AuthSettings(token="x")), StaticCredentials)
    from_file = credentials_from_settings(AuthSettings(token_file=str(tmp_path / "a.json")))
    assert isinstance(from_file, FileCredentials)
    provider = credentials_from_settings(AuthSettings())
    assert isinstance(provider, EnvCredentials)
    assert isinstance(provider, CredentialProvider)
