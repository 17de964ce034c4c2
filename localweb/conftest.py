"""
Shared pytest fixtures for the LocalWeb test suite.
"""

import base64
from pathlib import Path
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from share_server import AppConfig, create_app

USERNAME = "testuser"
PASSWORD = "testpass"


def basic_auth(user: str, password: str) -> Dict[str, str]:
    """Authorization header for the Basic scheme"""
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


@pytest.fixture
def share_root(tmp_path: Path) -> Path:
    root = tmp_path / "share"
    root.mkdir()
    return root


@pytest.fixture
def config(share_root: Path) -> AppConfig:
    return AppConfig(
        share={"root": str(share_root)},
        security={"username": USERNAME, "password": PASSWORD},
        tls={"enabled": False},
    )


@pytest.fixture
def app(config: AppConfig):
    return create_app(config)


@pytest.fixture
def auth() -> Dict[str, str]:
    return basic_auth(USERNAME, PASSWORD)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
