"""
Configuration partagée pour tous les tests.
Remplace le moteur de synchronisation par un mock : aucune base locale ni appel réseau réel.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from madrasa_sync.bootstrap import get_engine
from madrasa_sync.main import app

NOW = datetime(2025, 6, 19, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Horloge injectable, avançable à la main."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def mock_engine():
    return MagicMock()


@pytest.fixture
def client(mock_engine):
    """Client HTTP de test avec le moteur mocké (lifespan compris)."""
    app.dependency_overrides[get_engine] = lambda: mock_engine
    with patch("madrasa_sync.main.bootstrap.build_engine", return_value=mock_engine):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()
