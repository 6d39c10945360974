"""Tests for FastAPI application endpoints."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from docfiling.main import app


@pytest.fixture
def client() -> TestClient:
    """Create FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def supabase_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")


# Version Endpoint Tests


def test_version_endpoint(client: TestClient) -> None:
    """Test version endpoint returns version and commit hash."""
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": "1.0.0", "commit_hash": "development"}


# Health Check Tests


def test_health_check_offline(client: TestClient) -> None:
    """Test health check with no API key and no store."""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "timestamp" in data
    assert data["services"] == {
        "oracle": "mock",
        "skill:document-classify": "healthy",
        "skill:intelligence-extract": "healthy",
        "supabase": "not_configured",
    }


def test_health_check_live_oracle(client: TestClient, monkeypatch) -> None:
    """Test that a configured API key reports the live classifier."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")

    response = client.get("/health")

    assert response.json()["services"]["oracle"] == "live"


def test_health_check_missing_skills_use_fallback(client: TestClient, monkeypatch, tmp_path) -> None:
    """Test that absent skills are reported but do not fail the check."""
    monkeypatch.setenv("SKILLS_DIR", str(tmp_path))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["services"]["skill:document-classify"] == "missing (using fallback)"


def test_health_check_malformed_skill(client: TestClient, monkeypatch, tmp_path) -> None:
    """Test that a malformed skill makes the service unhealthy."""
    skill_dir = tmp_path / "document-classify"
    skill_dir.mkdir()
    (skill_dir / "SKILL.md").write_text("no header", encoding="utf-8")
    monkeypatch.setenv("SKILLS_DIR", str(tmp_path))

    response = client.get("/health")

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["services"]["skills"].startswith("unhealthy:")


@patch("docfiling.main.get_supabase_client")
def test_health_check_supabase_healthy(mock_supabase: MagicMock, client: TestClient, supabase_env) -> None:
    """Test health check with a reachable store."""
    # Arrange
    mock_client = MagicMock()
    mock_supabase.return_value = mock_client

    # Act
    response = client.get("/health")

    # Assert
    assert response.status_code == 200
    assert response.json()["services"]["supabase"] == "healthy"
    mock_client.table.assert_called_once_with("file_type_definitions")


@patch("docfiling.main.get_supabase_client")
def test_health_check_supabase_unhealthy(mock_supabase: MagicMock, client: TestClient, supabase_env) -> None:
    """Test health check when the store cannot be reached."""
    # Arrange
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.limit.return_value.execute.side_effect = Exception(
        "Connection refused"
    )
    mock_supabase.return_value = mock_client

    # Act
    response = client.get("/health")

    # Assert
    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "unhealthy"
    assert data["services"]["supabase"] == "unhealthy: Connection refused"


def test_health_check_use_mock_overrides_key(client: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("USE_MOCK", "true")

    response = client.get("/health")

    assert response.json()["services"]["oracle"] == "mock"
