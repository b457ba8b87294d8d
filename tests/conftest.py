import pytest

_ENV_VARS = (
    "SONAR_HOST", "SONAR_USER", "SONAR_PASSWORD",
    "SONAR_TARGET_HOST", "SONAR_TARGET_USER", "SONAR_TARGET_PASSWORD",
)


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch, tmp_path):
    """Keep the developer's SONAR_* variables and sonar-migrate.yaml out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
