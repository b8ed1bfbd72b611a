from pathlib import Path

import pytest

import env_validation
from engines.versioning import VersioningGuard
from env_validation import DEFAULT_FORK_TITLE_ATTEMPTS, load_settings, validate_environment


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.setenv("DB_PATH", str(tmp_path / "settings.db"))
    for name in (
        "LEGACY_ASSESSMENT_DIR",
        "LEGACY_ASSESSMENTS_ENABLED",
        "FORK_TITLE_ATTEMPTS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ASSESSMENT_DIR", str(tmp_path / "assessments"))
    return monkeypatch


def test_fork_title_default_is_shared(clean_env, assessment_store):
    settings = load_settings()
    guard = VersioningGuard(assessment_store, registry=None)
    assert settings.fork_title_attempts == DEFAULT_FORK_TITLE_ATTEMPTS
    assert guard.fork_title_attempts == DEFAULT_FORK_TITLE_ATTEMPTS


def test_legacy_dir_follows_toggle(clean_env):
    clean_env.setenv("LEGACY_ASSESSMENT_DIR", "/srv/legacy")
    assert load_settings().legacy_dir is None

    clean_env.setenv("LEGACY_ASSESSMENTS_ENABLED", "yes")
    assert load_settings().legacy_dir == Path("/srv/legacy")


@pytest.mark.parametrize("value", ["0", "many"])
def test_rejects_bad_fork_title_attempts(clean_env, value):
    clean_env.setenv("FORK_TITLE_ATTEMPTS", value)
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()


def test_legacy_toggle_needs_directory(clean_env):
    clean_env.setenv("LEGACY_ASSESSMENTS_ENABLED", "true")
    with pytest.raises(env_validation.EnvironmentError):
        validate_environment()
