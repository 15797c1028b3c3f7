"""
Root conftest — isolate credential and config environment variables so that
Settings tests are not affected by real keys or a TURNPIPE_CONFIG path in the
developer's or CI environment.
"""
import pytest

_ISOLATED_ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_ORGANIZATION",
    "TURNPIPE_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove key and config env vars for every test so Settings() behaves
    as if none are present unless the test explicitly provides them.
    Also disables .env file loading and resets the settings singleton."""
    for var in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import turnpipe.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    monkeypatch.setattr(settings_module, "_singleton", None)
