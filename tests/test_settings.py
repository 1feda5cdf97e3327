import pytest

from archnode import settings as settings_module
from archnode.settings import Settings, ensure_node_dirs


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NODE_DRY_RUN", "true")
    monkeypatch.setenv("NODE_SYNC_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("NODE_MANAGER_APP_NAME", "Other-Manager")

    settings = Settings()

    assert settings.node_dry_run is True
    assert settings.node_sync_interval_seconds == 5
    assert settings.node_manager_app_name == "Other-Manager"
    assert settings.node_http_timeout_seconds == 20
    assert settings.node_shutdown_grace_seconds == 10


def test_binary_path_defaults_per_platform(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings_module.platform, "system", lambda: "Darwin")

    assert Settings(xray_binary_path="").resolved_xray_binary_path() == "third_party/xray-macos-arm64/xray"
    assert Settings(xray_binary_path="/usr/bin/xray").resolved_xray_binary_path() == "/usr/bin/xray"


def test_ensure_node_dirs(tmp_path) -> None:
    settings = Settings(
        node_state_file=str(tmp_path / "db" / "app.json"),
        xray_config_path=str(tmp_path / "app" / "xray.json"),
        xray_access_log=str(tmp_path / "logs" / "access.log"),
        xray_error_log="",
    )

    ensure_node_dirs(settings)

    assert (tmp_path / "db").is_dir()
    assert (tmp_path / "app").is_dir()
    assert (tmp_path / "logs").is_dir()
