import platform
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "Arch-Node"

_XRAY_BINARY_PATHS = {
    "darwin": "third_party/xray-macos-arm64/xray",
    "linux": "third_party/xray-linux-64/xray",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    node_host: str = "0.0.0.0"
    # Created on first run with a random HTTP port and token.
    node_state_file: str = "storage/database/app.json"
    # When enabled, configs are written to disk but the Xray process is never spawned.
    node_dry_run: bool = False
    node_sync_interval_seconds: float = 30
    # Bounds every request to the manager so a slow manager cannot stall later ticks.
    node_http_timeout_seconds: float = 20
    # Value of the X-App-Name header expected on POST /v1/configs.
    node_manager_app_name: str = "Arch-Manager"
    node_shutdown_grace_seconds: float = 10

    # Empty means "pick the bundled binary for this platform".
    xray_binary_path: str = ""
    xray_config_path: str = "storage/app/xray.json"
    xray_log_level: str = "debug"
    xray_access_log: str = "./storage/logs/xray-access.log"
    xray_error_log: str = "./storage/logs/xray-error.log"

    def resolved_xray_binary_path(self) -> str:
        if self.xray_binary_path:
            return self.xray_binary_path
        return _XRAY_BINARY_PATHS.get(platform.system().lower(), _XRAY_BINARY_PATHS["linux"])


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def ensure_node_dirs(settings: Settings) -> None:
    Path(settings.node_state_file).parent.mkdir(parents=True, exist_ok=True)
    Path(settings.xray_config_path).parent.mkdir(parents=True, exist_ok=True)
    for log_path in (settings.xray_access_log, settings.xray_error_log):
        if log_path:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)
