import json
from pathlib import Path

import pytest

from archnode.cli import init_state
from archnode.settings import Settings


def test_main_prints_port_and_token(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    settings = Settings(
        node_state_file=str(tmp_path / "database" / "app.json"),
        xray_config_path=str(tmp_path / "app" / "xray.json"),
        xray_access_log="",
        xray_error_log="",
    )
    monkeypatch.setattr(init_state, "get_settings", lambda: settings)

    init_state.main()

    saved = json.loads((tmp_path / "database" / "app.json").read_text(encoding="utf-8"))
    out = capsys.readouterr().out
    assert f"http_port={saved['settings']['httpPort']}" in out
    assert f"http_token={saved['settings']['httpToken']}" in out


def test_main_exits_on_broken_state(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    state_file = tmp_path / "app.json"
    state_file.write_text("{", encoding="utf-8")
    settings = Settings(
        node_state_file=str(state_file),
        xray_config_path=str(tmp_path / "xray.json"),
        xray_access_log="",
        xray_error_log="",
    )
    monkeypatch.setattr(init_state, "get_settings", lambda: settings)

    with pytest.raises(SystemExit) as exc:
        init_state.main()

    assert exc.value.code == 1
    assert "cannot initialise node state" in capsys.readouterr().err
