import io
import json

import pytest
import structlog
from vimrest import rest_cli

@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("VIM_REST_CONFIG", "VIM_REST_ENV_FILE", "VIM_REST_LOG_LEVEL", "VIM_REST_CURL", "VIM_REST_SSH"):
        monkeypatch.delenv(var, raising=False)
    yield
    structlog.reset_defaults()

def feed_stdin(monkeypatch, text):
    monkeypatch.setattr("sys.stdin", io.StringIO(text))

@pytest.mark.asyncio
async def test_help(capsys):
    assert await rest_cli.main(["--help"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Usage of vim-rest-client:")
    assert "# @options <flags>" in out
    assert "sshPort" in out

@pytest.mark.asyncio
async def test_runs_document_from_stdin(tmp_path, monkeypatch, capsys):
    feed_stdin(monkeypatch, '###{\n@baseUrl = "https://10.0.0.20:5443/api/v1"\n###}\n')
    assert await rest_cli.main([]) == 0
    out = capsys.readouterr().out
    assert out == (
        '###{ executed (SUCCESS)\n'
        '@baseUrl = "https://10.0.0.20:5443/api/v1"\n'
        '########## RESULT\n'
        '@baseUrl = "https://10.0.0.20:5443/api/v1"\n'
        '###}\n'
    )
    assert json.loads((tmp_path / ".env.json").read_text()) == {"baseUrl": "https://10.0.0.20:5443/api/v1"}

@pytest.mark.asyncio
async def test_env_file_argument(tmp_path, monkeypatch, capsys):
    (tmp_path / "dev.json").write_text('{"host": "dev.local"}')
    feed_stdin(monkeypatch, '###{\n@url = "http://{{.host}}/"\n###}')
    assert await rest_cli.main(["dev.json"]) == 0
    assert '@url = "http://dev.local/"' in capsys.readouterr().out
    assert json.loads((tmp_path / "dev.json").read_text())["url"] == "http://dev.local/"
    assert not (tmp_path / ".env.json").exists()

@pytest.mark.asyncio
async def test_bad_config_exits_with_error(tmp_path, monkeypatch, capsys):
    (tmp_path / ".vim-rest-client.yaml").write_text("nonsense: true\n")
    feed_stdin(monkeypatch, "")
    assert await rest_cli.main([]) == 1
    assert "unknown config key" in capsys.readouterr().err

@pytest.mark.asyncio
async def test_undecodable_stdin_exits_with_error(monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.TextIOWrapper(io.BytesIO(b"###{\n\xff\xfe\n###}\n"), encoding="utf-8"))
    assert await rest_cli.main([]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert captured.err.startswith("Error: ")

def test_run_exits_with_main_status(monkeypatch):
    monkeypatch.setattr("sys.argv", ["vim-rest-client", "-h"])
    with pytest.raises(SystemExit) as exc:
        rest_cli.run()
    assert exc.value.code == 0
