import kvserver
from config import ServerConfig


def test_main_serves_with_environment_config(monkeypatch) -> None:
    started: list[ServerConfig] = []

    async def fake_start_server(config: ServerConfig) -> None:
        started.append(config)

    monkeypatch.setattr(kvserver, "start_server", fake_start_server)
    monkeypatch.setenv("KV_PORT", "7001")
    monkeypatch.setenv("KV_MAX_LINE_LEN", "4096")

    kvserver.main()

    assert [(c.port, c.max_line_length) for c in started] == [(7001, 4096)]
