from creaturehunt import serve


def test_parse_args_defaults_to_settings(monkeypatch) -> None:
    monkeypatch.setenv("CREATUREHUNT_HOST", "0.0.0.0")
    monkeypatch.setenv("CREATUREHUNT_PORT", "8123")

    args = serve.parse_args([])

    assert args.host == "0.0.0.0"
    assert args.port == 8123
    assert args.reload is False


def test_main_runs_uvicorn_with_api_app(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(serve.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))
    monkeypatch.setattr(serve, "configure_logging", lambda level: None)

    assert serve.main(["--port", "9001"]) == 0

    app, kwargs = calls[0]
    assert app == "creaturehunt.backend.api:app"
    assert kwargs["port"] == 9001
