import start_api_server


def test_api_server_runs_the_app_from_settings(monkeypatch):
    calls = []
    monkeypatch.setattr(
        start_api_server.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs))
    )

    start_api_server.main()

    ((app, kwargs),) = calls
    assert app == "archive_ingest.main:app"
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["port"] == 8000
    assert kwargs["workers"] == 1
