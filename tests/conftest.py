import pytest


class _FakeConnection:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def close(self):
        pass


@pytest.fixture
def proxy_port(monkeypatch):
    """Control whether dialing the proxy port succeeds."""

    state = {"open": True, "dials": []}

    def fake_create_connection(address, timeout=None, *args, **kwargs):
        state["dials"].append((address, timeout))
        if not state["open"]:
            raise ConnectionRefusedError("connection refused")
        return _FakeConnection()

    monkeypatch.setattr("socket.create_connection", fake_create_connection)
    return state


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr("time.sleep", lambda seconds: recorded.append(seconds))
    return recorded
