from wifi_telescope.scope.state import ConnectionMemory, StateStore, create_state_store


def test_state_store_load_missing_file_returns_defaults(tmp_path):
    store = StateStore(path=tmp_path / "connection.json")
    assert store.load() == ConnectionMemory()


def test_state_store_load_sanitizes_invalid_entries(tmp_path):
    path = tmp_path / "connection.json"
    path.write_text(
        '{"last_host": "  ", "last_port": true, "last_error": 12}',
        encoding="utf-8",
    )

    state = StateStore(path=path).load()

    assert state == ConnectionMemory()


def test_state_store_load_ignores_corrupt_json(tmp_path):
    path = tmp_path / "connection.json"
    path.write_text("{not json", encoding="utf-8")
    assert StateStore(path=path).load() == ConnectionMemory()


def test_state_store_record_connection_clears_error(tmp_path):
    store = create_state_store(tmp_path / "nested")
    store.record_error("Connection to 10.0.0.1:8082 failed: timeout")
    store.record_connection("192.168.1.50", 8082)

    reloaded = create_state_store(tmp_path / "nested").state
    assert reloaded.last_host == "192.168.1.50"
    assert reloaded.last_port == 8082
    assert reloaded.last_error is None


def test_state_store_rejects_out_of_range_port(tmp_path):
    path = tmp_path / "connection.json"
    path.write_text('{"last_host": "10.0.0.1", "last_port": 70000}', encoding="utf-8")

    state = StateStore(path=path).load()

    assert state.last_host == "10.0.0.1"
    assert state.last_port is None
