from pathlib import Path

import pytest
import yaml

from log_viewer.config import Config

EXAMPLE = Path(__file__).resolve().parent.parent / "config" / "config.yaml"


def write_yaml(path, data):
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, allow_unicode=True)
    return str(path)


class TestConfig:
    def test_defaults(self):
        cfg = Config().validate()
        assert cfg.server.port == 1111
        assert cfg.stream.endpoint == "/ws/uwsgi_log"
        assert cfg.stream.log_file == "/var/log/uwsgi/uwsgi.log"
        assert cfg.stream.heartbeat_interval == 30
        assert cfg.tail.reopen is True
        assert cfg.tail.reopen_timeout is None
        assert cfg.websocket.origins is None
        assert cfg.log.level == "INFO"

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = Config.load(str(tmp_path / "nope.yaml"))
        assert cfg.server.port == 1111

    def test_load_overrides(self, tmp_path):
        path = write_yaml(tmp_path / "config.yaml", {
            "server": {"port": 9000},
            "stream": {"endpoint": "/ws/app_log", "log_file": "/srv/app.log"},
            "tail": {"reopen_timeout": 5, "notify": True},
            "websocket": {"origins": ["https://ops.example.com"]},
            "log": {"level": "debug"},
        })
        cfg = Config.load(path).validate()
        assert cfg.server.port == 9000
        assert cfg.stream.endpoint == "/ws/app_log"
        assert cfg.tail.reopen_timeout == 5.0
        assert cfg.tail.notify is True
        assert cfg.websocket.origins == ["https://ops.example.com"]
        assert cfg.log.level == "DEBUG"
        assert cfg.server.host == "0.0.0.0"

    def test_shipped_example_is_valid(self):
        cfg = Config.load(str(EXAMPLE)).validate()
        assert cfg.stream.endpoint == "/ws/uwsgi_log"

    def test_non_mapping_file_is_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            Config.load(str(path))

    @pytest.mark.parametrize("raw", [
        {"stream": {"endpoint": "ws/uwsgi_log"}},
        {"stream": {"endpoint": "/"}},
        {"stream": {"log_file": "relative.log"}},
        {"stream": {"heartbeat_interval": 0}},
        {"tail": {"poll_interval": -1}},
        {"tail": {"reopen_timeout": -1}},
        {"server": {"port": 70000}},
        {"log": {"level": "chatty"}},
        {"log": {"timezone": "Mars/Olympus"}},
        {"websocket": {"max_size": 0}},
        {"websocket": {"max_queue": -1}},
        {"websocket": {"write_limit": -1}},
        {"log": {"max_bytes": -1}},
        {"log": {"backup_count": -2}},
    ])
    def test_validate_rejects(self, raw):
        with pytest.raises(ValueError):
            Config(raw).validate()

    def test_quoted_sizes_are_coerced(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "websocket:\n  max_size: '2048'\n  max_queue: '8'\n  write_limit: '1024'\n"
            "log:\n  max_bytes: '4096'\n  backup_count: '3'\n",
            encoding="utf-8",
        )
        cfg = Config.load(str(path)).validate()
        assert cfg.websocket.max_size == 2048
        assert cfg.websocket.max_queue == 8
        assert cfg.log.max_bytes == 4096
        assert cfg.log.backup_count == 3

    def test_unlimited_sizes_stay_none(self):
        cfg = Config({"websocket": {"max_size": None, "max_queue": None}}).validate()
        assert cfg.websocket.max_size is None
        assert cfg.websocket.max_queue is None

    def test_non_numeric_size_is_rejected(self):
        with pytest.raises(ValueError):
            Config({"log": {"backup_count": "many"}})
