import os
from typing import Any, Dict, List, Optional

import pytz
import yaml

from .logger import get_logger

log = get_logger("config")

CONFIG_FILE = os.environ.get("LOG_VIEWER_CONFIG", "config/config.yaml")

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _optional_int(value) -> Optional[int]:
    return None if value is None else int(value)


class ServerConfig:
    def __init__(self, raw: Dict[str, Any]):
        self.host: str = raw.get("host", "0.0.0.0")
        self.port: int = int(raw.get("port", 1111))
        self.root_message: str = raw.get(
            "root_message",
            "Log viewer backend is running. Connect to /ws/uwsgi_log via WebSocket for logs.",
        )


class StreamConfig:
    def __init__(self, raw: Dict[str, Any]):
        self.endpoint: str = raw.get("endpoint", "/ws/uwsgi_log")
        self.log_file: str = raw.get("log_file", "/var/log/uwsgi/uwsgi.log")
        self.heartbeat_interval: float = float(raw.get("heartbeat_interval", 30))
        self.send_initial: bool = bool(raw.get("send_initial", True))


class TailConfig:
    def __init__(self, raw: Dict[str, Any]):
        self.poll_interval: float = float(raw.get("poll_interval", 0.25))
        self.reopen: bool = bool(raw.get("reopen", True))
        timeout = raw.get("reopen_timeout")
        self.reopen_timeout: Optional[float] = None if timeout is None else float(timeout)
        self.notify: bool = bool(raw.get("notify", False))
        self.encoding: str = raw.get("encoding", "utf-8")


class WebSocketConfig:
    """Options handed to the WebSocket server at construction.

    ``origins`` of ``None`` accepts any ``Origin`` header.
    """

    def __init__(self, raw: Dict[str, Any]):
        self.max_size: Optional[int] = _optional_int(raw.get("max_size", 1024 * 1024))
        self.max_queue: Optional[int] = _optional_int(raw.get("max_queue", 16))
        self.write_limit: int = int(raw.get("write_limit", 32 * 1024))
        self.origins: Optional[List[str]] = raw.get("origins")


class LogConfig:
    def __init__(self, raw: Dict[str, Any]):
        self.level: str = str(raw.get("level", "INFO")).upper()
        self.file_path: Optional[str] = raw.get("file_path")
        self.max_bytes: int = int(raw.get("max_bytes", 10 * 1024 * 1024))
        self.backup_count: int = int(raw.get("backup_count", 5))
        self.timezone: str = raw.get("timezone", "Asia/Shanghai")


class Config:
    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        raw = raw or {}
        self.server = ServerConfig(raw.get("server") or {})
        self.stream = StreamConfig(raw.get("stream") or {})
        self.tail = TailConfig(raw.get("tail") or {})
        self.websocket = WebSocketConfig(raw.get("websocket") or {})
        self.log = LogConfig(raw.get("log") or {})

    @classmethod
    def load(cls, path: str = CONFIG_FILE) -> "Config":
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError:
            log.warning("配置文件不存在：%s，使用默认配置", path)
            raw = {}
        if not isinstance(raw, dict):
            raise ValueError(f"配置文件格式错误：{path}")
        return cls(raw)

    def validate(self):
        if not self.stream.endpoint.startswith("/"):
            raise ValueError(f"stream.endpoint 必须以 / 开头：{self.stream.endpoint!r}")
        if self.stream.endpoint == "/":
            raise ValueError("stream.endpoint 不能是根路径")
        if not os.path.isabs(self.stream.log_file):
            raise ValueError(f"stream.log_file 必须是绝对路径：{self.stream.log_file!r}")
        if self.stream.heartbeat_interval <= 0:
            raise ValueError("stream.heartbeat_interval 必须大于 0")
        if self.tail.poll_interval <= 0:
            raise ValueError("tail.poll_interval 必须大于 0")
        if self.tail.reopen_timeout is not None and self.tail.reopen_timeout < 0:
            raise ValueError("tail.reopen_timeout 不能为负数")
        for name, value in (("websocket.max_size", self.websocket.max_size),
                            ("websocket.max_queue", self.websocket.max_queue)):
            if value is not None and value <= 0:
                raise ValueError(f"{name} 必须大于 0 或为 null")
        if self.websocket.write_limit < 0:
            raise ValueError("websocket.write_limit 不能为负数")
        if self.log.max_bytes < 0 or self.log.backup_count < 0:
            raise ValueError("log.max_bytes 与 log.backup_count 不能为负数")
        if not 0 <= self.server.port <= 65535:
            raise ValueError(f"server.port 超出范围：{self.server.port}")
        if self.log.level not in LEVELS:
            raise ValueError(f"log.level 只能是 {', '.join(LEVELS)} 之一")
        if self.log.timezone not in pytz.all_timezones_set:
            raise ValueError(f"未知的 log.timezone：{self.log.timezone}")
        return self
