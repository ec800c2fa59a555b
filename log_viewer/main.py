#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
log_viewer 日志实时查看后端
- 通过 WebSocket 推送单个日志文件的实时尾部
- 支持日志轮转/截断、文件尚未创建时等待
- 30 秒心跳，客户端断开立即释放文件句柄
"""

import asyncio
import signal
import sys

import yaml

from .config import CONFIG_FILE, Config
from .logger import get_logger, setup_logging
from .server import LogServer

logger = get_logger("main")


async def main(cfg: Config):
    setup_logging(cfg.log)
    logger.info("log_viewer 启动，日志文件：%s，路径：%s", cfg.stream.log_file, cfg.stream.endpoint)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    server = LogServer(cfg)
    try:
        await server.serve_forever(stop)
    except OSError as e:
        logger.critical("服务启动失败，无法监听 %s:%s：%s", cfg.server.host, cfg.server.port, e)
        raise SystemExit(1)


def run(path: str = CONFIG_FILE):
    try:
        cfg = Config.load(path).validate()
    except (ValueError, yaml.YAMLError) as e:
        logger.critical("配置无效 %s：%s", path, e)
        sys.exit(1)
    asyncio.run(main(cfg))


if __name__ == "__main__":
    run()
