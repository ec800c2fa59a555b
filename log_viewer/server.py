"""
WebSocket 推日志行

``/`` 返回一段说明文字，配置的日志路径升级为 WebSocket，其余路径 404。
"""
import asyncio
from http import HTTPStatus
from typing import Optional
from urllib.parse import urlsplit

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.http11 import Request, Response

from .config import Config
from .logger import get_logger
from .session import LogSession
from .tailer import FileTailer

log = get_logger("server")


class LogServer:
    def __init__(self, config: Config):
        self.config = config
        self.endpoint = config.stream.endpoint
        self.log_file = config.stream.log_file
        self._server: Optional[Server] = None

    @property
    def port(self) -> int:
        return next(iter(self._server.sockets)).getsockname()[1]

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = urlsplit(request.path).path
        if path == "/":
            return connection.respond(HTTPStatus.OK, self.config.server.root_message)
        if path != self.endpoint:
            log.info("拒绝请求 %s：路径无效", path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Invalid log path\n")
        if "websocket" not in request.headers.get("Upgrade", "").lower():
            log.warning("WebSocket 升级失败 %s：缺少 Upgrade 头 (%s)", path, connection.remote_address)
            return connection.respond(HTTPStatus.UPGRADE_REQUIRED, "WebSocket upgrade required\n")
        return None

    def make_tailer(self) -> FileTailer:
        t = self.config.tail
        return FileTailer(self.log_file, poll_interval=t.poll_interval, reopen=t.reopen,
                          reopen_timeout=t.reopen_timeout, notify=t.notify, encoding=t.encoding)

    async def handler(self, connection: ServerConnection):
        path = urlsplit(connection.request.path).path
        if path != self.endpoint:
            log.warning("连接路径不匹配，关闭：%s", path)
            await connection.close(1008, "Invalid log path")
            return
        peer = connection.remote_address
        log.info("客户端已连接 %s -> %s (%s)", path, self.log_file, peer)
        session = LogSession(connection, self.make_tailer(),
                             heartbeat_interval=self.config.stream.heartbeat_interval,
                             send_initial=self.config.stream.send_initial)
        try:
            reason = await session.run()
        except Exception as e:
            log.exception("会话异常 %s (%s)：%s", self.log_file, peer, e)
            return
        log.info("客户端会话结束 %s (%s)：%s", self.log_file, peer, reason.value)

    async def start(self) -> Server:
        ws = self.config.websocket
        self._server = await serve(
            self.handler,
            self.config.server.host,
            self.config.server.port,
            process_request=self.process_request,
            origins=ws.origins,
            max_size=ws.max_size,
            max_queue=ws.max_queue,
            write_limit=ws.write_limit,
            # heartbeat is the session's own ping; no library keepalive
            ping_interval=None,
            ping_timeout=None,
            logger=get_logger("websockets"),
        )
        log.info("日志查看服务监听 %s:%d，日志文件：%s",
                 self.config.server.host, self.port, self.log_file)
        return self._server

    async def close(self):
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        log.info("服务已停止")

    async def serve_forever(self, stop: asyncio.Event):
        await self.start()
        try:
            await stop.wait()
            log.info("收到退出信号，正在关闭...")
        finally:
            await self.close()
