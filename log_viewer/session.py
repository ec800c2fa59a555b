"""
One WebSocket client watching the log.

``LogSession.run`` drives ``STARTING -> STREAMING -> CLOSING``. While
streaming it waits on three things at once: the next tailed line, the
heartbeat task (which only finishes when a ping cannot be written) and the
connection closing. Whichever is ready first decides what happens next.
"""

import asyncio
import enum
from typing import Optional

from websockets.exceptions import ConnectionClosed

from .frames import encode_blob, encode_line
from .logger import get_logger, now_str
from .tailer import FileTailer, LogLine

log = get_logger("session")

HEARTBEAT_INTERVAL = 30.0


class SessionState(enum.Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    CLOSING = "closing"
    CLOSED = "closed"


class CloseReason(enum.Enum):
    TAIL_CLOSED = "tail closed"
    WRITE_FAILED = "write failed"
    HEARTBEAT_FAILED = "heartbeat failed"
    CLIENT_GONE = "client disconnected"
    SERVER_SHUTDOWN = "server shutdown"


async def _next_line(lines) -> Optional[LogLine]:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


async def _cancel(task: Optional[asyncio.Task]):
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class LogSession:
    def __init__(self, connection, tailer: FileTailer,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 send_initial: bool = True):
        self.connection = connection
        self.tailer = tailer
        self.heartbeat_interval = heartbeat_interval
        self.send_initial = send_initial
        self.state = SessionState.STARTING
        self.reason: Optional[CloseReason] = None
        self.frames_sent = 0
        self.heartbeats_sent = 0
        self._heartbeat: Optional[asyncio.Task] = None
        self._lines = None

    @property
    def path(self) -> str:
        return str(self.tailer.path)

    async def run(self) -> CloseReason:
        try:
            await self._start()
            self.state = SessionState.STREAMING
            self.reason = await self._stream()
        except asyncio.CancelledError:
            self.reason = CloseReason.SERVER_SHUTDOWN
            raise
        finally:
            await self._close()
        return self.reason

    async def _start(self):
        # the snapshot also parks the tail cursor, so it runs even when not sent
        try:
            content = self.tailer.snapshot()
        except OSError as e:
            log.error("读取初始日志内容失败 %s：%s", self.path, e)
            content = b""
        if content and self.send_initial:
            try:
                await self.connection.send(encode_blob(content, self.tailer.encoding))
                self.frames_sent += 1
            except (ConnectionClosed, OSError) as e:
                log.warning("发送初始日志内容失败 %s：%s", self.path, e)
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            # pong is never awaited, a silent client is not a dead one
            payload = f"{now_str()} #{self.heartbeats_sent + 1}"
            try:
                await self.connection.ping(payload)
            except (ConnectionClosed, OSError) as e:
                log.warning("心跳发送失败 %s：%s", self.path, e)
                return
            self.heartbeats_sent += 1

    async def _drain_incoming(self):
        # client messages are discarded; reading them is what surfaces the close frame
        try:
            async for _ in self.connection:
                pass
        except ConnectionClosed:
            pass

    async def _stream(self) -> CloseReason:
        self._lines = self.tailer.lines()
        closed = asyncio.create_task(self._drain_incoming())
        pending_line: Optional[asyncio.Task] = None
        try:
            while True:
                if pending_line is None:
                    pending_line = asyncio.create_task(_next_line(self._lines))
                done, _ = await asyncio.wait(
                    {pending_line, self._heartbeat, closed},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if closed in done:
                    log.info("客户端已断开 %s", self.path)
                    return CloseReason.CLIENT_GONE
                if self._heartbeat in done:
                    err = self._heartbeat.exception()
                    if err is not None:
                        log.error("心跳任务异常 %s：%r", self.path, err, exc_info=err)
                    return CloseReason.HEARTBEAT_FAILED

                line = pending_line.result()
                pending_line = None
                if line is None:
                    log.warning("追踪通道已关闭，日志文件可能已被删除或无法读取：%s", self.path)
                    return CloseReason.TAIL_CLOSED
                if line.err is not None:
                    log.warning("追踪读取异常 %s：%s", self.path, line.err)
                    if not line.text:
                        continue
                try:
                    await self.connection.send(encode_line(line.text))
                except (ConnectionClosed, OSError) as e:
                    log.warning("WebSocket 写入失败 %s：%s", self.path, e)
                    return CloseReason.WRITE_FAILED
                self.frames_sent += 1
        finally:
            await _cancel(pending_line)
            await _cancel(closed)

    async def _close(self):
        self.state = SessionState.CLOSING
        await _cancel(self._heartbeat)
        self.tailer.close()
        if self._lines is not None:
            await self._lines.aclose()
        try:
            await self.connection.close()
        except (ConnectionClosed, OSError) as e:
            log.debug("关闭连接 %s：%s", self.path, e)
        self.state = SessionState.CLOSED
        reason = self.reason.value if self.reason else "startup error"
        log.info("会话结束 %s（%s），已发送 %d 帧、%d 次心跳",
                 self.path, reason, self.frames_sent, self.heartbeats_sent)
