"""
Follow one log file like ``tail -F``.

The tailer survives the file being missing, replaced (new inode at the same
path) or truncated in place. Internally it cycles through
``OPEN -> WATCHING -> REOPEN_PENDING -> OPEN``; the generator returned by
``lines()`` only ends when the file is gone for good or ``close()`` is called.
"""

import asyncio
import enum
import os
import time
from pathlib import Path
from typing import AsyncIterator, BinaryIO, NamedTuple, Optional, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .logger import get_logger

log = get_logger("tailer")


class TailState(enum.Enum):
    OPEN = "open"
    WATCHING = "watching"
    REOPEN_PENDING = "reopen_pending"
    CLOSED = "closed"


class LogLine(NamedTuple):
    text: str
    err: Optional[Exception] = None


class _ChangeHandler(FileSystemEventHandler):
    """Wakes the tailer up as soon as watchdog sees the target change."""

    def __init__(self, target: Path, loop: asyncio.AbstractEventLoop, wakeup: asyncio.Event):
        super().__init__()
        self.target = str(target)
        self.loop = loop
        self.wakeup = wakeup

    def on_any_event(self, event: FileSystemEvent):
        if self.target in (event.src_path, getattr(event, "dest_path", "")):
            self.loop.call_soon_threadsafe(self.wakeup.set)


class FileTailer:
    def __init__(self, path, poll_interval: float = 0.25, reopen: bool = True,
                 reopen_timeout: Optional[float] = None, notify: bool = False,
                 encoding: str = "utf-8"):
        self.path = Path(path)
        self.poll_interval = poll_interval
        self.reopen = reopen
        self.reopen_timeout = reopen_timeout
        self.notify = notify
        self.encoding = encoding
        self.state = TailState.REOPEN_PENDING
        self.offset = 0
        self._file: Optional[BinaryIO] = None
        self._ident: Optional[Tuple[int, int]] = None
        self._partial = b""
        self._closed = False
        self._wakeup: Optional[asyncio.Event] = None
        self._observer = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _open(self) -> bool:
        try:
            f = open(self.path, "rb")
        except FileNotFoundError:
            return False
        st = os.fstat(f.fileno())
        self._file = f
        self._ident = (st.st_dev, st.st_ino)
        self.offset = 0
        self._partial = b""
        self.state = TailState.OPEN
        log.debug("已打开 %s (inode=%s)", self.path, st.st_ino)
        return True

    def _release(self):
        if self._file is not None:
            self._file.close()
            self._file = None
        self._ident = None

    def snapshot(self) -> bytes:
        """Read everything already in the file and park the cursor at its end.

        A missing file yields ``b""``; the cursor then waits for it to appear
        and starts from its first byte. Other ``OSError``s propagate.
        """
        if self._file is None and not self._open():
            log.info("日志文件暂不存在，等待创建：%s", self.path)
            return b""
        data = self._file.read()
        self.offset += len(data)
        return data

    def _decode(self, raw: bytes) -> LogLine:
        try:
            return LogLine(raw.decode(self.encoding))
        except UnicodeDecodeError as e:
            return LogLine(raw.decode(self.encoding, errors="replace"), e)

    def _split(self, chunk: bytes):
        *complete, self._partial = (self._partial + chunk).split(b"\n")
        return [self._decode(raw) for raw in complete]

    def _drain(self):
        """Collect what is left in the current handle before it is dropped."""
        out = []
        try:
            chunk = self._file.read()
        except OSError as e:
            out.append(LogLine("", e))
            chunk = b""
        if chunk:
            self.offset += len(chunk)
            out.extend(self._split(chunk))
        if self._partial:
            out.append(self._decode(self._partial))
            self._partial = b""
        return out

    def _identity_changed(self) -> Tuple[bool, Optional[os.stat_result]]:
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return True, None
        return (st.st_dev, st.st_ino) != self._ident, st

    async def _wait(self):
        if self._wakeup is None:
            await asyncio.sleep(self.poll_interval)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), self.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    def _start_notifier(self):
        if not self.notify or self._observer is not None:
            return
        parent = self.path.parent
        if not parent.is_dir():
            log.warning("目录不存在，改为轮询：%s", parent)
            return
        self._wakeup = asyncio.Event()
        handler = _ChangeHandler(self.path, asyncio.get_running_loop(), self._wakeup)
        self._observer = Observer()
        self._observer.schedule(handler, str(parent), recursive=False)
        self._observer.start()

    def _gave_up(self, missing_since: float) -> bool:
        if self.reopen_timeout is None:
            return False
        return time.monotonic() - missing_since > self.reopen_timeout

    async def lines(self) -> AsyncIterator[LogLine]:
        self._start_notifier()
        missing_since = time.monotonic()
        try:
            while not self._closed:
                if self._file is None:
                    try:
                        opened = self._open()
                    except OSError as e:
                        yield LogLine("", e)
                        opened = False
                    if not opened:
                        if self._gave_up(missing_since):
                            log.warning("%s 超过 %.1f 秒未重新出现，停止追踪",
                                        self.path, self.reopen_timeout)
                            return
                        await self._wait()
                        continue
                self.state = TailState.WATCHING

                try:
                    chunk = self._file.read()
                except OSError as e:
                    yield LogLine("", e)
                    await self._wait()
                    continue
                if chunk:
                    self.offset += len(chunk)
                    for line in self._split(chunk):
                        yield line
                    continue

                try:
                    changed, st = self._identity_changed()
                except OSError as e:
                    yield LogLine("", e)
                    await self._wait()
                    continue
                if changed:
                    for line in self._drain():
                        yield line
                    self._release()
                    if not self.reopen:
                        log.info("%s 已被%s，停止追踪", self.path, "删除" if st is None else "替换")
                        return
                    log.info("检测到日志轮转，重新打开：%s", self.path)
                    self.state = TailState.REOPEN_PENDING
                    missing_since = time.monotonic()
                    continue
                if st.st_size < self.offset:
                    log.info("检测到日志被截断，从头读取：%s", self.path)
                    self._file.seek(0)
                    self.offset = 0
                    self._partial = b""
                    continue
                await self._wait()
        finally:
            self.close()

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.state = TailState.CLOSED
        self._release()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
