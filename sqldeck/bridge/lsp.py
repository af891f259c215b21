"""Minimal JSON-RPC 2.0 client with LSP `Content-Length` framing."""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Mapping

from ..errors import AdvisoryError

LOG = logging.getLogger(__name__)

NotificationListener = Callable[[str, Any], None]
SettingsProvider = Callable[[], Mapping[str, Any]]

_HEADER_LENGTH = "content-length"


def encode_message(message: Mapping[str, Any]) -> bytes:
    body = json.dumps(message, separators=(",", ":")).encode("utf-8")
    return f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body


async def read_message(reader: asyncio.StreamReader) -> dict[str, Any] | None:
    """Read one framed message; None on a clean end of stream."""

    length: int | None = None
    while True:
        line = await reader.readline()
        if not line:
            return None
        header = line.decode("ascii", errors="replace").strip()
        if not header:
            break
        name, _, value = header.partition(":")
        if name.strip().lower() == _HEADER_LENGTH:
            length = int(value.strip())
    if length is None:
        raise AdvisoryError("Advisory message is missing Content-Length.")
    body = await reader.readexactly(length)
    return json.loads(body.decode("utf-8"))


class LspClient:
    """Talks to one advisory process over its stdio pipes."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        settings: SettingsProvider | None = None,
        section: str = "sqlLanguageServer",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._settings = settings or dict
        self._section = section
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._listeners: set[NotificationListener] = set()
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop(), name="sqldeck-lsp-reader")

    async def request(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any:
        """Send a request and wait for its result."""

        if self._closed:
            raise AdvisoryError("Advisory connection is closed.")
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self._send({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
            return await asyncio.wait_for(future, timeout)
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any = None) -> None:
        if self._closed:
            raise AdvisoryError("Advisory connection is closed.")
        await self._send({"jsonrpc": "2.0", "method": method, "params": params})

    def subscribe(self, listener: NotificationListener) -> Callable[[], None]:
        """Receive server notifications as `(method, params)`; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def aclose(self) -> None:
        self._closed = True
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        self._fail_pending(AdvisoryError("Advisory connection closed."))
        if not self._writer.is_closing():
            self._writer.close()

    async def _send(self, message: Mapping[str, Any]) -> None:
        try:
            self._writer.write(encode_message(message))
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            raise AdvisoryError(f"Unable to write to advisory process: {exc}") from exc

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await read_message(self._reader)
                if message is None:
                    break
                await self._dispatch(message)
        except (AdvisoryError, ValueError, asyncio.IncompleteReadError) as exc:
            LOG.warning("Advisory stream broken: %s", exc)
        finally:
            self._closed = True
            self._fail_pending(AdvisoryError("Advisory process closed its output."))

    async def _dispatch(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        if method is None:
            future = self._pending.get(message.get("id"))  # type: ignore[arg-type]
            if future is None or future.done():
                return
            error = message.get("error")
            if error:
                future.set_exception(AdvisoryError(str(error.get("message", error))))
            else:
                future.set_result(message.get("result"))
            return
        params = message.get("params")
        if "id" in message:
            await self._send({"jsonrpc": "2.0", "id": message["id"], "result": self._answer(method, params)})
            return
        self._log_notification(method, params)
        for listener in tuple(self._listeners):
            try:
                listener(method, params)
            except Exception:
                LOG.exception("Advisory notification listener failed", extra={"method": method})

    def _answer(self, method: str, params: Any) -> Any:
        if method != "workspace/configuration":
            return None
        items = (params or {}).get("items", [])
        settings = dict(self._settings())
        return [settings if item.get("section") == self._section else None for item in items]

    def _log_notification(self, method: str, params: Any) -> None:
        if method in {"window/logMessage", "window/showMessage"}:
            LOG.debug("Advisory: %s", (params or {}).get("message", ""))
        elif method == f"{self._section}.error":
            LOG.warning("Advisory error: %s", params)

    def _fail_pending(self, error: AdvisoryError) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()


__all__ = ["LspClient", "encode_message", "read_message"]
