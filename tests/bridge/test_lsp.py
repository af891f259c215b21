"""Tests for LSP framing and the JSON-RPC client."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from sqldeck.bridge.lsp import LspClient, encode_message, read_message
from sqldeck.errors import AdvisoryError


class _Writer:
    """Collects framed output in place of an asyncio.StreamWriter."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self._closing = False

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        self._closing = True

    async def messages(self) -> list[dict[str, Any]]:
        reader = asyncio.StreamReader()
        reader.feed_data(bytes(self.buffer))
        reader.feed_eof()
        decoded = []
        while (message := await read_message(reader)) is not None:
            decoded.append(message)
        return decoded


async def _wait_for_output(writer: _Writer, count: int) -> list[dict[str, Any]]:
    for _ in range(100):
        messages = await writer.messages()
        if len(messages) >= count:
            return messages
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {count} messages, got {len(await writer.messages())}")


@pytest.mark.anyio
async def test_framing_round_trip_and_eof() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(encode_message({"jsonrpc": "2.0", "method": "ping", "params": {"text": "héllo"}}))
    reader.feed_eof()

    assert await read_message(reader) == {"jsonrpc": "2.0", "method": "ping", "params": {"text": "héllo"}}
    assert await read_message(reader) is None


@pytest.mark.anyio
async def test_missing_content_length_is_rejected() -> None:
    reader = asyncio.StreamReader()
    reader.feed_data(b"Content-Type: application/json\r\n\r\n{}")
    reader.feed_eof()

    with pytest.raises(AdvisoryError):
        await read_message(reader)


@pytest.mark.anyio
async def test_request_resolves_with_matching_response() -> None:
    reader, writer = asyncio.StreamReader(), _Writer()
    client = LspClient(reader, writer)  # type: ignore[arg-type]
    client.start()

    pending = asyncio.create_task(client.request("initialize", {"processId": 1}, timeout=5))
    (sent,) = await _wait_for_output(writer, 1)
    reader.feed_data(encode_message({"jsonrpc": "2.0", "id": sent["id"], "result": {"capabilities": {}}}))

    assert await pending == {"capabilities": {}}
    assert sent["method"] == "initialize"
    await client.aclose()


@pytest.mark.anyio
async def test_error_responses_raise() -> None:
    reader, writer = asyncio.StreamReader(), _Writer()
    client = LspClient(reader, writer)  # type: ignore[arg-type]
    client.start()

    pending = asyncio.create_task(client.request("shutdown", timeout=5))
    (sent,) = await _wait_for_output(writer, 1)
    reader.feed_data(
        encode_message({"jsonrpc": "2.0", "id": sent["id"], "error": {"code": -32600, "message": "not ready"}})
    )

    with pytest.raises(AdvisoryError, match="not ready"):
        await pending
    await client.aclose()


@pytest.mark.anyio
async def test_workspace_configuration_is_answered_from_settings() -> None:
    reader, writer = asyncio.StreamReader(), _Writer()
    settings = {"connections": [{"name": "local", "adapter": "json"}]}
    client = LspClient(reader, writer, settings=lambda: settings, section="sqlLanguageServer")  # type: ignore[arg-type]
    client.start()

    reader.feed_data(
        encode_message(
            {
                "jsonrpc": "2.0",
                "id": 7,
                "method": "workspace/configuration",
                "params": {"items": [{"section": "sqlLanguageServer"}, {"section": "editor"}]},
            }
        )
    )
    (answer,) = await _wait_for_output(writer, 1)

    assert answer == {"jsonrpc": "2.0", "id": 7, "result": [settings, None]}
    await client.aclose()


@pytest.mark.anyio
async def test_notifications_reach_subscribers_until_unsubscribed() -> None:
    reader, writer = asyncio.StreamReader(), _Writer()
    client = LspClient(reader, writer)  # type: ignore[arg-type]
    received: list[tuple[str, Any]] = []
    unsubscribe = client.subscribe(lambda method, params: received.append((method, params)))
    client.start()

    diagnostics = {"uri": "file:///query.sql", "diagnostics": []}
    reader.feed_data(encode_message({"jsonrpc": "2.0", "method": "textDocument/publishDiagnostics", "params": diagnostics}))
    for _ in range(100):
        if received:
            break
        await asyncio.sleep(0.01)
    unsubscribe()
    reader.feed_data(encode_message({"jsonrpc": "2.0", "method": "window/logMessage", "params": {"message": "hi"}}))
    await asyncio.sleep(0.05)

    assert received == [("textDocument/publishDiagnostics", diagnostics)]
    await client.aclose()


@pytest.mark.anyio
async def test_end_of_stream_fails_pending_requests() -> None:
    reader, writer = asyncio.StreamReader(), _Writer()
    client = LspClient(reader, writer)  # type: ignore[arg-type]
    client.start()

    pending = asyncio.create_task(client.request("initialize", timeout=5))
    await _wait_for_output(writer, 1)
    reader.feed_eof()

    with pytest.raises(AdvisoryError):
        await pending
    assert client.closed is True
    with pytest.raises(AdvisoryError):
        await client.notify("exit")
    await client.aclose()
    assert writer.is_closing() is True
