"""MCP transports: JSON-RPC clients for capability providers, and the Provider handle."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

import aiohttp

from orchestrator.config import MCPServerConfig
from tools.base_tool import ActionDescriptor

PROTOCOL_VERSION = "2024-11-05"


class MCPTransportError(RuntimeError):
    """Raised when an MCP server cannot be reached or answers with an error."""


@dataclass
class Provider:
    """A connected MCP server and the actions it offered at connect time."""
    name: str
    type: str
    client: "MCPClient"
    actions: tuple[ActionDescriptor, ...] = ()

    @property
    def address(self) -> str:
        return self.client.server.address

    def get_action(self, action_name: str) -> ActionDescriptor | None:
        for action in self.actions:
            if action.name == action_name:
                return action
        return None

    async def call(self, action_name: str, args: dict[str, Any]) -> Any:
        return await self.client.call_tool(action_name, args)

    async def close(self) -> None:
        await self.client.close()


class MCPClient:
    """Base MCP client interface."""

    def __init__(self, server: MCPServerConfig, logger: logging.Logger):
        self.server = server
        self._logger = logger
        self._initialized = False
        self._request_id = 0
        self.timeout: float | None = None

    def set_timeout(self, seconds: float | None) -> None:
        """Bound every subsequent request; ``None`` waits indefinitely."""
        self.timeout = seconds

    async def initialize(self, client_name: str, client_version: str) -> bool:
        if self._initialized:
            return True
        result = await self._request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "clientInfo": {"name": client_name, "version": client_version},
                "capabilities": {},
            },
        )
        if not isinstance(result, dict):
            return False
        await self._notify("notifications/initialized", {})
        self._initialized = True
        server_info = result.get("serverInfo", {})
        self._logger.info(
            "MCP server '%s' initialized (%s, protocol %s)",
            self.server.name,
            server_info.get("name", "unknown") if isinstance(server_info, dict) else "unknown",
            result.get("protocolVersion", "?"),
        )
        return True

    async def list_tools(self) -> list[ActionDescriptor]:
        response = await self._request("tools/list", {})
        tools = response.get("tools", []) if isinstance(response, dict) else []
        descriptors: list[ActionDescriptor] = []
        for tool in tools:
            if not isinstance(tool, dict) or not tool.get("name"):
                continue
            schema = tool.get("inputSchema", {})
            descriptors.append(
                ActionDescriptor(
                    name=str(tool["name"]),
                    description=str(tool.get("description", "") or ""),
                    input_schema=schema if isinstance(schema, dict) else {},
                )
            )
        return descriptors

    async def call_tool(self, tool_name: str, args: dict[str, Any]) -> Any:
        return await self._request(
            "tools/call",
            {"name": tool_name, "arguments": args},
        )

    async def close(self) -> None:
        return None

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        raise NotImplementedError

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        raise NotImplementedError

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _bounded(self, awaitable):
        if self.timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.timeout)


class MCPStdioClient(MCPClient):
    """MCP client over stdio transport."""

    def __init__(self, server: MCPServerConfig, logger: logging.Logger):
        super().__init__(server, logger)
        self._proc: asyncio.subprocess.Process | None = None
        self._lock = asyncio.Lock()

    async def _ensure_process(self) -> None:
        if self._proc and self._proc.returncode is None:
            return
        if not self.server.command:
            raise MCPTransportError(f"MCP stdio server '{self.server.name}' missing command")
        self._proc = await asyncio.create_subprocess_exec(
            self.server.command,
            *self.server.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        async with self._lock:
            await self._ensure_process()
            if not self._proc or not self._proc.stdin or not self._proc.stdout:
                raise MCPTransportError("MCP stdio process not available")
            req_id = self._next_id()
            payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}
            self._proc.stdin.write((json.dumps(payload) + "\n").encode("utf-8"))
            await self._proc.stdin.drain()
            return await self._bounded(self._read_response(req_id))

    async def _read_response(self, req_id: int) -> Any:
        while True:
            line = await self._proc.stdout.readline()
            if not line:
                raise MCPTransportError("MCP stdio server closed connection")
            try:
                data = json.loads(line.decode("utf-8"))
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict) or data.get("id") != req_id:
                continue
            if "error" in data:
                raise MCPTransportError(_format_rpc_error(data["error"]))
            return data.get("result", {})

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        await self._ensure_process()
        if not self._proc or not self._proc.stdin:
            return
        payload = {"jsonrpc": "2.0", "method": method, "params": params}
        self._proc.stdin.write((json.dumps(payload) + "\n").encode("utf-8"))
        await self._proc.stdin.drain()

    async def close(self) -> None:
        if self._proc and self._proc.returncode is None:
            self._proc.terminate()
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=3)
            except asyncio.TimeoutError:
                self._proc.kill()


class MCPSseClient(MCPClient):
    """
    MCP client over SSE transport.

    Listens on ``http://host:port/sse``; the server announces where to POST
    requests with an ``endpoint`` event. Responses arrive either as SSE
    ``message`` events or directly in the POST reply.
    """

    endpoint_wait = 2.0

    def __init__(self, server: MCPServerConfig, logger: logging.Logger):
        super().__init__(server, logger)
        self._session: aiohttp.ClientSession | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._listen_task: asyncio.Task | None = None
        self._endpoint: str | None = None
        self._endpoint_ready = asyncio.Event()
        self._listen_error: Exception | None = None
        self._lock = asyncio.Lock()

    @property
    def base_url(self) -> str:
        return f"http://{self.server.host}:{self.server.port}"

    @property
    def sse_url(self) -> str:
        return f"{self.base_url}/sse"

    async def _ensure_session(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None))
        if self._listen_task is None:
            self._listen_task = asyncio.create_task(self._listen())

    async def _send_url(self) -> str:
        if not self._endpoint_ready.is_set():
            try:
                await asyncio.wait_for(self._endpoint_ready.wait(), timeout=self.endpoint_wait)
            except asyncio.TimeoutError:
                pass
        if self._listen_error is not None:
            raise MCPTransportError(
                f"MCP SSE server '{self.server.name}' unreachable at {self.sse_url}: {self._listen_error}"
            )
        return self._endpoint or f"{self.base_url}/message"

    async def _listen(self) -> None:
        assert self._session is not None
        try:
            async with self._session.get(self.sse_url, headers={"Accept": "text/event-stream"}) as resp:
                if resp.status != 200:
                    raise MCPTransportError(f"SSE connect failed (HTTP {resp.status})")
                event = "message"
                data_lines: list[str] = []
                async for raw_line in resp.content:
                    line = raw_line.decode("utf-8").rstrip("\r\n")
                    if not line:
                        if data_lines:
                            self._handle_event(event, "\n".join(data_lines))
                        event, data_lines = "message", []
                    elif line.startswith("event:"):
                        event = line[len("event:"):].strip()
                    elif line.startswith("data:"):
                        data_lines.append(line[len("data:"):].strip())
            raise MCPTransportError("SSE stream closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._listen_error = exc
            self._endpoint_ready.set()
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(MCPTransportError(str(exc)))
            self._pending.clear()

    def _handle_event(self, event: str, payload: str) -> None:
        if event == "endpoint":
            self._endpoint = urljoin(self.base_url + "/", payload)
            self._endpoint_ready.set()
            return
        if payload == "[DONE]":
            return
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            return
        if isinstance(data, dict):
            self._resolve(data)

    def _resolve(self, data: dict) -> None:
        future = self._pending.pop(data.get("id"), None)
        if future and not future.done():
            if "error" in data:
                future.set_exception(MCPTransportError(_format_rpc_error(data["error"])))
            else:
                future.set_result(data.get("result", {}))

    async def _request(self, method: str, params: dict[str, Any]) -> Any:
        await self._ensure_session()
        assert self._session is not None
        req_id = self._next_id()
        payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params}
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending[req_id] = future
        try:
            async with self._lock:
                await self._post(payload)
            return await self._bounded(future)
        finally:
            self._pending.pop(req_id, None)

    async def _notify(self, method: str, params: dict[str, Any]) -> None:
        await self._ensure_session()
        payload = {"jsonrpc": "2.0", "method": method, "params": params}
        async with self._lock:
            await self._post(payload)

    async def _post(self, payload: dict) -> None:
        url = await self._send_url()
        async with self._session.post(url, json=payload) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise MCPTransportError(f"POST {url} failed (HTTP {resp.status}): {body}")
            if resp.content_type == "application/json":
                data = await resp.json()
                if isinstance(data, dict) and "id" in data:
                    self._resolve(data)

    async def close(self) -> None:
        if self._listen_task:
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
            self._listen_task = None
        if self._session:
            await self._session.close()
            self._session = None


def default_client_factory(server: MCPServerConfig, logger: logging.Logger) -> MCPClient:
    if server.transport == "stdio":
        return MCPStdioClient(server, logger)
    return MCPSseClient(server, logger)


def format_result(result: Any) -> str:
    if isinstance(result, (dict, list)):
        return json.dumps(result, indent=2)
    return str(result)


def _format_rpc_error(error: Any) -> str:
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message", "unknown error")
        return f"{message} (code {code})" if code is not None else str(message)
    return str(error)
