"""Provider registry: connect MCP servers and map action names to their owners."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from orchestrator.config import MCPConfig, MCPServerConfig
from orchestrator.exceptions import ActionNotFound, NoProvidersError, ProviderConnectionError
from orchestrator.logs import build_file_logger
from tools.base_tool import ActionDescriptor
from tools.mcp_bridge import MCPClient, Provider, default_client_factory

QUALIFIER = "."


@dataclass
class ConnectReport:
    """Outcome of connecting every configured server at startup."""
    connected: list[Provider] = field(default_factory=list)
    failures: list[tuple[MCPServerConfig, ProviderConnectionError]] = field(default_factory=list)


class ProviderRegistry:
    """
    Holds the connected providers and a flat action-name index.

    When two providers offer the same action name, the one registered last
    owns the bare name. Every action also stays reachable as
    ``<provider>.<action>``. The index is only written during startup.
    """

    def __init__(
        self,
        config: MCPConfig,
        log_dir: str,
        client_factory: Callable[[MCPServerConfig, logging.Logger], MCPClient] | None = None,
    ):
        self.config = config
        self._providers: dict[str, Provider] = {}
        self._action_map: dict[str, str] = {}
        self._client_factory = client_factory or default_client_factory
        self._logger = build_file_logger(f"mcp_bridge.{id(self)}", log_dir, "mcp_bridge.log")

    # ── Startup ──────────────────────────────────────────────────────

    async def connect(self, server: MCPServerConfig) -> Provider:
        """Handshake with one server and fetch its actions once."""
        client = self._client_factory(server, self._logger)
        client.set_timeout(self.config.handshake_timeout)
        try:
            actions = await asyncio.wait_for(
                self._handshake(client),
                timeout=self.config.handshake_timeout,
            )
        except Exception as exc:
            await self._close_quietly(client)
            if isinstance(exc, asyncio.TimeoutError):
                reason = f"no answer within {self.config.handshake_timeout:g}s"
            else:
                reason = str(exc) or type(exc).__name__
            self._logger.warning("MCP server '%s' at %s failed to connect: %s", server.name, server.address, reason)
            raise ProviderConnectionError(
                f"Failed to initialize connection to '{server.name}' at {server.address}: {reason}"
            ) from exc

        client.set_timeout(None)
        provider = Provider(name=server.name, type=server.type, client=client, actions=tuple(actions))
        self._logger.info("MCP server '%s' connected with %d tools", server.name, len(actions))
        return provider

    async def _handshake(self, client: MCPClient) -> list[ActionDescriptor]:
        if not await client.initialize(self.config.client_name, self.config.client_version):
            raise ProviderConnectionError("initialize handshake was rejected")
        return await client.list_tools()

    def register(self, provider: Provider) -> None:
        """Add a provider and (over)write the index entries for its actions."""
        if provider.name in self._providers:
            raise ValueError(f"A provider named '{provider.name}' is already registered")
        self._providers[provider.name] = provider
        for action in provider.actions:
            previous = self._action_map.get(action.name)
            if previous is not None and previous != provider.name:
                self._logger.warning(
                    "Tool '%s' from '%s' shadows the one from '%s'", action.name, provider.name, previous
                )
            self._action_map[action.name] = provider.name

    async def connect_all(self, servers: Iterable[MCPServerConfig] | None = None) -> ConnectReport:
        """Connect every server in order; failures are skipped, never retried."""
        report = ConnectReport()
        servers = list(self.config.servers if servers is None else servers)
        for server in servers:
            if server.name in self._providers:
                error = ProviderConnectionError(f"Duplicate server name '{server.name}'")
                self._logger.warning("%s", error)
                report.failures.append((server, error))
                continue
            try:
                provider = await self.connect(server)
            except ProviderConnectionError as e:
                report.failures.append((server, e))
                continue
            self.register(provider)
            report.connected.append(provider)

        if not self._providers:
            self._logger.error("No MCP servers could be connected (%d configured)", len(servers))
            raise NoProvidersError(
                "No servers could be connected. Please check your server configurations.",
                failures=report.failures,
            )
        return report

    async def close(self) -> None:
        for provider in self._providers.values():
            await self._close_quietly(provider.client)
        self._providers.clear()
        self._action_map.clear()

    async def _close_quietly(self, client: MCPClient) -> None:
        try:
            await client.close()
        except Exception as exc:
            self._logger.warning("Error while closing MCP server '%s': %s", client.server.name, exc)

    # ── Lookup ───────────────────────────────────────────────────────

    def resolve(self, name: str) -> Provider:
        """Return the provider that owns ``name`` or raise ActionNotFound."""
        return self.resolve_action(name)[0]

    def resolve_action(self, name: str) -> tuple[Provider, ActionDescriptor]:
        """Return the owning provider and the action as that provider names it."""
        owner = self._action_map.get(name)
        if owner is not None:
            provider = self._providers[owner]
            return provider, provider.get_action(name)

        provider_name, sep, action_name = name.partition(QUALIFIER)
        provider = self._providers.get(provider_name) if sep else None
        if provider is not None:
            action = provider.get_action(action_name)
            if action is not None:
                return provider, action
        raise ActionNotFound(name)

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    @property
    def action_names(self) -> list[str]:
        return list(self._action_map)

    def owner_of(self, name: str) -> str | None:
        return self._action_map.get(name)

    def action_descriptors(self) -> list[ActionDescriptor]:
        """One descriptor per bare name, taken from the provider that owns it."""
        return [self._providers[owner].get_action(name) for name, owner in self._action_map.items()]
