"""
GitHub credential resolution.

Strategies run in a fixed order and the first non-empty token wins:

1. ``host-session``: an editor-provided authentication session
2. ``external-cli``: ``gh auth token``
3. ``explicit-config``: the token configured on the source

The outcome (including "no token") is memoized for the lifetime of the
resolver. Call :meth:`CredentialResolver.reset` to resolve again.
"""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Literal, Protocol

from bundle_registry.core.logging.logger import get_logger, redact_token

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)

AuthMethod = Literal["host-session", "external-cli", "explicit-config", "none"]

GITHUB_PROVIDER_ID = "github"
GITHUB_SCOPES: tuple[str, ...] = ("repo",)
DEFAULT_CLI_COMMAND: tuple[str, ...] = ("gh", "auth", "token")


class Session(Protocol):
    access_token: str


class SessionProvider(Protocol):
    """Host editor authentication surface."""

    async def get_session(
        self,
        provider_id: str,
        scopes: Sequence[str],
        *,
        create_if_none: bool = False,
        silent: bool = False,
    ) -> Session | None: ...


class CredentialStrategy(Protocol):
    method: AuthMethod

    async def get_token(self) -> str | None: ...


@dataclass(frozen=True, slots=True)
class CredentialState:
    token: str | None
    method: AuthMethod


class ResolverPhase(Enum):
    UNRESOLVED = "unresolved"
    TRYING = "trying"
    RESOLVED = "resolved"
    EXHAUSTED = "exhausted"


class HostSessionStrategy:
    method: AuthMethod = "host-session"

    def __init__(
        self,
        provider: SessionProvider,
        *,
        interactive: bool,
        provider_id: str = GITHUB_PROVIDER_ID,
        scopes: Sequence[str] = GITHUB_SCOPES,
    ) -> None:
        self._provider = provider
        self._interactive = interactive
        self._provider_id = provider_id
        self._scopes = list(scopes)

    async def get_token(self) -> str | None:
        session = await self._provider.get_session(
            self._provider_id,
            self._scopes,
            create_if_none=self._interactive,
            silent=not self._interactive,
        )
        if session is None:
            return None
        return session.access_token or None


class CliTokenStrategy:
    method: AuthMethod = "external-cli"

    def __init__(
        self,
        command: Sequence[str] = DEFAULT_CLI_COMMAND,
        timeout: float = 5.0,
    ) -> None:
        self._command = list(command)
        self._timeout = timeout

    def _run(self) -> str | None:
        try:
            result = subprocess.run(
                self._command,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            logger.debug("Credential CLI unavailable", data={"error": str(exc)})
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    async def get_token(self) -> str | None:
        return await asyncio.to_thread(self._run)


class ExplicitTokenStrategy:
    method: AuthMethod = "explicit-config"

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def get_token(self) -> str | None:
        if self._token is None:
            return None
        return self._token.strip() or None


class CredentialResolver:
    def __init__(self, strategies: Sequence[CredentialStrategy]) -> None:
        self._strategies = list(strategies)
        self._state: CredentialState | None = None
        self.phase = ResolverPhase.UNRESOLVED
        self.attempt_index: int | None = None

    @classmethod
    def for_github(
        cls,
        *,
        session_provider: SessionProvider | None = None,
        interactive: bool = False,
        explicit_token: str | None = None,
        cli_command: Sequence[str] = DEFAULT_CLI_COMMAND,
        cli_timeout: float = 5.0,
    ) -> CredentialResolver:
        strategies: list[CredentialStrategy] = []
        if session_provider is not None:
            strategies.append(HostSessionStrategy(session_provider, interactive=interactive))
        strategies.append(CliTokenStrategy(cli_command, cli_timeout))
        strategies.append(ExplicitTokenStrategy(explicit_token))
        return cls(strategies)

    @property
    def state(self) -> CredentialState | None:
        return self._state

    @property
    def method(self) -> AuthMethod | None:
        return self._state.method if self._state else None

    async def resolve(self) -> CredentialState:
        if self._state is not None:
            return self._state

        for index, strategy in enumerate(self._strategies):
            self.phase = ResolverPhase.TRYING
            self.attempt_index = index
            try:
                token = await strategy.get_token()
            except Exception as exc:  # noqa: BLE001
                logger.debug(
                    "Credential strategy failed",
                    data={"method": strategy.method, "error": str(exc)},
                )
                continue
            if token:
                self._state = CredentialState(token=token, method=strategy.method)
                self.phase = ResolverPhase.RESOLVED
                logger.debug(
                    "Resolved GitHub credentials",
                    data={"method": strategy.method, "token": redact_token(token)},
                )
                return self._state

        logger.warning(
            "No GitHub credentials available; continuing unauthenticated",
            data={"attempted": [strategy.method for strategy in self._strategies]},
        )
        self._state = CredentialState(token=None, method="none")
        self.phase = ResolverPhase.EXHAUSTED
        return self._state

    async def resolve_token(self) -> str | None:
        return (await self.resolve()).token

    def reset(self) -> None:
        self._state = None
        self.phase = ResolverPhase.UNRESOLVED
        self.attempt_index = None
