"""Subprocess bridge to the Graphiti memory service.

The memory service is reached through a command-line proxy (``mcporter``)
that forwards one tool call per process::

    mcporter call graphiti.search_nodes query=redis limit=5

and prints the tool's JSON result on stdout.  :class:`BridgeClient` builds
that command, runs it with a hard timeout and decodes the output.

Two entry points share the same machinery:

* :meth:`BridgeClient.call` -- best effort.  Every failure is logged and
  reported as ``None``, which callers treat exactly like "no data".
* :meth:`BridgeClient.call_checked` -- raises a :class:`BridgeError`
  subclass so diagnostics can tell an unreachable service from an empty
  answer.

Usage::

    from graphiti_memory.bridge import BridgeClient

    bridge = BridgeClient()
    result = await bridge.call("search_nodes", {"query": "redis", "limit": 5})
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shlex
import shutil
from collections.abc import Mapping
from typing import Any

from graphiti_memory.config import BridgeSettings, get_bridge_settings

log = logging.getLogger(__name__)

_STDERR_PREVIEW = 300

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """A call to the memory service did not produce a usable result."""

    def __init__(self, method: str, detail: str) -> None:
        super().__init__(f"{method}: {detail}")
        self.method = method
        self.detail = detail


class BridgeUnavailableError(BridgeError):
    """The bridge could not be started or the service could not be reached."""


class BridgeTimeoutError(BridgeError):
    """The call did not finish within the configured timeout."""


class BridgeCallError(BridgeError):
    """The bridge ran but reported failure (non-zero exit or tool error)."""


class BridgeProtocolError(BridgeError):
    """The bridge answered with something that is not a JSON document."""


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------


def serialize_params(params: Mapping[str, Any]) -> list[str]:
    """Render *params* as ``key=value`` argument tokens.

    Values are coerced with ``str()`` and newlines are collapsed to spaces so
    each parameter stays a single line for the bridge's parser.  The tokens
    are handed to the process as separate arguments, never through a shell.
    """
    tokens: list[str] = []
    for key, value in params.items():
        text = str(value).replace("\r\n", " ").replace("\n", " ").replace("\r", " ")
        tokens.append(f"{key}={text}")
    return tokens


def build_environment(
    settings: BridgeSettings,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for the bridge process.

    Inherits *base* (``os.environ`` by default), fills ``HOME`` from the
    configured fallback when it is unset and prepends the extra search
    directories to ``PATH``.
    """
    env = dict(os.environ if base is None else base)
    if not env.get("HOME"):
        env["HOME"] = settings.fallback_home
    extra = [p for p in settings.extra_path.split(os.pathsep) if p]
    current = env.get("PATH", "")
    env["PATH"] = os.pathsep.join(extra + ([current] if current else []))
    return env


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class BridgeClient:
    """Invoke Graphiti tools through the ``mcporter`` command-line bridge.

    One process is spawned per call.  Calls are independent; when
    ``max_concurrent_calls`` is set, at most that many processes run at
    once and the rest wait their turn.
    """

    def __init__(self, settings: BridgeSettings | None = None) -> None:
        self._settings = settings or get_bridge_settings()
        self._semaphore: asyncio.Semaphore | None = None

    @property
    def settings(self) -> BridgeSettings:
        return self._settings

    def command(self, method: str, params: Mapping[str, Any] | None = None) -> list[str]:
        """Argument vector for calling *method* with *params*."""
        return [
            self._settings.executable,
            "call",
            f"{self._settings.namespace}.{method}",
            *serialize_params(params or {}),
        ]

    def render_command(self, method: str, params: Mapping[str, Any] | None = None) -> str:
        """Shell-quoted command line, for logs and diagnostics."""
        return shlex.join(self.command(method, params))

    async def call(self, method: str, params: Mapping[str, Any] | None = None) -> Any | None:
        """Call *method* and return its decoded JSON result, or ``None`` on failure."""
        try:
            return await self.call_checked(method, params)
        except BridgeError as exc:
            log.warning("Failed to call %s: %s", method, exc.detail)
        except Exception as exc:
            log.error("Unexpected error calling %s: %s", method, exc, exc_info=True)
        return None

    async def call_checked(self, method: str, params: Mapping[str, Any] | None = None) -> Any:
        """Call *method* and return its decoded JSON result.

        Raises
        ------
        BridgeUnavailableError
            The bridge executable is missing or cannot be started.
        BridgeTimeoutError
            No answer within ``timeout_seconds``; the process is killed.
        BridgeCallError
            The bridge exited non-zero.
        BridgeProtocolError
            The output is empty or not JSON.
        """
        argv = self.command(method, params)
        async with self._limit():
            stdout = await self._run(method, argv)
        return decode_output(method, stdout)

    def _limit(self) -> contextlib.AbstractAsyncContextManager[Any]:
        cap = self._settings.max_concurrent_calls
        if cap <= 0:
            return contextlib.nullcontext()
        # Created lazily: the semaphore must bind to the running loop.
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(cap)
        return self._semaphore

    async def _run(self, method: str, argv: list[str]) -> bytes:
        env = build_environment(self._settings)
        program = shutil.which(argv[0], path=env["PATH"]) or argv[0]
        log.debug("Running bridge: %s", shlex.join(argv))

        try:
            proc = await asyncio.create_subprocess_exec(
                program,
                *argv[1:],
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise BridgeUnavailableError(method, f"cannot start {argv[0]}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise BridgeTimeoutError(
                method, f"no answer after {self._settings.timeout_seconds:g}s",
            ) from exc

        if proc.returncode != 0:
            preview = (stderr or b"").decode("utf-8", errors="replace").strip()
            raise BridgeCallError(
                method, f"exit status {proc.returncode}: {preview[-_STDERR_PREVIEW:]}",
            )
        return stdout or b""


def decode_output(method: str, output: bytes | str) -> Any:
    """Parse one JSON document from bridge *output*."""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    text = output.strip()
    if not text:
        raise BridgeProtocolError(method, "empty output")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise BridgeProtocolError(
            method, f"output is not JSON ({exc.msg}): {text[:_STDERR_PREVIEW]!r}",
        ) from exc


def create_bridge(settings: BridgeSettings | None = None) -> BridgeClient:
    """Build the client for the configured transport."""
    settings = settings or get_bridge_settings()
    if settings.transport == "mcp":
        from graphiti_memory.mcp_bridge import McpBridgeClient
        return McpBridgeClient(settings)
    return BridgeClient(settings)
