"""Tests for the mcporter subprocess bridge.

Most tests fake ``asyncio.create_subprocess_exec``; the ``TestRealProcess``
class runs small shell scripts as the bridge executable.
"""

from __future__ import annotations

import asyncio
import logging
import stat
import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from graphiti_memory.bridge import (
    BridgeCallError,
    BridgeClient,
    BridgeProtocolError,
    BridgeTimeoutError,
    BridgeUnavailableError,
    build_environment,
    create_bridge,
    decode_output,
    serialize_params,
)
from graphiti_memory.config import BridgeSettings
from graphiti_memory.mcp_bridge import McpBridgeClient

_SPAWN = "graphiti_memory.bridge.asyncio.create_subprocess_exec"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fake_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.wait = AsyncMock(return_value=returncode)
    proc.kill = MagicMock()
    return proc


def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "fake-bridge"
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------


class TestSerializeParams:
    def test_key_value_tokens_in_order(self) -> None:
        assert serialize_params({"query": "redis scan", "limit": 5}) == [
            "query=redis scan",
            "limit=5",
        ]

    def test_newlines_collapse_to_spaces(self) -> None:
        assert serialize_params({"episode_body": "one\ntwo\r\nthree\rfour"}) == [
            "episode_body=one two three four",
        ]

    def test_quotes_pass_through_verbatim(self) -> None:
        # No shell is involved, so quotes need no escaping.
        assert serialize_params({"q": 'say "hi" $(rm -rf /)'}) == ['q=say "hi" $(rm -rf /)']

    def test_empty(self) -> None:
        assert serialize_params({}) == []


class TestBuildEnvironment:
    def test_inherits_and_prefixes_path(self, settings: BridgeSettings) -> None:
        env = build_environment(settings, {"HOME": "/home/me", "PATH": "/usr/bin", "X": "1"})
        assert env["HOME"] == "/home/me"
        assert env["PATH"] == "/opt/test/bin:/usr/bin"
        assert env["X"] == "1"

    def test_fallback_home_when_unset(self, settings: BridgeSettings) -> None:
        env = build_environment(settings, {"PATH": "/usr/bin"})
        assert env["HOME"] == "/home/fallback"

    def test_fallback_home_when_empty(self, settings: BridgeSettings) -> None:
        env = build_environment(settings, {"HOME": "", "PATH": "/usr/bin"})
        assert env["HOME"] == "/home/fallback"

    def test_missing_path(self, settings: BridgeSettings) -> None:
        env = build_environment(settings, {})
        assert env["PATH"] == "/opt/test/bin"

    def test_does_not_mutate_base(self, settings: BridgeSettings) -> None:
        base = {"PATH": "/usr/bin"}
        build_environment(settings, base)
        assert base == {"PATH": "/usr/bin"}


class TestCommand:
    def test_command_vector(self, settings: BridgeSettings) -> None:
        client = BridgeClient(settings)
        assert client.command("search_nodes", {"query": "q", "limit": 2}) == [
            "graphiti-test-bridge-not-installed",
            "call",
            "graphiti.search_nodes",
            "query=q",
            "limit=2",
        ]

    def test_render_command_is_shell_quoted(self, settings: BridgeSettings) -> None:
        client = BridgeClient(settings)
        rendered = client.render_command("add_memory", {"name": "User 2026-01-01 10:00"})
        assert rendered.endswith("graphiti.add_memory 'name=User 2026-01-01 10:00'")


class TestDecodeOutput:
    def test_json(self) -> None:
        assert decode_output("m", b'  {"nodes": []}\n') == {"nodes": []}

    def test_accepts_text(self) -> None:
        assert decode_output("m", "[1, 2]") == [1, 2]

    def test_empty(self) -> None:
        with pytest.raises(BridgeProtocolError):
            decode_output("m", b"   ")

    def test_not_json(self) -> None:
        with pytest.raises(BridgeProtocolError) as info:
            decode_output("search_nodes", b"Error: server offline")
        assert info.value.method == "search_nodes"


# ---------------------------------------------------------------------------
# call_checked / call with a faked process
# ---------------------------------------------------------------------------


class TestCallChecked:
    async def test_success_decodes_stdout(self, settings: BridgeSettings) -> None:
        proc = _fake_process(stdout=b'{"nodes": [{"name": "X", "summary": "Y"}]}')
        with patch(_SPAWN, new=AsyncMock(return_value=proc)) as spawn:
            result = await BridgeClient(settings).call_checked(
                "search_nodes", {"query": "hello world", "limit": 5},
            )

        assert result == {"nodes": [{"name": "X", "summary": "Y"}]}
        args = spawn.call_args.args
        assert args == (
            "graphiti-test-bridge-not-installed",
            "call",
            "graphiti.search_nodes",
            "query=hello world",
            "limit=5",
        )
        env = spawn.call_args.kwargs["env"]
        assert env["PATH"].startswith("/opt/test/bin")

    async def test_missing_executable(self, settings: BridgeSettings) -> None:
        with patch(_SPAWN, new=AsyncMock(side_effect=FileNotFoundError("nope"))):
            with pytest.raises(BridgeUnavailableError):
                await BridgeClient(settings).call_checked("search_nodes")

    async def test_non_zero_exit(self, settings: BridgeSettings) -> None:
        proc = _fake_process(stdout=b"", stderr=b"connection refused", returncode=2)
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            with pytest.raises(BridgeCallError) as info:
                await BridgeClient(settings).call_checked("add_memory")
        assert "exit status 2" in info.value.detail
        assert "connection refused" in info.value.detail

    async def test_non_json_output(self, settings: BridgeSettings) -> None:
        proc = _fake_process(stdout=b"<html>oops</html>")
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            with pytest.raises(BridgeProtocolError):
                await BridgeClient(settings).call_checked("search_nodes")

    async def test_timeout_kills_process(self) -> None:
        settings = BridgeSettings(executable="x-not-installed", timeout_seconds=0.05)

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc = _fake_process()
        proc.communicate = hang
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            with pytest.raises(BridgeTimeoutError):
                await BridgeClient(settings).call_checked("search_nodes")
        proc.kill.assert_called_once()
        proc.wait.assert_awaited()

    async def test_timeout_tolerates_already_exited_process(self) -> None:
        settings = BridgeSettings(executable="x-not-installed", timeout_seconds=0.05)

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc = _fake_process()
        proc.communicate = hang
        proc.kill.side_effect = ProcessLookupError()
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            with pytest.raises(BridgeTimeoutError):
                await BridgeClient(settings).call_checked("search_nodes")


class TestCall:
    """call() never raises; every failure is None."""

    async def test_success(self, settings: BridgeSettings) -> None:
        proc = _fake_process(stdout=b'{"ok": true}')
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            assert await BridgeClient(settings).call("get_status") == {"ok": True}

    @pytest.mark.parametrize("proc", [
        _fake_process(returncode=1, stderr=b"bad"),
        _fake_process(stdout=b"not json"),
        _fake_process(stdout=b""),
    ])
    async def test_failures_return_none(
        self, settings: BridgeSettings, proc: MagicMock, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with patch(_SPAWN, new=AsyncMock(return_value=proc)):
            with caplog.at_level(logging.WARNING, logger="graphiti_memory.bridge"):
                assert await BridgeClient(settings).call("search_nodes", {"query": "x"}) is None
        assert "Failed to call search_nodes" in caplog.text

    async def test_spawn_failure_returns_none(self, settings: BridgeSettings) -> None:
        with patch(_SPAWN, new=AsyncMock(side_effect=PermissionError("denied"))):
            assert await BridgeClient(settings).call("search_nodes") is None

    async def test_unexpected_error_returns_none(
        self, settings: BridgeSettings, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with patch(_SPAWN, new=AsyncMock(side_effect=RuntimeError("loop closed"))):
            with caplog.at_level(logging.ERROR, logger="graphiti_memory.bridge"):
                assert await BridgeClient(settings).call("search_nodes") is None
        assert "Unexpected error calling search_nodes" in caplog.text


# ---------------------------------------------------------------------------
# Concurrency cap
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def _peak_concurrency(self, settings: BridgeSettings, calls: int) -> int:
        active = 0
        peak = 0

        def spawn(*args: Any, **kwargs: Any) -> MagicMock:
            async def communicate() -> tuple[bytes, bytes]:
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.02)
                active -= 1
                return b"{}", b""

            proc = _fake_process()
            proc.communicate = communicate
            return proc

        client = BridgeClient(settings)
        with patch(_SPAWN, new=AsyncMock(side_effect=spawn)):
            await asyncio.gather(*(client.call("add_memory") for _ in range(calls)))
        return peak

    async def test_uncapped_by_default(self) -> None:
        settings = BridgeSettings(executable="x-not-installed")
        assert await self._peak_concurrency(settings, 3) == 3

    async def test_cap_limits_in_flight_calls(self) -> None:
        settings = BridgeSettings(executable="x-not-installed", max_concurrent_calls=1)
        assert await self._peak_concurrency(settings, 3) == 1


# ---------------------------------------------------------------------------
# Real processes
# ---------------------------------------------------------------------------


@pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts")
class TestRealProcess:
    async def test_reads_json_from_script(self, tmp_path: Path) -> None:
        exe = _script(tmp_path, """echo '{"nodes": [{"name": "X", "summary": "Y"}]}'""")
        client = BridgeClient(BridgeSettings(executable=exe, timeout_seconds=10))
        assert await client.call("search_nodes", {"query": "x"}) == {
            "nodes": [{"name": "X", "summary": "Y"}],
        }

    async def test_script_receives_arguments(self, tmp_path: Path) -> None:
        exe = _script(tmp_path, """printf '["%s", "%s", "%s"]' "$1" "$2" "$3" """)
        client = BridgeClient(BridgeSettings(executable=exe, timeout_seconds=10))
        result = await client.call("add_memory", {"group_id": "main multi word"})
        assert result == ["call", "graphiti.add_memory", "group_id=main multi word"]

    async def test_script_failure(self, tmp_path: Path) -> None:
        exe = _script(tmp_path, "echo 'boom' >&2; exit 3")
        client = BridgeClient(BridgeSettings(executable=exe, timeout_seconds=10))
        with pytest.raises(BridgeCallError):
            await client.call_checked("search_nodes")
        assert await client.call("search_nodes") is None

    async def test_script_timeout(self, tmp_path: Path) -> None:
        exe = _script(tmp_path, "exec sleep 5")
        client = BridgeClient(BridgeSettings(executable=exe, timeout_seconds=0.2))
        with pytest.raises(BridgeTimeoutError):
            await client.call_checked("search_nodes")

    async def test_missing_executable(self, tmp_path: Path) -> None:
        client = BridgeClient(BridgeSettings(executable=str(tmp_path / "absent")))
        with pytest.raises(BridgeUnavailableError):
            await client.call_checked("search_nodes")


class TestCreateBridge:
    def test_cli_transport(self) -> None:
        bridge = create_bridge(BridgeSettings())
        assert type(bridge) is BridgeClient

    def test_mcp_transport(self) -> None:
        bridge = create_bridge(BridgeSettings(transport="mcp"))
        assert isinstance(bridge, McpBridgeClient)

    def test_reads_env_when_no_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GRAPHITI_MEMORY_TRANSPORT", "mcp")
        assert isinstance(create_bridge(), McpBridgeClient)
