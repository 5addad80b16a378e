"""
Tests for the synchronous wrappers and the command line entry point.
"""

import json
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest

from conftest import NOW, make_bundle
from reservoirhub.__main__ import main
from reservoirhub.client import UpstreamClient
from reservoirhub.models import LAKE_LEVEL, FallbackSnapshot
from reservoirhub.prefetch import prefetch_snapshot
from reservoirhub.sync import AsyncSyncBridge


class TestAsyncSyncBridge:
    def test_run_async(self):
        async def add(a, b):
            return a + b

        assert AsyncSyncBridge.run_async(add, args=(2, 3)) == 5

    def test_injects_temporary_client(self):
        async def uses_client(client: Optional[UpstreamClient] = None):
            return client

        client = AsyncSyncBridge.run_async(uses_client, client_class=UpstreamClient)
        assert isinstance(client, UpstreamClient)

    def test_keeps_caller_client(self):
        async def uses_client(client: Optional[UpstreamClient] = None):
            return client

        own = object()
        result = AsyncSyncBridge.run_async(
            uses_client, kwargs={"client": own}, client_class=UpstreamClient
        )
        assert result is own

    @pytest.mark.asyncio
    async def test_refuses_inside_running_loop(self):
        async def noop():
            return None

        with pytest.raises(RuntimeError, match="existing asyncio event loop"):
            AsyncSyncBridge.run_async(noop)

    def test_extract_client_class(self):
        assert AsyncSyncBridge.extract_client_class(Optional[UpstreamClient]) is UpstreamClient
        assert AsyncSyncBridge.extract_client_class(UpstreamClient) is UpstreamClient
        assert AsyncSyncBridge.extract_client_class(None) is None
        assert AsyncSyncBridge.extract_client_class("UpstreamClient") is None

    def test_prefetch_snapshot_has_sync_version(self):
        assert callable(prefetch_snapshot.sync)


class TestCommandLine:
    def test_snapshot_command(self, capsys):
        snapshot = FallbackSnapshot(lake_level=make_bundle(LAKE_LEVEL), captured_at=NOW)
        with patch("reservoirhub.__main__.prefetch_snapshot", new_callable=MagicMock) as mock_prefetch:
            mock_prefetch.sync.return_value = snapshot
            assert main(["snapshot"]) == 0

        printed = json.loads(capsys.readouterr().out)
        assert printed["lake-level"]["level"] == 552.3
        assert mock_prefetch.sync.call_args.kwargs["via_api"] is False

    def test_bad_policy_file(self, tmp_path):
        path = tmp_path / "policies.json"
        path.write_text('{"lake-level": {"pollIntervalMs": -5}}')

        assert main(["--policy-file", str(path), "snapshot"]) == 2

    def test_requires_command(self):
        with pytest.raises(SystemExit):
            main([])
