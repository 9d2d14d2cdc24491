"""
Unit tests for the free-space admission guard.
"""

import pytest

from prometheus_client import REGISTRY

from cctv_recorder.services.disk_guard import DiskGuard
from cctv_recorder.services.exceptions import DiskCheckFailed, InsufficientDiskSpace

from tests.helpers import GB, make_usage


class TestDiskGuard:

    @pytest.mark.asyncio
    async def test_admits_above_threshold(self, tmp_path):
        guard = DiskGuard(20, usage=make_usage(120))

        free = await guard.check_capacity(tmp_path)

        assert free == pytest.approx(120.0)
        assert guard.last_snapshot.ok

    @pytest.mark.asyncio
    async def test_exact_threshold_is_admitted(self, tmp_path):
        guard = DiskGuard(20, usage=make_usage(20))
        assert await guard.check_capacity(tmp_path) == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_rejects_below_threshold(self, tmp_path):
        """Should raise with measured and required space."""
        guard = DiskGuard(20, usage=lambda path: type("U", (), {"free": 20 * GB - 1})())

        with pytest.raises(InsufficientDiskSpace) as exc_info:
            await guard.check_capacity(tmp_path)

        assert exc_info.value.threshold_gb == 20
        assert exc_info.value.free_gb < 20
        assert "Insufficient disk space" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_query_failure(self, tmp_path):
        def broken(path):
            raise PermissionError("denied")

        guard = DiskGuard(20, usage=broken)

        with pytest.raises(DiskCheckFailed, match="Unable to check disk space"):
            await guard.check_capacity(tmp_path)

    def test_queries_recording_directory(self, tmp_path):
        seen = []

        def usage(path):
            seen.append(path)
            return make_usage(50)(path)

        DiskGuard(20, usage=usage).snapshot(tmp_path / "recordings")

        assert seen == [tmp_path / "recordings"]

    def test_snapshot_updates_gauge(self, tmp_path):
        DiskGuard(20, usage=make_usage(33)).snapshot(tmp_path)
        assert REGISTRY.get_sample_value("disk_free_gb") == pytest.approx(33.0)

    def test_negative_threshold_clamped(self):
        assert DiskGuard(-5).threshold_gb == 0.0
