"""Shared fixtures: settings in a temp dir and a RecordingsService with fake encoders."""

import pytest

from cctv_recorder.config_io import Settings
from cctv_recorder.services.disk_guard import DiskGuard
from cctv_recorder.services.recordings_service import RecordingsService

from tests.helpers import FIXED_NOW, SupervisorFactory, make_usage


@pytest.fixture
def settings(tmp_path):
    return Settings(home=tmp_path, record_dir=tmp_path / "recordings")


@pytest.fixture
def factory():
    return SupervisorFactory()


@pytest.fixture
def make_service(settings, factory):
    """Build a RecordingsService with fake encoders and a fixed clock."""

    def _make(free_gb=100.0, supervisor_factory=None):
        return RecordingsService(
            settings,
            disk_guard=DiskGuard(settings.min_free_gb, usage=make_usage(free_gb)),
            supervisor_factory=supervisor_factory or factory,
            clock=lambda: FIXED_NOW,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()
