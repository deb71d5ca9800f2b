import pytest

from apphost.bootstrap import create_app
from tests.support import RouteRecorder, build_recording_router, make_settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def recorder():
    return RouteRecorder()


@pytest.fixture
def app(settings, recorder):
    return create_app(settings, router=build_recording_router(recorder), configure_logging=False)
