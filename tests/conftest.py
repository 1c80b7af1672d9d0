import pytest

from fakes import FakeHttp, make_site
from harvester.models import SiteDescriptor


@pytest.fixture
def site() -> SiteDescriptor:
    return make_site()


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "data" / "scraper.db")


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()
