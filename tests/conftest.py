from typing import Dict, Union

import pytest

import page_mirror

from .fakes import ASSETS, PAGE_HTML, PAGE_URL, FakeFetcher


@pytest.fixture
def site() -> Dict[str, Union[str, bytes, Exception]]:
    responses: Dict[str, Union[str, bytes, Exception]] = {PAGE_URL: PAGE_HTML}
    responses.update(ASSETS)
    return responses


@pytest.fixture
def fetcher(site) -> FakeFetcher:
    return FakeFetcher(site)


@pytest.fixture
def settings() -> page_mirror.Settings:
    return page_mirror.Settings()
