from pathlib import Path
from typing import Iterator, List, Union

import httpx
import pytest

from condcache import CacheEngine, Config, ConditionalFetcher, Store

ResponseFactory = Union[httpx.Response, Exception]


class Origin:
    """
    A fabricated origin server.

    Responses are served in the order they were added and every request
    that reaches the origin is recorded. A request with nothing left to
    serve fails the test.
    """

    def __init__(self) -> None:
        self.responses: List[ResponseFactory] = []
        self.requests: List[httpx.Request] = []

    def add(self, *responses: ResponseFactory) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert self.responses, f"Unexpected request: {request.method} {request.url}"
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def origin() -> Origin:
    return Origin()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def config(cache_dir: Path, scratch_dir: Path) -> Config:
    return Config(cache_dir=cache_dir, tmp_dir=scratch_dir)


@pytest.fixture
def store(cache_dir: Path) -> Store:
    return Store(cache_dir)


@pytest.fixture
def fetcher(origin: Origin) -> Iterator[ConditionalFetcher]:
    with ConditionalFetcher(transport=origin.transport) as fetcher:
        yield fetcher


@pytest.fixture
def engine(config: Config, store: Store, fetcher: ConditionalFetcher) -> CacheEngine:
    return CacheEngine(config, store=store, fetcher=fetcher)


def ok(body: bytes = b"body", **headers: str) -> httpx.Response:
    return httpx.Response(200, content=body, headers={k.replace("_", "-"): v for k, v in headers.items()})


def not_modified(**headers: str) -> httpx.Response:
    return httpx.Response(304, headers={k.replace("_", "-"): v for k, v in headers.items()})
