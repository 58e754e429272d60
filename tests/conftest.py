"""Shared fixtures: a controllable clock and an in-memory source connector."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import httpx
import pytest

from tranga_cli.connectors.base import Chapter, ConnectorInfo, Publication, SourceConnector
from tranga_cli.connectors.registry import ConnectorRegistry
from tranga_cli.download.client import DownloadClient
from tranga_cli.download.rate_limiter import RateLimiter


class FakeClock:
    """UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeSource(SourceConnector):
    """Source connector serving fixed publications and chapters.

    ``gate`` (when set) blocks ``fetch_chapters_for`` until released, and
    ``started`` is set as soon as a chapter listing begins.
    """

    def __init__(
        self,
        download_client: DownloadClient,
        download_location: Path,
        config: Optional[dict] = None,
        name: str = "FakeSource",
        publications: Optional[List[Publication]] = None,
        chapters: Optional[Dict[str, List[Chapter]]] = None,
    ) -> None:
        super().__init__(download_client, download_location, config)
        self._name = name
        self.publications = list(publications or [])
        self.chapters = dict(chapters or {})
        self.calls: List[str] = []
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.fail_with: Optional[Exception] = None

    @property
    def info(self) -> ConnectorInfo:
        return ConnectorInfo(name=self._name, version="0.1.0", languages=["en"])

    def fetch_publication_list(self, query: str = "") -> List[Publication]:
        self.calls.append(f"search:{query}")
        return [p for p in self.publications if query.lower() in p.sort_name.lower()]

    def fetch_chapters_for(self, publication: Publication, language: str = "en") -> List[Chapter]:
        self.calls.append(f"chapters:{publication.publication_id}")
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail_with is not None:
            raise self.fail_with
        return [
            c for c in self.chapters.get(publication.publication_id, []) if c.language == language
        ]

    def download_chapter(self, publication: Publication, chapter: Chapter) -> None:
        self.calls.append(f"chapter:{chapter.chapter_number}")
        path = self.chapter_archive_path(publication, chapter)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"cbz")

    def download_cover(self, publication: Publication) -> None:
        self.calls.append(f"cover:{publication.publication_id}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_source_class() -> type:
    return FakeSource


@pytest.fixture
def download_client() -> Iterator[DownloadClient]:
    """Client that never touches the network."""
    client = DownloadClient(
        RateLimiter({1: 60}, sleep=lambda seconds: None),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"ok")),
        sleep=lambda seconds: None,
    )
    yield client
    client.close()


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    return tmp_path / "library"


@pytest.fixture
def publication() -> Publication:
    return Publication(sort_name="Test Manga", publication_id="pub-1", year=2020)


@pytest.fixture
def source(download_client: DownloadClient, library_dir: Path, publication: Publication) -> FakeSource:
    return FakeSource(
        download_client,
        library_dir,
        publications=[publication, Publication(sort_name="Other Manga", publication_id="pub-2")],
        chapters={
            "pub-1": [
                Chapter("pub-1", "1", name="Start"),
                Chapter("pub-1", "2"),
                Chapter("pub-1", "2", language="de"),
            ],
        },
    )


@pytest.fixture
def registry(download_client: DownloadClient, library_dir: Path, source: FakeSource) -> ConnectorRegistry:
    registry = ConnectorRegistry(download_client, library_dir)
    registry.register(source)
    return registry
