"""Base classes for source and library connectors.

A source connector knows how to talk to one website: list its
publications, list the chapters of a publication, and download chapters
and cover art into the library layout. The scheduler never calls a
website itself; it only decides when a connector method runs.

A library connector tells a media server (Komga, Kavita, ...) to rescan
its library after new chapters were written.
"""

import base64
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from tranga_cli.download.client import DownloadClient

logger = logging.getLogger(__name__)

# Characters kept when turning a title into a folder or file name.
_ILLEGAL_PATH_CHARACTERS = re.compile(r"[^A-Za-z0-9 .\-,'()~!]")

CHAPTER_ARCHIVE_SUFFIX = ".cbz"


def safe_path_name(value: str) -> str:
    """Strip characters that are unsafe in folder and file names.

    Trailing dots are removed as well, since some filesystems drop them.
    """
    return _ILLEGAL_PATH_CHARACTERS.sub("", value).rstrip(".")


@dataclass
class ConnectorInfo:
    """Information about a source connector.

    Attributes:
        name: Unique connector identifier used by jobs
        display_name: Human-readable name
        version: Connector version
        description: Connector description
        base_url: Website the connector scrapes
        languages: Language tags the source offers
    """

    name: str
    display_name: str = ""
    version: str = "1.0.0"
    description: str = ""
    base_url: str = ""
    languages: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.name


@dataclass
class Publication:
    """A publication (manga series) offered by a source.

    ``folder_name`` and ``internal_id`` are derived from ``sort_name`` and
    ``year`` unless given explicitly.
    """

    sort_name: str
    publication_id: str
    authors: List[str] = field(default_factory=list)
    alt_titles: Dict[str, str] = field(default_factory=dict)
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    cover_url: Optional[str] = None
    cover_file_name_in_cache: Optional[str] = None
    links: Dict[str, str] = field(default_factory=dict)
    year: Optional[int] = None
    original_language: Optional[str] = None
    status: str = ""
    folder_name: str = ""
    internal_id: str = ""
    ignore_chapters_below: float = 0.0

    def __post_init__(self) -> None:
        if not self.folder_name:
            self.folder_name = safe_path_name(self.sort_name)
        if not self.internal_id:
            letters = "".join(c for c in self.sort_name.lower() if c.isalpha())
            year = "" if self.year is None else str(self.year)
            raw = f"{letters}{year}".encode("ascii", errors="replace")
            self.internal_id = base64.b64encode(raw).decode("ascii")

    def __str__(self) -> str:
        return f"Publication {self.sort_name} {self.internal_id}"

    def create_publication_folder(self, download_location: Path) -> Path:
        """Create (if needed) and return this publication's library folder."""
        folder = download_location / self.folder_name
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "sort_name": self.sort_name,
            "publication_id": self.publication_id,
            "authors": list(self.authors),
            "alt_titles": dict(self.alt_titles),
            "description": self.description,
            "tags": list(self.tags),
            "cover_url": self.cover_url,
            "cover_file_name_in_cache": self.cover_file_name_in_cache,
            "links": dict(self.links),
            "year": self.year,
            "original_language": self.original_language,
            "status": self.status,
            "folder_name": self.folder_name,
            "internal_id": self.internal_id,
            "ignore_chapters_below": self.ignore_chapters_below,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Publication":
        """Create a publication from :meth:`to_dict` output."""
        return cls(
            sort_name=data["sort_name"],
            publication_id=data["publication_id"],
            authors=data.get("authors", []),
            alt_titles=data.get("alt_titles", {}),
            description=data.get("description"),
            tags=data.get("tags", []),
            cover_url=data.get("cover_url"),
            cover_file_name_in_cache=data.get("cover_file_name_in_cache"),
            links=data.get("links", {}),
            year=data.get("year"),
            original_language=data.get("original_language"),
            status=data.get("status", ""),
            folder_name=data.get("folder_name", ""),
            internal_id=data.get("internal_id", ""),
            ignore_chapters_below=data.get("ignore_chapters_below", 0.0),
        )


@dataclass
class Chapter:
    """A single chapter of a publication."""

    publication_id: str
    chapter_number: str
    volume_number: Optional[str] = None
    name: Optional[str] = None
    url: str = ""
    language: str = "en"

    @property
    def number(self) -> Optional[float]:
        """Chapter number as a float, or None if it is not numeric."""
        try:
            return float(self.chapter_number.replace(",", "."))
        except ValueError:
            return None

    @property
    def file_name(self) -> str:
        """Archive file name (without suffix) inside the publication folder."""
        parts = []
        if self.volume_number:
            parts.append(f"Vol.{self.volume_number}")
        parts.append(f"Ch.{self.chapter_number}")
        label = " ".join(parts)
        if self.name:
            label = f"{label} - {self.name}"
        return safe_path_name(label)


class SourceConnector(ABC):
    """Abstract base class for source connectors.

    Connectors must implement:
    - info property: Return connector information
    - fetch_publication_list(): Search the source
    - fetch_chapters_for(): List chapters of one publication
    - download_chapter(): Write one chapter archive into the library
    - download_cover(): Write the cover image into the library

    All network access goes through ``self.download_client`` so requests
    are rate limited per endpoint class.

    Example:
        class ExampleSource(SourceConnector):
            CLASS_API = 1
            CLASS_IMAGES = 2

            @property
            def info(self) -> ConnectorInfo:
                return ConnectorInfo(name="ExampleSource", languages=["en"])

            def fetch_publication_list(self, query=""):
                result = self.download_client.make_request(
                    f"https://example.org/search?q={query}", self.CLASS_API
                )
                ...
    """

    def __init__(
        self,
        download_client: DownloadClient,
        download_location: Path,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize the connector.

        Args:
            download_client: Shared rate-limited client
            download_location: Root folder of the library layout
            config: Connector-specific settings
        """
        self.download_client = download_client
        self.download_location = Path(download_location)
        self._config = dict(config or {})

    @property
    @abstractmethod
    def info(self) -> ConnectorInfo:
        """Get connector information."""

    @property
    def name(self) -> str:
        """Get connector name."""
        return self.info.name

    @property
    def config(self) -> Dict[str, Any]:
        """Get a copy of the connector configuration."""
        return self._config.copy()

    def configure(self, config: Dict[str, Any]) -> None:
        """Merge new settings into the connector configuration."""
        self._config.update(config)

    def validate_config(self) -> List[str]:
        """Validate the current configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        return []

    @abstractmethod
    def fetch_publication_list(self, query: str = "") -> List[Publication]:
        """Search the source for publications matching ``query``.

        An empty query lists everything the source exposes.
        """

    @abstractmethod
    def fetch_chapters_for(self, publication: Publication, language: str = "en") -> List[Chapter]:
        """List the chapters of ``publication`` available in ``language``."""

    @abstractmethod
    def download_chapter(self, publication: Publication, chapter: Chapter) -> None:
        """Download ``chapter`` to :meth:`chapter_archive_path`."""

    @abstractmethod
    def download_cover(self, publication: Publication) -> None:
        """Download the cover image of ``publication`` into its folder."""

    def get_publication(self, publication_id: str) -> Optional[Publication]:
        """Look up a single publication by its source id.

        The default implementation scans the full publication list;
        connectors with a direct lookup endpoint should override it.
        """
        for publication in self.fetch_publication_list(""):
            if publication.publication_id == publication_id:
                return publication
        return None

    def chapter_archive_path(self, publication: Publication, chapter: Chapter) -> Path:
        """Where ``chapter`` is stored in the library layout."""
        return (
            self.download_location
            / publication.folder_name
            / f"{chapter.file_name}{CHAPTER_ARCHIVE_SUFFIX}"
        )

    def is_chapter_downloaded(self, publication: Publication, chapter: Chapter) -> bool:
        """Whether the chapter archive already exists."""
        return self.chapter_archive_path(publication, chapter).exists()

    def new_chapters(self, publication: Publication, chapters: List[Chapter]) -> List[Chapter]:
        """Filter ``chapters`` down to those that still need downloading.

        Chapters numbered below ``publication.ignore_chapters_below`` and
        chapters already in the library are skipped. Chapters whose number
        cannot be parsed are always considered.
        """
        selected = []
        for chapter in chapters:
            number = chapter.number
            if number is not None and number < publication.ignore_chapters_below:
                continue
            if self.is_chapter_downloaded(publication, chapter):
                continue
            selected.append(chapter)
        return selected


class LibraryConnector(ABC):
    """Abstract base class for library-server connectors.

    Library connectors are discovered like source connectors and get
    their settings (server URL, credentials) from the same per-name
    ``[connectors.settings.<name>]`` table. Only connectors whose
    :meth:`validate_config` reports no errors are used.
    """

    def __init__(
        self,
        download_client: Optional[DownloadClient] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.download_client = download_client
        self._config = dict(config or {})

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the library server (e.g. "Komga")."""

    @property
    def config(self) -> Dict[str, Any]:
        """Get a copy of the connector configuration."""
        return self._config.copy()

    def configure(self, config: Dict[str, Any]) -> None:
        """Merge new settings into the connector configuration."""
        self._config.update(config)

    def validate_config(self) -> List[str]:
        """Validate the current configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        return []

    @abstractmethod
    def update_library(self) -> None:
        """Ask the library server to rescan its libraries."""
