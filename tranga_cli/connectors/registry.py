"""Connector registry for discovering and looking up connectors.

The ConnectorRegistry maps connector names to connector instances. Jobs
refer to connectors by name only; the scheduler resolves the name here
at dispatch time.

Source and library connector classes are discovered from:
- Entry points (installed packages): ``tranga_cli.connectors`` and
  ``tranga_cli.libraries``
- Connector directories
"""

import importlib
import importlib.util
import logging
import threading
from importlib.metadata import entry_points
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional, Type

from tranga_cli.connectors.base import LibraryConnector, SourceConnector
from tranga_cli.download.client import DownloadClient
from tranga_cli.exceptions import ConnectorError

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Registry of source and library connector instances keyed by name.

    Example:
        registry = ConnectorRegistry(client, Path("~/Manga"))
        registry.discover()

        connector = registry.require("MangaDex")
        results = connector.fetch_publication_list("frieren")
    """

    # Entry point groups for third-party connectors
    ENTRY_POINT_GROUP = "tranga_cli.connectors"
    LIBRARY_ENTRY_POINT_GROUP = "tranga_cli.libraries"

    def __init__(
        self,
        download_client: Optional[DownloadClient] = None,
        download_location: Optional[Path] = None,
        connector_dirs: Optional[List[Path]] = None,
        settings: Optional[Dict[str, Dict[str, Any]]] = None,
        enabled: Optional[Iterable[str]] = None,
        disabled: Optional[Iterable[str]] = None,
    ) -> None:
        """Initialize the registry.

        Args:
            download_client: Client handed to discovered connectors
            download_location: Library root handed to discovered connectors
            connector_dirs: Directories searched for connector modules
            settings: Per-connector settings, keyed by connector name
            enabled: If given, only these source connector names are registered
            disabled: Connector names that are never registered
        """
        self._download_client = download_client
        self._download_location = download_location or Path.cwd()
        self._connector_dirs = list(connector_dirs or [])
        self._settings = settings or {}
        self._enabled = set(enabled) if enabled else None
        self._disabled = set(disabled or [])
        self._connectors: Dict[str, SourceConnector] = {}
        self._libraries: Dict[str, LibraryConnector] = {}
        self._modules: Dict[Path, ModuleType] = {}
        self._lock = threading.Lock()

    def register(self, connector: SourceConnector) -> None:
        """Register a connector instance under its name.

        Raises:
            ConnectorError: If another connector already uses the name
        """
        name = connector.name
        with self._lock:
            existing = self._connectors.get(name)
            if existing is not None and existing is not connector:
                raise ConnectorError(f"Connector already registered: {name}")
            self._connectors[name] = connector
        logger.debug(f"Registered connector {name}")

    def unregister(self, name: str) -> bool:
        """Remove a connector.

        Returns:
            True if a connector was removed
        """
        with self._lock:
            return self._connectors.pop(name, None) is not None

    def get(self, name: str) -> Optional[SourceConnector]:
        """Look up a connector by name."""
        with self._lock:
            return self._connectors.get(name)

    def require(self, name: str) -> SourceConnector:
        """Look up a connector by name.

        Raises:
            ConnectorError: If no connector has that name
        """
        connector = self.get(name)
        if connector is None:
            raise ConnectorError(
                f"Unknown connector: {name}",
                details={"available": ", ".join(self.names) or "none"},
            )
        return connector

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._connectors

    def __len__(self) -> int:
        with self._lock:
            return len(self._connectors)

    @property
    def names(self) -> List[str]:
        """Names of all registered connectors, sorted."""
        with self._lock:
            return sorted(self._connectors)

    @property
    def connectors(self) -> List[SourceConnector]:
        """All registered connector instances, sorted by name."""
        with self._lock:
            return [self._connectors[name] for name in sorted(self._connectors)]

    def register_library(self, library: LibraryConnector) -> None:
        """Register a library connector instance under its name.

        Raises:
            ConnectorError: If another library connector already uses the name
        """
        name = library.name
        with self._lock:
            existing = self._libraries.get(name)
            if existing is not None and existing is not library:
                raise ConnectorError(f"Library connector already registered: {name}")
            self._libraries[name] = library
        logger.debug(f"Registered library connector {name}")

    @property
    def library_connectors(self) -> List[LibraryConnector]:
        """All registered library connectors, sorted by name."""
        with self._lock:
            return [self._libraries[name] for name in sorted(self._libraries)]

    def add_connector_directory(self, path: Path) -> None:
        """Add a directory to search for connector modules."""
        if path not in self._connector_dirs:
            self._connector_dirs.append(path)

    def discover(self) -> List[str]:
        """Discover connector classes and register an instance of each.

        Source connectors and library connectors are both discovered;
        library connectors whose configuration does not validate are
        skipped. Connectors that fail to load or instantiate are logged
        and skipped.

        Returns:
            Names of the connectors registered by this call

        Raises:
            ConnectorError: If no download client was supplied
        """
        if self._download_client is None:
            raise ConnectorError("Connector discovery requires a download client")

        sources: List[Type[SourceConnector]] = []
        sources.extend(self._discover_entry_points(self.ENTRY_POINT_GROUP, SourceConnector))
        sources.extend(self._discover_directories(SourceConnector))

        registered = []
        for connector_class in sources:
            connector = self._instantiate(connector_class)
            if connector is None or not self._is_enabled(connector.name):
                continue
            if connector.name in self:
                continue
            self.register(connector)
            registered.append(connector.name)

        libraries: List[Type[LibraryConnector]] = []
        libraries.extend(self._discover_entry_points(self.LIBRARY_ENTRY_POINT_GROUP, LibraryConnector))
        libraries.extend(self._discover_directories(LibraryConnector))

        for library_class in libraries:
            library = self._instantiate_library(library_class)
            if library is None or library.name in self._disabled:
                continue
            with self._lock:
                if library.name in self._libraries:
                    continue
            self.register_library(library)
            registered.append(library.name)

        if registered:
            logger.info(f"Discovered connectors: {', '.join(registered)}")
        return registered

    def _is_enabled(self, name: str) -> bool:
        if name in self._disabled or (self._enabled is not None and name not in self._enabled):
            logger.debug(f"Connector {name} is disabled, skipping")
            return False
        return True

    def _discover_entry_points(self, group: str, base: type) -> List[type]:
        """Load connector classes from an entry point group."""
        found = []
        for ep in entry_points(group=group):
            try:
                connector_class = ep.load()
            except Exception as e:
                logger.warning(f"Failed to load connector entry point {ep.name}: {e}")
                continue
            if self._is_connector_class(connector_class, base):
                found.append(connector_class)
        return found

    def _discover_directories(self, base: type) -> List[type]:
        """Load connector classes from connector directories."""
        found = []
        for connector_dir in self._connector_dirs:
            connector_dir = Path(connector_dir).expanduser()
            if not connector_dir.exists():
                continue

            for py_file in sorted(connector_dir.glob("*.py")):
                if py_file.name.startswith("_"):
                    continue
                try:
                    module = self._load_module(py_file)
                except Exception as e:
                    logger.warning(f"Failed to load connector module {py_file}: {e}")
                    continue
                found.extend(
                    obj
                    for obj in vars(module).values()
                    if self._is_connector_class(obj, base) and obj.__module__ == module.__name__
                )
        return found

    def _load_module(self, path: Path) -> ModuleType:
        """Import a connector module from a Python file, once per registry."""
        module = self._modules.get(path)
        if module is not None:
            return module

        spec = importlib.util.spec_from_file_location(f"tranga_connector_{path.stem}", path)
        if not spec or not spec.loader:
            raise ImportError(f"Cannot load {path}")

        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        self._modules[path] = module
        return module

    def _is_connector_class(self, obj: Any, base: type = SourceConnector) -> bool:
        """Check if an object is a concrete connector class."""
        return (
            isinstance(obj, type)
            and issubclass(obj, base)
            and obj is not base
            and not getattr(obj, "__abstractmethods__", None)
        )

    def _instantiate(self, connector_class: Type[SourceConnector]) -> Optional[SourceConnector]:
        """Create a connector instance with the shared client and its settings."""
        try:
            connector = connector_class(self._download_client, self._download_location)
            settings = self._settings.get(connector.name)
            if settings:
                connector.configure(settings)
                for error in connector.validate_config():
                    logger.warning(f"Connector {connector.name}: {error}")
            return connector
        except Exception as e:
            logger.warning(f"Failed to initialize connector {connector_class.__name__}: {e}")
            return None

    def _instantiate_library(self, library_class: Type[LibraryConnector]) -> Optional[LibraryConnector]:
        """Create a library connector; unconfigured ones are skipped."""
        try:
            library = library_class(self._download_client)
            settings = self._settings.get(library.name)
            if settings:
                library.configure(settings)
            errors = library.validate_config()
        except Exception as e:
            logger.warning(f"Failed to initialize library connector {library_class.__name__}: {e}")
            return None

        if errors:
            logger.debug(f"Library connector {library.name} not configured: {'; '.join(errors)}")
            return None
        return library
