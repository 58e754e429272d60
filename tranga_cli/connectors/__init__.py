"""Source and library connectors.

Connectors are the pluggable capabilities the scheduler invokes: a
:class:`SourceConnector` talks to one website, a :class:`LibraryConnector`
notifies a media server.
"""

from tranga_cli.connectors.base import (
    Chapter,
    ConnectorInfo,
    LibraryConnector,
    Publication,
    SourceConnector,
)
from tranga_cli.connectors.registry import ConnectorRegistry

__all__ = [
    "Chapter",
    "ConnectorInfo",
    "ConnectorRegistry",
    "LibraryConnector",
    "Publication",
    "SourceConnector",
]
