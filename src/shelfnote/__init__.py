"""
Shelfnote - a personal content organizer core.

Folders arranged in an acyclic tree hold notes, a flat tag taxonomy is
applied to notes, and tag-scoped marks live in a recycle-bin lifecycle.
This package is the repository layer that keeps those structures consistent,
exposed to collaborators through a service layer and an MCP server.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("shelfnote")
except PackageNotFoundError:
    __version__ = "0.3.0"
