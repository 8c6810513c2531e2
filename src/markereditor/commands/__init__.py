"""Commands behind the HTTP endpoints."""

from markereditor.commands.context import ServerContext
from markereditor.commands.core import CoreCommands
from markereditor.commands.purge import PurgeCommands
from markereditor.commands.query import QueryCommands

__all__ = ["CoreCommands", "PurgeCommands", "QueryCommands", "ServerContext"]
