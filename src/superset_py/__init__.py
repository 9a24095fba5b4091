"""superset_py: agent-facing wrapper around the Apache Superset REST API."""

from superset_py.client import SupersetClient, connect
from superset_py.errors import (
    AuthenticationError,
    ParseError,
    ResourceError,
    SupersetError,
    UpstreamHttpError,
)
from superset_py.models import Credentials, SessionState
from superset_py._safety import MutationEntry

__all__ = [
    "connect",
    "AuthenticationError",
    "Credentials",
    "MutationEntry",
    "ParseError",
    "ResourceError",
    "SessionState",
    "SupersetClient",
    "SupersetError",
    "UpstreamHttpError",
]
