from os import getenv
from typing import Callable, NamedTuple, TypeVar

from .utils.logging import warning

T = TypeVar("T", int, float)


def flag(name: str, default: bool = False) -> bool:
	value = getenv(name)
	return default if value is None else value.strip().lower() in ("1", "true", "yes", "on")


def number(name: str, default: T) -> T:
	"""Reads a numeric variable, falling back to `default` when it is unset
	or can't be parsed."""
	value = getenv(name)
	if value is None:
		return default
	try:
		return type(default)(value)
	except ValueError:
		warning("Ignoring invalid numeric setting", Name=name, Value=value, Default=default)
		return default


# Directory holding the pre-rendered DICOMweb tree
ROOT: str = getenv("WADO_ROOT", "/microscopy")

# Loopback only, the server is not meant to be exposed directly
HOST: str = getenv("HOST", "127.0.0.1")

PORT: int = number("PORT", 5000)

CONFINE: bool = flag("WADO_CONFINE")

LOG_REQUESTS: bool = flag("WADO_LOG_REQUESTS", True)

KEEPALIVE: float = number("WADO_KEEPALIVE", 60.0)


class ServerOptions(NamedTuple):
	"""The configuration of a server process, created once at startup and
	passed down to the components that need it."""

	root: str = ROOT
	host: str = HOST
	port: int = PORT
	# Answers 404 for paths resolving outside of `root`
	confine: bool = CONFINE
	backlog: int = 1_024
	# How often the accept loop checks `condition` and stop requests
	polling: float = 1.0
	readsize: int = 4_096
	# Idle time before a keep-alive connection is closed
	keepalive: float = KEEPALIVE
	logRequests: bool = LOG_REQUESTS
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True


# EOF
