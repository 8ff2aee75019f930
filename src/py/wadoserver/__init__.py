from .config import ServerOptions  # NOQA: F401
from .http.model import HTTPRequest, HTTPResponse  # NOQA: F401
from .responder import (  # NOQA: F401
	StaticFileResponder,
	ResourceData,
	ResourceFailure,
	readResource,
)
from .server import AIOSocketServer, WadoServerError, run  # NOQA: F401


# EOF
