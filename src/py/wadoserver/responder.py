import asyncio
import os
import stat
from typing import ClassVar, NamedTuple, TypeAlias
from urllib.parse import urlsplit

from .config import ServerOptions
from .http.model import HTTPRequest, HTTPResponse
from .utils.logging import info, warning

# --
# # Static File Responder
#
# Maps a request path onto a file under the root directory by plain
# concatenation, and answers with the file bytes or a 404. Every filesystem
# failure is reported to the client as not found, the actual reason is only
# logged.


class ResourceData(NamedTuple):
	path: str
	payload: bytes


class ResourceFailure(NamedTuple):
	path: str
	# One of `missing`, `denied`, `directory`, `special`, `unreadable` or `outside`
	reason: str
	error: Exception | None = None


ResourceRead: TypeAlias = ResourceData | ResourceFailure

# Opening a FIFO without a writer would block the reading thread
OPEN_FLAGS: int = os.O_RDONLY | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_BINARY", 0)


def readResource(path: str) -> ResourceRead:
	"""Reads the regular file at `path` fully, never raising for filesystem
	errors. Directories, devices, FIFOs and sockets are not read."""
	try:
		fd = os.open(path, OPEN_FLAGS)
	except (FileNotFoundError, NotADirectoryError) as e:
		return ResourceFailure(path, "missing", e)
	except IsADirectoryError as e:
		return ResourceFailure(path, "directory", e)
	except PermissionError as e:
		# Windows reports directories as permission errors
		return ResourceFailure(path, "directory" if os.path.isdir(path) else "denied", e)
	except (OSError, ValueError) as e:
		# ValueError is for paths with embedded null bytes
		return ResourceFailure(path, "unreadable", e)
	try:
		mode = os.fstat(fd).st_mode
		if stat.S_ISDIR(mode):
			return ResourceFailure(path, "directory")
		elif not stat.S_ISREG(mode):
			return ResourceFailure(path, "special")
		with os.fdopen(fd, "rb") as f:
			# The descriptor is now owned by `f`
			fd = -1
			return ResourceData(path, f.read())
	except OSError as e:
		return ResourceFailure(path, "unreadable", e)
	finally:
		if fd >= 0:
			os.close(fd)


class StaticFileResponder:
	"""Serves the files found under `options.root`. The content type is
	always `text/html`, whatever the file."""

	INDEX: ClassVar[str] = "/index.html"
	CONTENT_TYPE: ClassVar[str] = "text/html"

	def __init__(self, options: ServerOptions):
		self.options: ServerOptions = options
		self.root: str = options.root

	def targetPath(self, target: str) -> str:
		"""Returns the path part of a request target. Absolute-form targets
		keep only their path, anything else that isn't a path (like `*`) is
		made one."""
		if target.startswith("/"):
			return target
		elif "://" in target:
			return urlsplit(target).path or "/"
		else:
			return f"/{target}"

	def normalize(self, path: str) -> str:
		return self.INDEX if path == "/" else path

	def resolve(self, path: str) -> str:
		"""Returns the candidate filesystem path for the request path. No
		other rewriting than the index substitution takes place."""
		return f"{self.root}{self.normalize(path)}"

	def isConfined(self, candidate: str) -> bool:
		root: str = os.path.realpath(self.root)
		target: str = os.path.realpath(candidate)
		return target == root or target.startswith(root.rstrip(os.sep) + os.sep)

	def read(self, candidate: str) -> ResourceRead:
		if self.options.confine:
			try:
				confined = self.isConfined(candidate)
			except (OSError, ValueError) as e:
				return ResourceFailure(candidate, "unreadable", e)
			if not confined:
				return ResourceFailure(candidate, "outside")
		return readResource(candidate)

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		if self.options.logRequests:
			info("Request", Path=request.path, Accept=request.accept or "")
		target: str = self.targetPath(request.path)
		path: str = self.normalize(target)
		if not self.options.confine and ".." in path.split("/"):
			warning("Path has parent segments, serving it as is", Path=path)
		candidate: str = self.resolve(target)
		loop = asyncio.get_running_loop()
		# The read happens off the loop so that other connections proceed
		res = await loop.run_in_executor(None, self.read, candidate)
		if isinstance(res, ResourceData):
			return request.respond(res.payload, contentType=self.CONTENT_TYPE)
		else:
			warning(
				"File not found",
				Path=path,
				Reason=res.reason,
				Error=str(res.error) if res.error else "",
			)
			return request.notFound(f"File not found {path}")


# EOF
