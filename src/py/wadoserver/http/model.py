from enum import Enum
from typing import NamedTuple, TypeAlias, Union

from ..utils.io import asBytes
from .status import HTTP_STATUS

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


def headername(name: str, *, headers: dict[str, str] = {}) -> str:
	"""Normalizes the header name as `Kebab-Case`, memoizing the result."""
	key: str = name.lower()
	if key in headers:
		return headers[key]
	normalized: str = "-".join(_.capitalize() for _ in key.split("-"))
	headers[key] = normalized
	return normalized


# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class TLSHandshake(NamedTuple):
	"""A TLS record received where a plain HTTP request line was expected."""

	pass


class HTTPRequestLine(NamedTuple):
	method: str
	path: str
	query: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Wraps HTTP headers, keeping key information for request/response
	processing."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPProcessingStatus(Enum):
	"""Internal parser/processor state management"""

	Processing = 0
	Body = 1
	Timeout = 10
	NoData = 11
	BadFormat = 12


# What the parser produces
HTTPAtom: TypeAlias = Union[
	HTTPRequestLine,
	TLSHandshake,
	HTTPHeaders,
	HTTPProcessingStatus,
	"HTTPRequest",
]

# -----------------------------------------------------------------------------
#
# REQUESTS
#
# -----------------------------------------------------------------------------


class HTTPRequest:
	"""Represents an HTTP request, which also acts as a factory for
	responses. Request bodies are consumed by the parser but never kept."""

	__slots__ = ["method", "path", "query", "protocol", "_headers"]

	def __init__(
		self,
		method: str,
		path: str,
		query: dict[str, str] | None,
		headers: HTTPHeaders,
		protocol: str = "HTTP/1.1",
	):
		self.method: str = method
		self.path: str = path
		self.query: dict[str, str] | None = query
		self.protocol: str = protocol
		self._headers: HTTPHeaders = headers

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	@property
	def accept(self) -> str | None:
		return self.header("Accept")

	@property
	def contentType(self) -> str | None:
		return self._headers.contentType

	@property
	def contentLength(self) -> int | None:
		return self._headers.contentLength

	@property
	def shouldClose(self) -> bool:
		"""Tells if the connection must be closed once this request is
		answered. Bodies with a transfer encoding are not decoded, so the
		rest of the stream can't be trusted after them."""
		connection = (self.header("Connection") or "").lower()
		if self.header("Transfer-Encoding"):
			return True
		elif self.protocol == "HTTP/1.0":
			return connection != "keep-alive"
		else:
			return connection == "close"

	def respond(
		self,
		content: str | bytes | None = None,
		contentType: str | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			content=content,
			contentType=contentType,
			status=status,
			headers=headers,
			protocol=self.protocol,
		)

	def error(
		self, status: int, content: str | None = None, contentType: str = "text/plain"
	) -> "HTTPResponse":
		return self.respond(
			content=HTTP_STATUS.get(status, "Server Error") if content is None else content,
			contentType=contentType,
			status=status,
		)

	def notFound(
		self, content: str = "Not Found", contentType: str = "text/plain"
	) -> "HTTPResponse":
		return self.error(404, content=content, contentType=contentType)

	def __str__(self) -> str:
		return f"Request({self.method} {self.path}{f'?{self.query}' if self.query else ''} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""An HTTP response with an in-memory body."""

	__slots__ = ["protocol", "status", "message", "headers", "payload"]

	@staticmethod
	def Create(
		content: str | bytes | None = None,
		contentType: str | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Factory method to create HTTP response objects."""
		payload: bytes = asBytes(content)
		updated: dict[str, str] = {headername(k): v for k, v in (headers or {}).items()}
		if contentType is not None:
			updated["Content-Type"] = contentType
		updated["Content-Length"] = str(len(payload))
		return HTTPResponse(
			protocol=protocol,
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(
				updated,
				contentType=updated.get("Content-Type"),
				contentLength=len(payload),
			),
			payload=payload,
		)

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		payload: bytes = b"",
	):
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.payload: bytes = payload

	def getHeader(self, name: str) -> str | None:
		return self.headers.headers.get(headername(name))

	def setHeader(self, name: str, value: str | int | None) -> "HTTPResponse":
		if value is None:
			self.headers.headers.pop(headername(name), None)
		else:
			self.headers.headers[headername(name)] = str(value)
		return self

	def head(self) -> bytes:
		"""Serializes the status line and headers."""
		message: str = self.message or HTTP_STATUS.get(self.status, "Unknown status")
		lines: list[str] = [f"{self.protocol} {self.status} {message}"]
		lines += [f"{k}: {v}" for k, v in self.headers.headers.items()]
		lines.append("")
		lines.append("")
		# Header values are restricted to ISO-8859-1
		return "\r\n".join(lines).encode("latin-1")

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers.headers})"


# EOF
