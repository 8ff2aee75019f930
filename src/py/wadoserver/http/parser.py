from typing import ClassVar, Iterator, Literal

from ..utils.io import LineParser
from .model import (
	HTTPAtom,
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
	TLSHandshake,
	headername,
)

# A TLS record starts with the handshake content type
TLS_HANDSHAKE: int = 0x16


class MessageParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()

	def reset(self) -> "MessageParser":
		self.line.reset()
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[HTTPRequestLine | TLSHandshake | Literal[False] | None, int]:
		"""Returns the request line once complete, `None` when more data
		is needed and `False` when the line is malformed."""
		if not self.line.pending and start < len(chunk) and chunk[start] == TLS_HANDSHAKE:
			# Some clients will try TLS first, there's nothing more to read
			# from them.
			return TLSHandshake(), len(chunk) - start
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			# Empty lines before the request line are to be ignored
			return None, read
		parts: list[str] = line.decode("latin-1").split(" ")
		if len(parts) != 3 or not parts[0] or not parts[2].startswith("HTTP/"):
			return False, read
		method, target, protocol = parts
		path, _, query = target.partition("?")
		return HTTPRequestLine(method, path, query, protocol), read


class HeadersParser:
	__slots__ = ["line", "headers", "contentType", "contentLength"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns the
		name of the parsed header, `None` when no header was completed and
		`False` on the empty line ending the headers."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			return False, read
		ln: str = line.decode("latin-1")
		i = ln.find(":")
		if i == -1:
			# Not a header, we skip it
			return None, read
		name: str = headername(ln[:i].strip())
		value: str = ln[i + 1 :].strip()
		if name == "Content-Length":
			try:
				self.contentLength = max(0, int(value))
			except ValueError:
				self.contentLength = None
		elif name == "Content-Type":
			self.contentType = value
		self.headers[name] = value
		return name, read


class BodySkipParser:
	"""Consumes the body of a request with `Content-Length` set. Bodies are
	never used, so only the byte count is kept."""

	__slots__ = ["expected", "read"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0

	def reset(self, length: int = 0) -> "BodySkipParser":
		self.expected = length
		self.read = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool, int]:
		"""Returns `True` once the whole body has been consumed."""
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.read += to_read
		return self.read >= self.expected, to_read


class HTTPParser:
	"""A stateful HTTP request parser, fed with chunks as they are read from
	the socket and yielding the atoms it could extract from them. Pipelined
	requests come out one after the other."""

	# Longest request or header line we buffer before giving up
	MAX_LINE: ClassVar[int] = 64 * 1024

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.body: BodySkipParser = BodySkipParser()
		self.parser: MessageParser | HeadersParser | BodySkipParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	def reset(self) -> "HTTPParser":
		self.message.reset()
		self.headers.reset()
		self.body.reset()
		self.parser = self.message
		self.requestLine = None
		self.requestHeaders = None
		return self

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			if self.parser is self.message:
				line, read = self.message.feed(chunk, offset)
				offset += read
				if line is None:
					continue
				elif line is False or isinstance(line, TLSHandshake):
					# The rest of the stream can't be parsed
					yield HTTPProcessingStatus.BadFormat if line is False else line
					self.reset()
					return
				else:
					self.requestLine = line
					yield line
					self.parser = self.headers.reset()
			elif self.parser is self.headers:
				name, read = self.headers.feed(chunk, offset)
				offset += read
				if name is False:
					headers = self.headers.flush()
					self.requestHeaders = headers
					yield headers
					if headers.contentLength:
						self.parser = self.body.reset(headers.contentLength)
						yield HTTPProcessingStatus.Body
					else:
						yield self.complete()
			else:
				done, read = self.body.feed(chunk, offset)
				offset += read
				if done:
					yield self.complete()
		if self.parser is not self.body and self.parser.line.pending > self.MAX_LINE:
			yield HTTPProcessingStatus.BadFormat
			self.reset()

	def complete(self) -> HTTPRequest:
		"""Creates the request from what was parsed and gets ready for
		the next one."""
		line = self.requestLine
		headers = self.requestHeaders
		if line is None or headers is None:
			raise RuntimeError("Request completed before its line and headers")
		self.parser = self.message.reset()
		self.requestLine = None
		self.requestHeaders = None
		return HTTPRequest(
			method=line.method,
			path=line.path,
			query=parseQuery(line.query),
			headers=headers,
			protocol=line.protocol,
		)


def parseQuery(text: str) -> dict[str, str]:
	res: dict[str, str] = {}
	for item in text.split("&"):
		if not item:
			continue
		kv = item.split("=", 1)
		res[kv[0]] = kv[1] if len(kv) > 1 else ""
	return res


# EOF
