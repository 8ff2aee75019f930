DEFAULT_ENCODING: str = "utf8"
EOL: bytes = b"\r\n"


def asBytes(value: str | bytes | None) -> bytes:
	if isinstance(value, bytes):
		return value
	elif isinstance(value, str):
		return value.encode(DEFAULT_ENCODING)
	elif value is None:
		return b""
	else:
		raise ValueError(f"Expected bytes or str, got: {value}")


class LineParser:
	"""Splits chunks fed from a socket into lines ending with `eol`. A line
	may span any number of chunks, including having its delimiter split
	between two of them."""

	__slots__ = ["buffer", "eol", "offset"]

	def __init__(self, eol: bytes = EOL) -> None:
		self.buffer: bytearray = bytearray()
		self.eol: bytes = eol
		self.offset: int = 0

	@property
	def pending(self) -> int:
		"""The number of bytes buffered without a line delimiter."""
		return len(self.buffer)

	def reset(self, eol: bytes = EOL) -> "LineParser":
		self.buffer.clear()
		self.eol = eol
		self.offset = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		"""Feeds `chunk` from `start`, returning the line (without its
		delimiter) and how many bytes of `chunk` were consumed. When the
		line is `None`, the rest of the chunk was buffered."""
		before = len(self.buffer)
		self.buffer += chunk[start:]
		end = self.buffer.find(self.eol, self.offset)
		if end == -1:
			# The delimiter may start in the last bytes of the buffer
			self.offset = max(0, len(self.buffer) - len(self.eol) + 1)
			return None, len(chunk) - start
		line = bytes(self.buffer[:end])
		self.buffer.clear()
		self.offset = 0
		return line, end + len(self.eol) - before


# EOF
