import asyncio
import socket
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import pytest

from wadoserver.config import ServerOptions
from wadoserver.responder import StaticFileResponder
from wadoserver.server import AIOSocketServer, WadoServerError

T = TypeVar("T")

HOST: str = "127.0.0.1"


def freePort() -> int:
	with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
		s.bind((HOST, 0))
		return int(s.getsockname()[1])


async def waitForPort(port: int) -> None:
	for _ in range(200):
		try:
			_, writer = await asyncio.open_connection(HOST, port)
		except OSError:
			await asyncio.sleep(0.02)
		else:
			writer.close()
			await writer.wait_closed()
			return
	raise RuntimeError(f"Server did not start on port {port}")


async def serving(
	root: Path, scenario: Callable[[int], Awaitable[T]], **overrides: Any
) -> T:
	"""Runs the server while `scenario` talks to it."""
	done = asyncio.Event()
	options = ServerOptions(
		root=str(root),
		host=HOST,
		port=freePort(),
		polling=0.05,
		keepalive=5.0,
		stopSignals=False,
		condition=lambda: not done.is_set(),
	)._replace(**overrides)
	server = asyncio.create_task(
		AIOSocketServer.Serve(StaticFileResponder(options), options)
	)
	try:
		await waitForPort(options.port)
		return await scenario(options.port)
	finally:
		done.set()
		await server


async def exchange(port: int, payload: bytes) -> bytes:
	"""Sends `payload` and reads until the server closes the connection."""
	reader, writer = await asyncio.open_connection(HOST, port)
	writer.write(payload)
	await writer.drain()
	data = await asyncio.wait_for(reader.read(), timeout=5.0)
	writer.close()
	await writer.wait_closed()
	return data


def responses(data: bytes) -> list[tuple[int, dict[str, str], bytes]]:
	"""Splits a stream of responses framed by their `Content-Length`."""
	res: list[tuple[int, dict[str, str], bytes]] = []
	while data:
		head, _, rest = data.partition(b"\r\n\r\n")
		lines = head.decode("latin-1").split("\r\n")
		status = int(lines[0].split(" ")[1])
		headers = dict(_.split(": ", 1) for _ in lines[1:])
		n = int(headers.get("Content-Length", "0"))
		res.append((status, headers, rest[:n]))
		data = rest[n:]
	return res


def get(path: str, method: str = "GET", extra: str = "") -> bytes:
	return f"{method} {path} HTTP/1.1\r\nHost: {HOST}\r\n{extra}Connection: close\r\n\r\n".encode()


@pytest.fixture
def root(tmp_path: Path) -> Path:
	(tmp_path / "index.html").write_bytes(b"<h1>Viewer</h1>")
	series = tmp_path / "dicomweb" / "studies" / "1.2.3" / "series" / "4.5"
	series.mkdir(parents=True)
	(series / "a.bin").write_bytes(bytes(range(256)) * 1024)
	(series / "b.bin").write_bytes(bytes(reversed(range(256))) * 2048)
	return tmp_path


def test_serves_index_for_root(root: Path) -> None:
	data = asyncio.run(serving(root, lambda port: exchange(port, get("/"))))
	((status, headers, body),) = responses(data)
	assert status == 200
	assert headers["Content-Type"] == "text/html"
	assert headers["Connection"] == "close"
	assert body == b"<h1>Viewer</h1>"


def test_not_found(root: Path) -> None:
	data = asyncio.run(
		serving(root, lambda port: exchange(port, get("/dicomweb/studies/7.7")))
	)
	((status, headers, body),) = responses(data)
	assert status == 404
	assert headers["Content-Type"] == "text/plain"
	assert b"/dicomweb/studies/7.7" in body


def test_directory_does_not_crash_server(root: Path) -> None:
	async def scenario(port: int) -> list[bytes]:
		return [
			await exchange(port, get("/dicomweb")),
			await exchange(port, get("/index.html")),
		]

	first, second = asyncio.run(serving(root, scenario))
	assert responses(first)[0][0] == 404
	assert responses(second)[0][0] == 200


def test_concurrent_requests(root: Path) -> None:
	base = "/dicomweb/studies/1.2.3/series/4.5"

	async def scenario(port: int) -> list[bytes]:
		return list(
			await asyncio.gather(
				exchange(port, get(f"{base}/a.bin")),
				exchange(port, get(f"{base}/b.bin")),
				exchange(port, get(f"{base}/a.bin")),
			)
		)

	a, b, c = asyncio.run(serving(root, scenario))
	series = root / "dicomweb" / "studies" / "1.2.3" / "series" / "4.5"
	assert responses(a)[0][2] == (series / "a.bin").read_bytes()
	assert responses(b)[0][2] == (series / "b.bin").read_bytes()
	assert responses(c)[0][2] == (series / "a.bin").read_bytes()


def test_keep_alive_pipelining(root: Path) -> None:
	payload = (
		f"GET /index.html HTTP/1.1\r\nHost: {HOST}\r\n\r\n"
		f"POST /dicomweb/studies HTTP/1.1\r\nContent-Length: 4\r\n\r\nDICM"
	).encode() + get("/")
	data = asyncio.run(serving(root, lambda port: exchange(port, payload)))
	res = responses(data)
	assert [_[0] for _ in res] == [200, 404, 200]
	assert res[0][2] == res[2][2] == b"<h1>Viewer</h1>"
	assert "Connection" not in res[0][1]


def test_head_has_no_body(root: Path) -> None:
	data = asyncio.run(
		serving(root, lambda port: exchange(port, get("/index.html", "HEAD")))
	)
	head, _, body = data.partition(b"\r\n\r\n")
	assert head.startswith(b"HTTP/1.1 200 OK")
	assert b"Content-Length: 15" in head
	assert body == b""


def test_bad_request(root: Path) -> None:
	data = asyncio.run(serving(root, lambda port: exchange(port, b"HELLO\r\n\r\n")))
	assert data.startswith(b"HTTP/1.1 400 Bad Request")


def test_http10_closes_connection(root: Path) -> None:
	data = asyncio.run(
		serving(root, lambda port: exchange(port, b"GET / HTTP/1.0\r\n\r\n"))
	)
	assert data.startswith(b"HTTP/1.0 200 OK")


def test_confined_traversal(root: Path) -> None:
	(root.parent / f"{root.name}.txt").write_bytes(b"outside")
	path = f"/../{root.name}.txt"
	try:
		open_data = asyncio.run(serving(root, lambda port: exchange(port, get(path))))
		confined_data = asyncio.run(
			serving(root, lambda port: exchange(port, get(path)), confine=True)
		)
	finally:
		(root.parent / f"{root.name}.txt").unlink()
	assert responses(open_data)[0][2] == b"outside"
	assert responses(confined_data)[0][0] == 404


def test_port_in_use(root: Path) -> None:
	with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
		taken.bind((HOST, 0))
		taken.listen(1)
		port = taken.getsockname()[1]
		options = ServerOptions(root=str(root), host=HOST, port=port, stopSignals=False)
		with pytest.raises(WadoServerError):
			asyncio.run(AIOSocketServer.Serve(StaticFileResponder(options), options))


# EOF
