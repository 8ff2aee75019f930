import asyncio
import os
import socket
import threading
from dataclasses import dataclass
from signal import SIGINT, SIGTERM
from typing import Any

from .config import ServerOptions
from .http.model import (
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
	TLSHandshake,
)
from .http.parser import HTTPParser
from .responder import StaticFileResponder
from .utils.logging import LogLevel, debug, error, event, exception, info, logged, warning


class WadoServerError(RuntimeError):
	"""The server could not be started."""


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True

	def stop(self) -> None:
		info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)
		else:
			warning("Event loop error", Message=context.get("message", ""))


SERVER_BAD_REQUEST: bytes = (
	b"HTTP/1.1 400 Bad Request\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 11\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Bad Request"
)

SERVER_ERROR: bytes = (
	b"HTTP/1.1 500 Internal Server Error\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 21\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Internal Server Error"
)


class AIOSocketServer:
	"""AsyncIO server working with non-blocking sockets directly, a single
	thread accepts connections and runs one task per connection."""

	@classmethod
	async def OnRequest(
		cls,
		responder: StaticFileResponder,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
	) -> None:
		"""Processes the requests sent over the `client` connection, until
		the client closes it, asks for it to be closed or stays idle for
		longer than the keep-alive timeout."""
		buffer = bytearray(options.readsize)
		parser: HTTPParser = HTTPParser()
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		keep_alive: bool = True
		read_count: int = 0
		req_count: int = 0
		res_count: int = 0
		try:
			while keep_alive:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# No data means the client closed the connection
					status = HTTPProcessingStatus.NoData
					break
				read_count += n
				# NOTE: With HTTP pipelining, one read may hold several requests
				for atom in parser.feed(bytes(buffer[:n])):
					if atom is HTTPProcessingStatus.BadFormat:
						warning("Malformed request", Client=f"{id(client):x}")
						await loop.sock_sendall(client, SERVER_BAD_REQUEST)
						keep_alive = False
						break
					elif isinstance(atom, TLSHandshake):
						warning("TLS handshake received on plain HTTP port")
						keep_alive = False
						break
					elif isinstance(atom, HTTPRequest):
						req_count += 1
						res = await cls.SendResponse(atom, responder, client, loop=loop)
						if res:
							res_count += 1
						if not res or atom.shouldClose:
							keep_alive = False
							break
					elif logged(LogLevel.Debug):
						debug("Request atom", Atom=atom.__class__.__name__)
			if req_count != res_count:
				warning("Incomplete responses", Requests=req_count, Responses=res_count)
			elif status is HTTPProcessingStatus.NoData and read_count and not req_count:
				warning(
					"Client did not send a complete request",
					ReadCount=read_count,
				)
		except (BrokenPipeError, ConnectionResetError):
			debug("Client closed the connection early", Client=f"{id(client):x}")
		except Exception as e:
			exception(e)
		finally:
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		responder: StaticFileResponder,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
	) -> HTTPResponse | None:
		"""Processes the request with the responder and sends the response,
		returning it if it was sent."""
		try:
			res = await responder.process(request)
		except Exception as e:
			exception(e, f"Could not process request {request.path}")
			await loop.sock_sendall(client, SERVER_ERROR)
			return None
		if request.shouldClose:
			res.setHeader("Connection", "close")
		await loop.sock_sendall(client, res.head())
		# HEAD keeps the headers of the full response, but no body
		if request.method != "HEAD" and res.payload:
			await loop.sock_sendall(client, res.payload)
		return res

	@classmethod
	async def Serve(
		cls,
		responder: StaticFileResponder,
		options: ServerOptions = ServerOptions(),
	) -> None:
		"""Main server coroutine."""
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		try:
			server.bind((options.host, options.port))
		except OSError as e:
			server.close()
			error(
				f"Unable to bind to {options.host}:{options.port}, aborting.",
				"HOSTPORTERR",
			)
			raise WadoServerError(f"Unable to bind to {options.host}:{options.port}") from e
		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		server.setblocking(False)

		if not os.path.isdir(options.root):
			warning("Root directory does not exist, all requests will fail", Root=options.root)

		loop = asyncio.get_running_loop()
		tasks: set[asyncio.Task[None]] = set()
		state = ServerState()
		# Signal handlers can only be registered from the main thread
		signals: bool = (
			options.stopSignals and threading.current_thread() is threading.main_thread()
		)
		if signals:
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)

		info(
			"WADO server listening",
			Host=options.host,
			Port=options.port,
			Root=options.root,
			Confine=options.confine,
		)
		try:
			while state.isRunning:
				if options.condition and not options.condition():
					break
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				except OSError as e:
					# [Errno 24] Too many open files, we give some time for
					# connections to close.
					if e.errno == 24:
						await asyncio.sleep(0.1)
					else:
						exception(e)
					continue
				task = loop.create_task(
					cls.OnRequest(responder, client, loop=loop, options=options)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			server.close()
			if signals:
				loop.remove_signal_handler(SIGINT)
				loop.remove_signal_handler(SIGTERM)
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)


def run(options: ServerOptions | None = None) -> None:
	"""High level function to run the server until it is stopped."""
	opts: ServerOptions = options or ServerOptions()
	try:
		asyncio.run(AIOSocketServer.Serve(StaticFileResponder(opts), opts))
	except KeyboardInterrupt:
		event("ManualShutdown")
	event("EOK")


# EOF
