import argparse
import sys

from . import config
from .config import ServerOptions
from .server import run
from .utils.logging import LogLevel, info, setLevel


def options(args: list[str] | None = None) -> ServerOptions:
	"""Parses the command line into server options, defaults being taken
	from the environment."""
	parser = argparse.ArgumentParser(
		prog="wadoserver",
		description="Serves a static DICOMweb tree from a local directory",
		formatter_class=argparse.ArgumentDefaultsHelpFormatter,
	)
	parser.add_argument(
		"-d",
		"--root",
		action="store",
		dest="root",
		help="Directory the request paths are resolved against",
		default=config.ROOT,
	)
	parser.add_argument(
		"-H",
		"--host",
		action="store",
		dest="host",
		help="Specifies the host to listen on",
		default=config.HOST,
	)
	parser.add_argument(
		"-p",
		"--port",
		action="store",
		dest="port",
		type=int,
		help="Specifies the port",
		default=config.PORT,
	)
	parser.add_argument(
		"--confine",
		action=argparse.BooleanOptionalAction,
		dest="confine",
		help="Answers 404 for paths resolving outside of the root directory",
		default=config.CONFINE,
	)
	parser.add_argument(
		"--keepalive",
		action="store",
		dest="keepalive",
		type=float,
		help="Seconds an idle connection is kept open",
		default=config.KEEPALIVE,
	)
	parser.add_argument(
		"-q",
		"--quiet",
		action="store_false",
		dest="logRequests",
		help="Does not log incoming requests",
		default=config.LOG_REQUESTS,
	)
	parser.add_argument(
		"--log-requests",
		action="store_true",
		dest="logRequests",
		help="Logs incoming requests, even when disabled in the environment",
	)
	parser.add_argument(
		"-v",
		"--verbose",
		action="store_true",
		dest="verbose",
		help="Outputs debug messages",
	)
	parsed = parser.parse_args(args=args)
	if parsed.verbose:
		setLevel(LogLevel.Debug)
	return ServerOptions(
		root=parsed.root,
		host=parsed.host,
		port=parsed.port,
		confine=parsed.confine,
		keepalive=parsed.keepalive,
		logRequests=parsed.logRequests,
	)


def main(args: list[str] | None = None) -> None:
	opts = options(args)
	info("Starting WADO static file server", Root=opts.root)
	run(opts)


if __name__ == "__main__":
	main(sys.argv[1:])

# EOF
