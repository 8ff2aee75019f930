import os
import sys
from contextvars import ContextVar
from enum import Enum
from typing import Any, ClassVar, NamedTuple, TextIO

# --
# # Logging
#
# Structured log entries written to stderr. Each entry has an origin, a level
# and a context of `Key=value` pairs, so that a request line reads like:
#
# `[wado] Request Path=/index.html Accept=text/html`

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
FORCE_COLOR: bool = "FORCE_COLOR" in os.environ
COLOR: bool = FORCE_COLOR or not NO_COLOR

LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="wado")


class Term:
	BOLD: ClassVar[str] = "\033[1m" if COLOR else ""
	RESET: ClassVar[str] = "\033[0m" if COLOR else ""

	@staticmethod
	def Color(color: int) -> str:
		return f"\033[0;38;5;{color}m" if COLOR else ""


class LogType(Enum):
	Message = 0
	Event = 20


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Warning = 30
	Error = 40  # A managed error
	Exception = 50  # An un-managed error


LOG_LEVEL_COLOR: dict[LogLevel, int] = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}


class LogEntry(NamedTuple):
	origin: str
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: Any = None
	context: dict[str, Any] | None = None


class LogConfig:
	"""Process-wide logging threshold and output stream."""

	Level: ClassVar[LogLevel] = (
		LogLevel.Debug if os.environ.get("WADO_DEBUG") == "1" else LogLevel.Info
	)
	Stream: ClassVar[TextIO] = sys.stderr


def setLevel(level: LogLevel) -> LogLevel:
	LogConfig.Level = level
	return level


def formatData(value: Any) -> str:
	if value is None or value == () or value == [] or value == {}:
		return "◌"
	elif isinstance(value, dict):
		return " ".join(
			f"{Term.BOLD}{k}{Term.RESET}={formatData(v)}" for k, v in value.items()
		)
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value or not value else value
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	else:
		return str(value)


def send(entry: LogEntry) -> LogEntry:
	if entry.level.value < LogConfig.Level.value:
		return entry
	clr: str = Term.Color(LOG_LEVEL_COLOR[entry.level])
	context: str = f" {formatData(entry.context)}" if entry.context else ""
	stream = LogConfig.Stream
	if entry.type == LogType.Event:
		stream.write(
			f"{clr}{Term.BOLD}[{entry.origin}] {entry.name}{Term.RESET} {formatData(entry.value)}{context}{Term.RESET}\n"
		)
	else:
		stream.write(
			f"{clr}{Term.BOLD}[{entry.origin}]{Term.RESET} {entry.message}{context}{Term.RESET}\n"
		)
	stream.flush()
	return entry


def entry(
	*,
	level: LogLevel = LogLevel.Info,
	type: LogType = LogType.Message,
	message: str | None = None,
	name: str | None = None,
	value: Any = None,
	context: dict[str, Any],
) -> LogEntry:
	return LogEntry(
		origin=LogOrigin.get(),
		type=type,
		level=level,
		message=message,
		name=name,
		value=value,
		context=context,
	)


def debug(message: str, **context: Any) -> LogEntry:
	return send(entry(message=message, level=LogLevel.Debug, context=context))


def info(message: str, **context: Any) -> LogEntry:
	return send(entry(message=message, context=context))


def warning(message: str, **context: Any) -> LogEntry:
	return send(entry(message=message, level=LogLevel.Warning, context=context))


def error(message: str, code: int | str | None, **context: Any) -> LogEntry:
	return send(
		entry(message=message, value=code, level=LogLevel.Error, context=context)
	)


def event(event: str, value: Any = None, **context: Any) -> LogEntry:
	return send(entry(name=event, value=value, type=LogType.Event, context=context))


def exception(exception: BaseException, message: str | None = None) -> BaseException:
	"""Writes the exception and its traceback, returning the exception so
	that this can be used as `raise exception(e)`."""
	try:
		stream = LogConfig.Stream
		clr: str = Term.Color(LOG_LEVEL_COLOR[LogLevel.Exception])
		label = f"[{exception.__class__.__name__}] {exception}"
		stream.write(
			f"{clr}!!! EXCP {f'{message}: {label}' if message else label}{Term.RESET}\n"
		)
		tb = exception.__traceback__
		while tb:
			code = tb.tb_frame.f_code
			stream.write(
				f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}\n"
			)
			tb = tb.tb_next
		stream.flush()
	except Exception:  # nosec: B110
		# This is called from exception handlers, it must never raise itself.
		pass
	return exception


def logged(level: LogLevel) -> bool:
	"""Tells if entries at the given level are currently output. This
	guards against building entries that would be discarded."""
	return level.value >= LogConfig.Level.value


# EOF
