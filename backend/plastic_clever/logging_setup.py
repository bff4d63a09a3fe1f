"""
Logging setup for the API process.
"""

import logging

from rich.logging import RichHandler


def setup_logging(level: str | int = logging.INFO) -> None:
	"""
	Configure the root logger with a Rich console handler.

	Args:
		level: Logging level name ("INFO") or number
	"""
	if isinstance(level, str):
		level = logging.getLevelName(level.upper())
		if not isinstance(level, int):
			level = logging.INFO

	root_logger = logging.getLogger()
	root_logger.setLevel(level)
	root_logger.handlers.clear()

	console_handler = RichHandler(
		show_time=True,
		show_path=False,
		rich_tracebacks=True,
	)
	console_handler.setLevel(level)
	console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
	root_logger.addHandler(console_handler)

	# Reduce verbosity of some libraries
	logging.getLogger("passlib").setLevel(logging.ERROR)
	logging.getLogger("httpx").setLevel(logging.WARNING)
	logging.getLogger("multipart").setLevel(logging.WARNING)
	logging.getLogger("python_multipart").setLevel(logging.WARNING)
