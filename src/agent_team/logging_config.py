"""Centralized logging configuration for agent-team."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "agent_team"


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[str | Path] = None,
) -> logging.Logger:
	"""
	Set up logging with console and file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var or INFO.
		log_dir: Directory for log files. No file handlers when omitted.

	Returns:
		The package root logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(ROOT_LOGGER)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)

	console_handler = logging.StreamHandler(sys.stderr)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(simple_formatter)
	console_handler.addFilter(SensitiveDataFilter())
	logger.addHandler(console_handler)

	if log_dir is None:
		return logger

	log_path = Path(log_dir)
	log_path.mkdir(parents=True, exist_ok=True)

	file_handler = RotatingFileHandler(
		log_path / "agent-team.log",
		maxBytes=10 * 1024 * 1024,  # 10 MB
		backupCount=5,
	)
	file_handler.setLevel(logging.DEBUG)
	file_handler.setFormatter(detailed_formatter)
	file_handler.addFilter(SensitiveDataFilter())
	logger.addHandler(file_handler)

	# Permission decisions at WARNING and above (denials) get their own file
	security_handler = RotatingFileHandler(
		log_path / "security.log",
		maxBytes=5 * 1024 * 1024,
		backupCount=10,
	)
	security_handler.setLevel(logging.WARNING)
	security_handler.setFormatter(detailed_formatter)
	logging.getLogger(f"{ROOT_LOGGER}.policy").addHandler(security_handler)

	return logger


class SensitiveDataFilter(logging.Filter):
	"""Flag log records that look like they carry credentials."""

	SENSITIVE_PATTERNS = ("token=", "password", "secret=", "api_key", "authorization")

	def filter(self, record: logging.LogRecord) -> bool:
		if isinstance(record.msg, str):
			msg_lower = record.msg.lower()
			if any(pattern in msg_lower for pattern in self.SENSITIVE_PATTERNS):
				record.msg = f"[SENSITIVE] {record.msg}"
		return True
