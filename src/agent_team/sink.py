"""Report and config sinks: UTF-8 documents keyed by a path-like identifier."""

import asyncio
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class ReportSink(Protocol):
	"""Accepts text documents keyed by a relative path."""

	async def write(self, key: str, text: str) -> None:
		...


class FileReportSink:
	"""Writes documents under a root directory. Keys may not escape the root."""

	def __init__(self, root: str | Path):
		self.root = Path(root).expanduser().resolve()

	def resolve(self, key: str) -> Path:
		"""
		Map a key to a path under the root.

		Raises:
			ValueError: If the key is absolute or resolves outside the root
		"""
		if not key or Path(key).is_absolute():
			raise ValueError(f"Invalid sink key: {key!r}")
		path = (self.root / key).resolve()
		if not path.is_relative_to(self.root):
			raise ValueError(f"Access denied: {key} is outside {self.root}")
		return path

	async def write(self, key: str, text: str) -> None:
		path = self.resolve(key)
		await asyncio.to_thread(self._write, path, text)
		logger.info(f"Wrote {path}")

	@staticmethod
	def _write(path: Path, text: str) -> None:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(text, encoding="utf-8")


class MemoryReportSink:
	"""Keeps documents in memory. Used by tests and dry runs."""

	def __init__(self):
		self.documents: dict[str, str] = {}

	async def write(self, key: str, text: str) -> None:
		self.documents[key] = text
