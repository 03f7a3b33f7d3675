"""Tests for report sinks."""

from pathlib import Path

import pytest

from agent_team.sink import FileReportSink, MemoryReportSink


class TestFileReportSink:
	@pytest.mark.asyncio
	async def test_write_creates_parents(self, tmp_path: Path):
		sink = FileReportSink(tmp_path)
		await sink.write("reports/session-1.json", '{"ok": true}')
		assert (tmp_path / "reports" / "session-1.json").read_text(encoding="utf-8") == '{"ok": true}'

	@pytest.mark.asyncio
	async def test_write_utf8(self, tmp_path: Path):
		sink = FileReportSink(tmp_path)
		await sink.write("agents/a.md", "Rôle: développeur ✓")
		assert (tmp_path / "agents" / "a.md").read_text(encoding="utf-8") == "Rôle: développeur ✓"

	@pytest.mark.asyncio
	async def test_overwrite(self, tmp_path: Path):
		sink = FileReportSink(tmp_path)
		await sink.write("a.txt", "one")
		await sink.write("a.txt", "two")
		assert (tmp_path / "a.txt").read_text() == "two"

	@pytest.mark.parametrize("key", ["../escape.txt", "reports/../../escape.txt"])
	def test_escaping_keys_rejected(self, tmp_path: Path, key):
		with pytest.raises(ValueError, match="outside"):
			FileReportSink(tmp_path / "root").resolve(key)

	@pytest.mark.parametrize("key", ["", "/etc/passwd"])
	def test_invalid_keys_rejected(self, tmp_path: Path, key):
		with pytest.raises(ValueError, match="Invalid"):
			FileReportSink(tmp_path).resolve(key)

	@pytest.mark.asyncio
	async def test_escape_not_written(self, tmp_path: Path):
		sink = FileReportSink(tmp_path / "root")
		with pytest.raises(ValueError):
			await sink.write("../escape.txt", "x")
		assert not (tmp_path / "escape.txt").exists()


class TestMemoryReportSink:
	@pytest.mark.asyncio
	async def test_keeps_documents(self):
		sink = MemoryReportSink()
		await sink.write("reports/x.json", "{}")
		assert sink.documents == {"reports/x.json": "{}"}
