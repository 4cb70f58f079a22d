import json
import os
import tempfile
import unittest
from pathlib import Path

from agent_ledger.errors import SourceUnavailable
from agent_ledger.models import SyncCheckpoint
from agent_ledger.parsers.log_reader import LogReader, is_source_file


def _entry(n: int) -> str:
    return json.dumps({"type": "message", "id": f"e{n}", "message": {"role": "user", "content": f"line {n}"}})


class LogReaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.reader = LogReader([self.root])

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, text: str, mode: str = "w") -> Path:
        path = self.root / name
        with open(path, mode, encoding="utf-8") as f:
            f.write(text)
        return path

    def test_list_sources_skips_marker_files_and_other_suffixes(self) -> None:
        self._write("b.jsonl", "")
        self._write("a.jsonl", "")
        self._write("a.jsonl.deleted.2026", "")
        self._write("c.reset.jsonl", "")
        self._write("notes.txt", "")

        handles = self.reader.list_sources()

        self.assertEqual([h.session_id for h in handles], ["a", "b"])

    def test_missing_directory_yields_no_sources(self) -> None:
        reader = LogReader([self.root / "nope"])
        self.assertEqual(reader.list_sources(), [])

    def test_incremental_reads_return_only_new_lines(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n" + _entry(1) + "\n")
        handle = self.reader.handle_for(path)

        first = self.reader.read_new_lines(handle, None)
        self.assertEqual(len(first.lines), 2)
        self.assertEqual(first.start_sequence, 0)
        self.assertEqual(first.checkpoint.lineCount, 2)
        self.assertEqual(first.checkpoint.byteOffset, path.stat().st_size)

        self._write("s1.jsonl", _entry(2) + "\n", mode="a")
        second = self.reader.read_new_lines(handle, first.checkpoint)

        self.assertEqual(second.start_sequence, 2)
        self.assertEqual(len(second.lines), 1)
        self.assertIn(b'"e2"', second.lines[0])
        self.assertEqual(second.checkpoint.lineCount, 3)
        self.assertFalse(second.reset)

    def test_blank_lines_are_not_counted(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n\n   \n" + _entry(1) + "\n")
        batch = self.reader.read_new_lines(self.reader.handle_for(path), None)
        self.assertEqual(len(batch.lines), 2)
        self.assertEqual(batch.checkpoint.lineCount, 2)

    def test_partial_trailing_line_is_held_back(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n" + '{"type": "mess')
        handle = self.reader.handle_for(path)

        batch = self.reader.read_new_lines(handle, None)
        self.assertEqual(len(batch.lines), 1)
        self.assertEqual(batch.checkpoint.byteOffset, len((_entry(0) + "\n").encode("utf-8")))

        self._write("s1.jsonl", 'age"}\n', mode="a")
        follow_up = self.reader.read_new_lines(handle, batch.checkpoint)
        self.assertEqual(follow_up.lines, [b'{"type": "message"}'])
        self.assertEqual(follow_up.start_sequence, 1)

    def test_complete_trailing_object_without_newline_is_consumed(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n" + _entry(1))
        batch = self.reader.read_new_lines(self.reader.handle_for(path), None)
        self.assertEqual(len(batch.lines), 2)
        self.assertEqual(batch.checkpoint.byteOffset, path.stat().st_size)

    def test_shrunk_file_starts_new_generation(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n" + _entry(1) + "\n" + _entry(2) + "\n")
        handle = self.reader.handle_for(path)
        first = self.reader.read_new_lines(handle, None)

        self._write("s1.jsonl", _entry(9) + "\n")
        second = self.reader.read_new_lines(handle, first.checkpoint)

        self.assertTrue(second.reset)
        self.assertEqual(second.checkpoint.generation, first.checkpoint.generation + 1)
        self.assertEqual(second.start_sequence, 0)
        self.assertEqual(len(second.lines), 1)
        self.assertIn(b'"e9"', second.lines[0])

    def test_replaced_file_with_new_inode_starts_new_generation(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n")
        handle = self.reader.handle_for(path)
        first = self.reader.read_new_lines(handle, None)

        replacement = self._write("s1.jsonl.tmp", _entry(0) + "\n" + _entry(1) + "\n" + _entry(2) + "\n")
        keep_alive = open(path, "rb")  # hold the old inode so it cannot be reused
        try:
            os.replace(replacement, path)
            second = self.reader.read_new_lines(handle, first.checkpoint)
        finally:
            keep_alive.close()

        self.assertTrue(second.reset)
        self.assertEqual(second.start_sequence, 0)
        self.assertEqual(len(second.lines), 3)

    def test_legacy_checkpoint_without_offset_skips_counted_lines(self) -> None:
        path = self._write("s1.jsonl", _entry(0) + "\n" + _entry(1) + "\n" + _entry(2) + "\n")
        handle = self.reader.handle_for(path)
        legacy = SyncCheckpoint(filePath=handle.key, sessionId="s1", lineCount=2)

        batch = self.reader.read_new_lines(handle, legacy)

        self.assertEqual(batch.start_sequence, 2)
        self.assertEqual(len(batch.lines), 1)
        self.assertIn(b'"e2"', batch.lines[0])
        self.assertEqual(batch.checkpoint.lineCount, 3)
        self.assertEqual(batch.checkpoint.byteOffset, path.stat().st_size)

    def test_vanished_file_raises_source_unavailable(self) -> None:
        handle = self.reader.handle_for(self.root / "gone.jsonl")
        with self.assertRaises(SourceUnavailable):
            self.reader.read_new_lines(handle, None)
        with self.assertRaises(SourceUnavailable):
            self.reader.read_all(handle)

    def test_is_source_file(self) -> None:
        self.assertTrue(is_source_file(Path("/x/abc.jsonl")))
        self.assertFalse(is_source_file(Path("/x/abc.jsonl.deleted.1")))
        self.assertFalse(is_source_file(Path("/x/abc.deleted.jsonl")))
        self.assertFalse(is_source_file(Path("/x/abc.json")))


if __name__ == "__main__":
    unittest.main()
