import json
import tempfile
import unittest
from pathlib import Path

from agent_ledger.db.connection import open_connection
from agent_ledger.db.sqlite_migrations import run_migrations
from agent_ledger.db.sync_engine import SyncEngine
from agent_ledger.models import TaskStatus
from agent_ledger.parsers.log_reader import LogReader
from agent_ledger.services.dashboard import DashboardService


def _line(kind: str, n: int, **message) -> str:
    return json.dumps({
        "type": "message",
        "id": f"{kind}{n}",
        "timestamp": f"2026-10-18T10:{n:02d}:00.000Z",
        "message": message,
    })


def _spawn(n: int, label: str) -> str:
    return _line(
        "spawn",
        n,
        role="assistant",
        content=[{"type": "toolCall", "id": f"c{n}", "name": "spawn", "arguments": {"label": label, "task": f"Build {label}"}}],
    )


def _done(n: int, label: str) -> str:
    return _line("done", n, role="user", content=f'[System Message] A subagent task "{label}" just completed successfully.')


def _rate_limited(n: int) -> str:
    return _line("result", n, role="toolResult", toolName="web_fetch", isError=True, content="HTTP 429 Too Many Requests")


class DashboardServiceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.db = await open_connection(":memory:")
        await run_migrations(self.db)
        self.engine = SyncEngine(self.db, LogReader([self.root]))
        await self.engine.load_state()
        self.dashboard = DashboardService(self.engine)
        self.changes: list[list[str]] = []
        self.dashboard.add_change_listener(lambda categories: self.changes.append(list(categories)))

    async def asyncTearDown(self) -> None:
        await self.db.close()
        self._tmp.cleanup()

    def _append(self, *lines: str) -> None:
        with open(self.root / "s1.jsonl", "a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    async def test_task_board_buckets(self) -> None:
        self._append(_spawn(0, "alpha"), _spawn(1, "beta"), _done(2, "alpha"))
        await self.engine.sync_all()
        todo = await self.dashboard.record_todo_create("Write docs", "by hand")

        board = await self.dashboard.get_tasks()

        self.assertEqual([t.id for t in board.todo], [todo.id])
        self.assertEqual([t.label for t in board.inProgress], ["beta"])
        self.assertEqual([(t.label, t.status) for t in board.done], [("alpha", TaskStatus.DONE)])
        self.assertEqual(self.changes, [["tasks"]])

    async def test_todos_are_not_filtered_by_date(self) -> None:
        self._append(_spawn(0, "alpha"))
        await self.engine.sync_all()
        await self.dashboard.record_todo_create("Write docs")

        board = await self.dashboard.get_tasks("2020-01-01")

        self.assertEqual(len(board.todo), 1)
        self.assertEqual(board.inProgress, [])

    async def test_todo_delete(self) -> None:
        todo = await self.dashboard.record_todo_create("Write docs")
        self.assertTrue(await self.dashboard.record_todo_delete(todo.id))
        self.assertFalse(await self.dashboard.record_todo_delete(todo.id))
        self.assertEqual(self.changes, [["tasks"], ["tasks"]])

    async def test_empty_state_is_empty_not_an_error(self) -> None:
        board = await self.dashboard.get_tasks()
        self.assertEqual((board.todo, board.inProgress, board.done), ([], [], []))
        self.assertEqual((await self.dashboard.get_costs()).byModel, [])
        self.assertEqual(await self.dashboard.get_activity(10), [])
        self.assertEqual(await self.dashboard.get_agents(), [])
        self.assertTrue((await self.dashboard.get_journal("2026-10-18")).is_empty())

    async def test_journal_is_cached_until_a_sync_touches_its_date(self) -> None:
        self._append(_rate_limited(0), _rate_limited(1))
        await self.engine.sync_all()
        first = await self.dashboard.get_journal("2026-10-18")
        self.assertEqual(first.struggles, [])

        self._append(_rate_limited(2))
        cached = await self.dashboard.get_journal("2026-10-18")
        self.assertEqual(cached.struggles, [])

        await self.engine.sync_all()
        refreshed = await self.dashboard.get_journal("2026-10-18")
        self.assertEqual(refreshed.struggles, ["Hit rate limits 3 times and needed multiple retries"])

    async def test_journal_cache_keeps_only_recent_dates(self) -> None:
        dashboard = DashboardService(self.engine, journal_cache_size=2)

        await dashboard.get_journal("2026-10-16")
        await dashboard.get_journal("2026-10-17")
        await dashboard.get_journal("2026-10-16")
        await dashboard.get_journal("2026-10-18")

        self.assertEqual(list(dashboard._journal_cache), ["2026-10-16", "2026-10-18"])

    async def test_journal_uses_tasks_spawned_that_day(self) -> None:
        self._append(_spawn(0, "sse-live"), _done(3, "sse-live"))
        await self.engine.sync_all()

        entry = await self.dashboard.get_journal("2026-10-18")

        self.assertEqual(entry.accomplishments, ["Built sse-live"])
        self.assertTrue(entry.narrative.startswith("Quiet Sunday. Knocked out 1 task."))
        self.assertIn("Wired up real-time features", entry.narrative)

    async def test_snapshot_is_json_ready(self) -> None:
        self._append(_spawn(0, "alpha"))
        await self.engine.sync_all()

        tasks = await self.dashboard.snapshot("tasks")

        self.assertEqual(tasks["inProgress"][0]["label"], "alpha")
        self.assertNotIn("spawnSequence", tasks["inProgress"][0])
        with self.assertRaises(ValueError):
            await self.dashboard.snapshot("bogus")


if __name__ == "__main__":
    unittest.main()
