"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import threading
from pathlib import Path

from sonar_coord.core import CoordDB
from sonar_coord.filters import IssueFilter
from sonar_coord.logging import setup_logging
from tests._factory import SCENARIO_BATCH


def _records(log_path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in log_path.read_text().splitlines() if line.strip()]


class TestSetupLogging:
    def test_creates_log_file(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("test_message", extra={"op": "test", "args_data": {"key": "val"}})
        for handler in logger.handlers:
            handler.flush()
        log_path = tmp_path / "coord.log"
        assert log_path.exists()
        record = _records(log_path)[-1]
        assert record["msg"] == "test_message"
        assert record["op"] == "test"
        assert record["args"] == {"key": "val"}

    def test_json_format(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("formatted", extra={"op": "lock", "duration_ms": 42.5, "error": "boom"})
        for handler in logger.handlers:
            handler.flush()
        record = _records(tmp_path / "coord.log")[-1]
        assert record["duration_ms"] == 42.5
        assert record["error"] == "boom"
        assert record["level"] == "INFO"
        assert record["logger"] == "sonar_coord"

    def test_idempotent_setup(self, tmp_path: Path) -> None:
        logger1 = setup_logging(tmp_path)
        logger2 = setup_logging(tmp_path)
        assert logger1 is logger2
        assert len(logger1.handlers) == 1

    def test_switching_projects_replaces_handler(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        setup_logging(tmp_path / "a")
        logger = setup_logging(tmp_path / "b")
        assert len(logger.handlers) == 1
        assert logger.handlers[0].baseFilename == os.path.abspath(str(tmp_path / "b" / "coord.log"))  # type: ignore[attr-defined]

    def test_no_duplicate_handlers_under_concurrency(self, tmp_path: Path) -> None:
        results: list[logging.Logger] = []
        barrier = threading.Barrier(4)

        def call_setup() -> None:
            barrier.wait()
            results.append(setup_logging(tmp_path))

        threads = [threading.Thread(target=call_setup) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert all(r is results[0] for r in results)
        logger = logging.getLogger("sonar_coord")
        file_handlers = [
            h
            for h in logger.handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
            and h.baseFilename == os.path.abspath(str(tmp_path / "coord.log"))
        ]
        assert len(file_handlers) == 1, f"Expected 1 handler, got {len(file_handlers)}"

    def test_operations_are_logged(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        with CoordDB(tmp_path / "issues.db") as db:
            db.initialize()
            db.reconcile(SCENARIO_BATCH)
            db.lock(IssueFilter(rule="java:S2095"), "worker-1")
            db.resolve(IssueFilter(rule="java:S2095"), "worker-1")
        for handler in logger.handlers:
            handler.flush()
        ops = [r.get("op") for r in _records(tmp_path / "coord.log")]
        assert ops == ["reconcile", "lock", "resolve"]

    def test_holder_and_group_are_top_level(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        with CoordDB(tmp_path / "issues.db") as db:
            db.initialize()
            db.reconcile(SCENARIO_BATCH)
            db.lock(IssueFilter(rule="java:S2095"), "worker-1")
        for handler in logger.handlers:
            handler.flush()
        records = _records(tmp_path / "coord.log")
        [lock_record] = [r for r in records if r.get("op") == "lock"]
        assert lock_record["holder"] == "worker-1"
        assert lock_record["group"] == IssueFilter(rule="java:S2095").canonical()
        assert lock_record["args"] == {"claimed": 2, "already_held": 0, "conflicts": 0}
        [sync_record] = [r for r in records if r.get("op") == "reconcile"]
        assert "holder" not in sync_record
        assert "group" not in sync_record

    def test_none_extras_are_omitted(self, tmp_path: Path) -> None:
        logger = setup_logging(tmp_path)
        logger.info("tool_call", extra={"op": "query_issues", "holder": None})
        for handler in logger.handlers:
            handler.flush()
        record = _records(tmp_path / "coord.log")[-1]
        assert record["op"] == "query_issues"
        assert "holder" not in record

    def teardown_method(self) -> None:
        """Clean up the sonar_coord logger handlers between tests."""
        logger = logging.getLogger("sonar_coord")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
