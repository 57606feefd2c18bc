# tests/test_logging.py

from __future__ import annotations

import json
import logging
from pathlib import Path

from taskboard.observability.logging import JsonFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("taskboard.tasks", logging.WARNING, __file__, 1, "task.create_failed", None, None)
    record.__dict__.update(extra)
    return record


def test_json_formatter_keeps_only_extras() -> None:
    line = JsonFormatter().format(_record(category="tasks", event="task.create_failed", task_id="t1"))
    payload = json.loads(line)

    assert payload["level"] == "WARNING"
    assert payload["logger"] == "taskboard.tasks"
    assert payload["msg"] == "task.create_failed"
    assert payload["category"] == "tasks"
    assert payload["task_id"] == "t1"
    assert payload["ts"].endswith("Z")
    assert "lineno" not in payload and "taskName" not in payload


def test_setup_logging_writes_jsonl(tmp_path: Path, restore_logging) -> None:
    log_path = setup_logging("INFO", tmp_path / "logs")

    logging.getLogger("taskboard.system").info("system.start", extra={"category": "system", "event": "system.start"})
    for h in logging.getLogger().handlers:
        h.flush()

    last = json.loads(log_path.read_text(encoding="utf-8").splitlines()[-1])
    assert last["event"] == "system.start"
    assert log_path.name == "taskboard.jsonl"
