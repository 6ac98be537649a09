from __future__ import annotations

import re

from orchestrator.log_collector import LogCollector


def test_render_joins_formatted_lines() -> None:
    logs = LogCollector()
    logs.execution_started(3, 2)
    logs.step_failed(1, 0, "Click Submit", "element not found")

    rendered = logs.render()

    lines = rendered.split("\n")
    assert len(lines) == 2
    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\] \[INFO\] Starting replay: 3 steps x 2 rows$", lines[0])
    assert lines[1].endswith("[ERROR] Step 2 failed: Click Submit: element not found")


def test_debug_is_dropped_unless_enabled() -> None:
    quiet = LogCollector()
    verbose = LogCollector(include_debug=True)

    quiet.step_started(0, 0, "Click")
    verbose.step_started(0, 0, "Click")

    assert len(quiet) == 0
    assert len(verbose) == 1


def test_entries_are_bounded() -> None:
    logs = LogCollector(max_entries=3)
    for index in range(5):
        logs.info(f"message {index}")

    assert [entry.message for entry in logs.entries] == ["message 2", "message 3", "message 4"]


def test_filter_and_stats() -> None:
    logs = LogCollector()
    logs.step_passed(0, 0, "Click A", 12)
    logs.step_skipped(1, 0, "Type B")
    logs.step_passed(0, 1, "Click A", 9)

    assert len(logs.filter(levels=["success"])) == 2
    assert len(logs.filter(row_index=1)) == 1
    assert len(logs.filter(text="type b")) == 1
    stats = logs.stats()
    assert stats["success"] == 2 and stats["warning"] == 1 and stats["total"] == 3


def test_subscribers_receive_entries() -> None:
    logs = LogCollector()
    received = []
    logs.subscribe(lambda event: received.append(event.payload["message"]))

    logs.warning("careful")

    assert received == ["careful"]
