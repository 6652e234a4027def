"""Tests for configuration loading, the event bus, logging and the CLI."""

import argparse
import asyncio
import json
import logging
from pathlib import Path

import pytest

from plangraph import config as config_module
from plangraph.cli import cmd_show_plan
from plangraph.config import (
    DEFAULT_MODEL,
    GraphConfig,
    RuntimeConfig,
    get_api_key,
    get_plangraph_config,
    get_preferred_model,
    get_storage_path,
)
from plangraph.observability import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
)
from plangraph.observability.logging import (
    HumanReadableFormatter,
    StructuredFormatter,
    strip_ansi_codes,
)
from plangraph.runtime.event_bus import EventBus, EventType, ProgressPhase
from plangraph.schemas.plan import TodoSpec
from plangraph.storage.plan_store import FilePlanStore


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setenv("PLANGRAPH_CONFIG", str(path))
    return path


# === CONFIGURATION ===


class TestConfiguration:
    def test_missing_file_gives_defaults(self):
        assert get_plangraph_config() == {}
        assert get_preferred_model() == DEFAULT_MODEL
        assert get_api_key() is None

        config = GraphConfig()
        assert config.max_iterations == 50
        assert config.max_consecutive_same_node == 3
        assert config.max_revisions == 2
        assert config.max_final_revisions == 2
        assert config.max_llm_failures == 3

    def test_values_read_from_file(self, config_file, monkeypatch):
        config_file.write_text(
            json.dumps(
                {
                    "llm": {
                        "provider": "openai",
                        "model": "gpt-4o-mini",
                        "api_key_env_var": "MY_KEY",
                        "max_tokens": 512,
                    },
                    "storage_path": "~/plans-here",
                    "graph": {"max_revisions": 5, "max_iterations": 80},
                }
            )
        )
        monkeypatch.setenv("MY_KEY", "sk-test")

        runtime = RuntimeConfig()

        assert runtime.model == "openai/gpt-4o-mini"
        assert runtime.api_key == "sk-test"
        assert runtime.max_tokens == 512
        assert runtime.storage_path == Path("~/plans-here").expanduser()
        assert runtime.graph.max_revisions == 5
        assert runtime.graph.max_iterations == 80
        assert runtime.graph.max_final_revisions == 2

    def test_graph_config_reads_file_once(self, config_file, monkeypatch):
        config_file.write_text(
            json.dumps({"graph": {"max_iterations": 9, "llm_timeout_seconds": 1.5, "bogus": 1}})
        )
        reads = []
        real_reader = config_module.get_plangraph_config

        def counting_reader():
            reads.append(True)
            return real_reader()

        monkeypatch.setattr(config_module, "get_plangraph_config", counting_reader)

        config = GraphConfig.load()

        assert len(reads) == 1
        assert config.max_iterations == 9
        assert config.llm_timeout_seconds == 1.5
        assert config.max_revisions == 2
        assert GraphConfig().max_iterations == 50

    def test_non_object_graph_section_gives_defaults(self, config_file):
        config_file.write_text(json.dumps({"graph": [1, 2]}))

        assert GraphConfig.load() == GraphConfig()

    def test_unreadable_file_is_ignored(self, config_file):
        config_file.write_text("{not json")

        assert get_plangraph_config() == {}
        assert get_storage_path() == Path.home() / ".plangraph" / "plans"

    def test_non_object_file_is_ignored(self, config_file):
        config_file.write_text("[1, 2]")

        assert get_plangraph_config() == {}


# === EVENT BUS ===


class TestEventBus:
    @pytest.mark.asyncio
    async def test_subscribers_filtered_by_type_and_thread(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append((event.thread_id, event.phase))

        bus.subscribe([EventType.PROGRESS], handler, filter_thread="t1")

        await bus.emit_progress("t1", ProgressPhase.PLAN_CREATED, {"plan_id": 1})
        await bus.emit_progress("t2", ProgressPhase.PLAN_CREATED, {"plan_id": 2})
        await bus.emit_node_started("t1", "planner", 1)

        assert seen == [("t1", "plan_created")]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_break_delivery(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("handler bug")

        async def working(event):
            seen.append(event.data)

        bus.subscribe([EventType.PROGRESS], broken)
        bus.subscribe([EventType.PROGRESS], working)

        await bus.emit_progress("t1", ProgressPhase.NOTICE, {"message": "hi"})

        assert seen == [{"message": "hi"}]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(event)

        sub_id = bus.subscribe([EventType.PROGRESS], handler)
        assert bus.unsubscribe(sub_id) is True
        assert bus.unsubscribe(sub_id) is False

        await bus.emit_progress("t1", ProgressPhase.NOTICE, {})

        assert seen == []

    @pytest.mark.asyncio
    async def test_history_is_bounded_and_newest_first(self):
        bus = EventBus(max_history=3)

        for i in range(5):
            await bus.emit_progress("t1", ProgressPhase.TODO_STATUS, {"i": i})

        assert [e.data["i"] for e in bus.get_history()] == [4, 3, 2]
        assert bus.get_stats()["total_events"] == 3
        assert bus.get_stats()["events_by_type"] == {"progress": 3}


# === LOGGING ===


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("plangraph.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestTraceContext:
    def test_set_merges_fields(self):
        set_trace_context(thread_id="t1", run_id="r1")
        set_trace_context(node_id="planner")

        assert get_trace_context() == {"thread_id": "t1", "run_id": "r1", "node_id": "planner"}

        clear_trace_context()
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_concurrent_tasks_do_not_share_context(self):
        async def worker(thread_id):
            set_trace_context(thread_id=thread_id)
            await asyncio.sleep(0)
            return get_trace_context()["thread_id"]

        results = await asyncio.gather(worker("a"), worker("b"))

        assert results == ["a", "b"]


class TestFormatters:
    def test_structured_includes_context_and_extras(self):
        set_trace_context(thread_id="t1", node_id="critic")

        line = StructuredFormatter().format(
            make_record("\033[32m✓ approved\033[0m", plan_id=7, event="critic_decision")
        )

        entry = json.loads(line)
        assert entry["message"] == "✓ approved"
        assert entry["level"] == "info"
        assert entry["thread_id"] == "t1"
        assert entry["node_id"] == "critic"
        assert entry["plan_id"] == 7
        assert entry["event"] == "critic_decision"

    def test_human_readable_prefix(self):
        set_trace_context(thread_id="t1", node_id="executor")

        line = strip_ansi_codes(HumanReadableFormatter().format(make_record("Working")))

        assert line == "[INFO    ] [thread:t1 | node:executor] Working"

    def test_configure_logging_installs_one_handler(self, monkeypatch):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.setenv("LOG_FORMAT", "json")
        try:
            configure_logging(level="debug")

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert root.level == logging.DEBUG
            assert logging.getLogger("LiteLLM").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


# === CLI ===


def show_plan_args(store: Path, **overrides) -> argparse.Namespace:
    values = {"thread": "t1", "store": str(store), "plan": None, "events": False, "json": False}
    values.update(overrides)
    return argparse.Namespace(**values)


class TestShowPlanCommand:
    @pytest.fixture
    def plan_dir(self, tmp_path):
        async def seed():
            store = FilePlanStore(tmp_path)
            specs = [TodoSpec(title="fetch data"), TodoSpec(title="summarize", order_index=1)]
            await store.create_plan("t1", {"goal": "Weekly report"}, specs)

        asyncio.run(seed())
        return tmp_path

    def test_prints_plan_and_todos(self, plan_dir, capsys):
        assert cmd_show_plan(show_plan_args(plan_dir, events=True)) == 0

        out = capsys.readouterr().out
        assert "Plan 1 (revision 1, active): Weekly report" in out
        assert "[pending    ] fetch data" in out
        assert "Events:" in out
        assert "created" in out

    def test_json_output(self, plan_dir, capsys):
        assert cmd_show_plan(show_plan_args(plan_dir, json=True)) == 0

        document = json.loads(capsys.readouterr().out)
        assert [t["title"] for t in document["todos"]] == ["fetch data", "summarize"]

    def test_unknown_thread(self, plan_dir, capsys):
        assert cmd_show_plan(show_plan_args(plan_dir, thread="nobody")) == 1
        assert "No plans for thread 'nobody'" in capsys.readouterr().out

    def test_unknown_plan(self, plan_dir, capsys):
        assert cmd_show_plan(show_plan_args(plan_dir, plan=42)) == 1
        assert "Plan 42 not found" in capsys.readouterr().out
