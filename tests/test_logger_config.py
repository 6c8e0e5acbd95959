import json
import logging
import threading

import pytest

from logger_config import (
    JsonFormatter,
    LogContext,
    get_logger,
    get_logger_config,
    log_performance,
    memory_handler,
)
from context_descriptor import ContextDescriptor
from completion_cache import CompletionCache


@pytest.fixture
def captured():
    config = get_logger_config()
    config.update_levels(log_level=logging.DEBUG)
    memory_handler.clear()
    yield memory_handler
    config.update_levels(log_level=logging.INFO)
    memory_handler.clear()


def test_logger_config_is_singleton():
    assert get_logger_config() is get_logger_config()
    assert memory_handler in logging.getLogger().handlers


def test_cache_operations_are_logged(captured):
    cache = CompletionCache()
    d = ContextDescriptor(current_line="x = ", language="python")
    cache.store("k1", "x = 1", d)
    cache.lookup("k1", d)
    cache.store("k2", "pring(x)", d)

    messages = captured.get_messages()
    assert any(m.startswith("Cache STORE: k1") for m in messages)
    assert any(m.startswith("Cache HIT (exact): k1") for m in messages)
    assert any(m.startswith("Cache SKIP") for m in messages)


def test_log_context_attaches_fields(captured):
    logger = get_logger("completion.test.context", "system")
    with LogContext(fingerprint="abc"):
        logger.info("inside")
    logger.info("outside")

    records = {r.getMessage(): r for r in captured.records}
    assert records["inside"].fingerprint == "abc"
    assert not hasattr(records["outside"], "fingerprint")
    assert records["inside"].run_id == get_logger_config().run_id


def test_log_context_is_thread_local(captured):
    logger = get_logger("completion.test.threads", "system")

    def worker():
        logger.info("from worker")

    with LogContext(fingerprint="main-only"):
        t = threading.Thread(target=worker)
        t.start()
        t.join()

    record = next(r for r in captured.records if r.getMessage() == "from worker")
    assert not hasattr(record, "fingerprint")


def test_log_performance_decorator(captured):
    @log_performance()
    def add(a, b):
        return a + b

    assert add(1, 2) == 3
    assert any("executed in" in m and "add" in m for m in captured.get_messages())


def test_log_performance_reraises(captured):
    @log_performance()
    def broken():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        broken()
    assert any("Exception in" in m and "boom" in m for m in captured.get_messages())


def test_json_formatter_includes_extras():
    record = logging.LogRecord("completion.cache", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.fingerprint = "k1"
    record.entries = [1, 2]

    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["fingerprint"] == "k1"
    assert payload["entries"] == "[1, 2]"
