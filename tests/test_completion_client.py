import pytest
from unittest.mock import MagicMock

from context_descriptor import ContextDescriptor, build_fingerprint
from completion_cache import CompletionCache
from completion_client import (
    CompletionClient,
    CompletionResult,
    basic_fallback_completion,
    clean_completion,
)
from error_handler import ErrorHandler


@pytest.fixture
def generator():
    return MagicMock(return_value="result = process(data)")


@pytest.fixture
def client(generator, fake_clock):
    cache = CompletionCache(clock=fake_clock)
    handler = ErrorHandler(max_retries=2, retry_interval=0.01, sleep=lambda s: None)
    with CompletionClient(generator, cache=cache, error_handler=handler, max_workers=2) as c:
        yield c


class TestCleanCompletion:

    def test_strips_code_fences(self):
        assert clean_completion("```python\nimport numpy as np\n```") == "import numpy as np"

    def test_removes_backticks(self):
        assert clean_completion("`x = 1`") == "x = 1"

    def test_drops_explanations_and_refusals(self):
        raw = "Here is the completion:\nI'm sorry, but\nfor item in data:\n    print(item)"
        assert clean_completion(raw) == "for item in data:"

    def test_takes_first_line_only(self):
        assert clean_completion("x = 1\ny = 2") == "x = 1"

    def test_truncates(self):
        assert clean_completion("x" * 400, max_length=150) == "x" * 150

    @pytest.mark.parametrize("raw", ["", None, "```\n```", "x", "The answer is below"])
    def test_nothing_usable(self, raw):
        assert clean_completion(raw) == ""


def test_basic_fallbacks():
    assert basic_fallback_completion("for i") == "for i in range(10):"
    assert basic_fallback_completion("  import n ") == "import numpy as np"
    assert basic_fallback_completion("lambda") == ""


class TestCompletionClient:

    def test_short_trigger_returns_nothing(self, client, generator):
        result = client.complete(ContextDescriptor(current_line=" x "))
        assert result == CompletionResult("", "none")
        assert not result
        generator.assert_not_called()

    def test_miss_generates_and_stores(self, client, generator, descriptor_factory):
        d = descriptor_factory("result = ")
        result = client.complete(d)

        assert result.suggestion == "result = process(data)"
        assert result.source == "generated"
        assert result.fingerprint == build_fingerprint(d)
        assert result.fingerprint in client.cache
        generator.assert_called_once_with(d)

    def test_second_request_served_from_cache(self, client, generator, descriptor_factory):
        d = descriptor_factory("result = ")
        client.complete(d)
        result = client.complete(d)

        assert result.source == "cache"
        assert result.suggestion == "result = process(data)"
        assert generator.call_count == 1

    def test_accepts_plain_mapping(self, client, generator):
        result = client.complete({"current_line": "result = ", "language": "python", "editor": "vim"})
        assert result.source == "generated"

    def test_empty_generation_uses_fallback(self, client, generator):
        generator.return_value = "```\n```"
        d = ContextDescriptor(current_line="for i", language="python", variables=["data"])
        result = client.complete(d)

        assert result.suggestion == "for i in range(10):"
        assert result.source == "fallback"
        assert client.cache.lookup(result.fingerprint, d) == "for i in range(10):"

    def test_rejected_generation_is_returned_but_not_cached(self, client, generator, descriptor_factory):
        generator.return_value = "self.super().__init__()"
        d = descriptor_factory("self.")
        result = client.complete(d)

        assert result.source == "generated"
        assert len(client.cache) == 0

    def test_comment_generation_is_not_served(self, client, generator, descriptor_factory):
        generator.return_value = "# cannot complete"
        result = client.complete(descriptor_factory("value"))
        assert result.source == "none"
        assert len(client.cache) == 0

    def test_recoverable_failure_is_retried(self, client, generator, descriptor_factory):
        generator.side_effect = [TimeoutError("slow"), "x = compute()"]
        result = client.complete(descriptor_factory("x = "))

        assert result.suggestion == "x = compute()"
        assert generator.call_count == 2

    def test_persistent_failure_returns_uncached_fallback(self, client, generator):
        generator.side_effect = ConnectionError("offline")
        d = ContextDescriptor(current_line="while", language="python")
        result = client.complete(d)

        assert result == CompletionResult("while condition:", "fallback", build_fingerprint(d))
        assert generator.call_count == 3
        assert len(client.cache) == 0

    def test_unrecoverable_failure_without_fallback(self, client, generator, descriptor_factory):
        generator.side_effect = ValueError("bad request")
        result = client.complete(descriptor_factory("value = "))

        assert result.source == "none"
        assert generator.call_count == 1
        assert client.error_handler.get_error_summary()["unrecoverable_errors"] == 1

    def test_complete_async(self, client, descriptor_factory):
        # distinct scope and language keep the requests from matching each other by similarity
        futures = [
            client.complete_async(descriptor_factory(f"value_{i} = ", current_function=f"func_{i}",
                                                     language=f"lang_{i}"))
            for i in range(5)
        ]
        results = [f.result(timeout=5) for f in futures]

        assert all(r.source == "generated" for r in results)
        assert len(client.cache) == 5

    def test_invalidate(self, client, descriptor_factory):
        client.complete(descriptor_factory("first = ", current_function="load"))
        client.complete(descriptor_factory("second = ", current_function="save"))

        assert client.invalidate("first") == 1
        assert client.invalidate() == 1
        assert len(client.cache) == 0

    def test_closed_client_rejects_async_requests(self, generator, descriptor_factory):
        client = CompletionClient(generator)
        client.close()
        with pytest.raises(RuntimeError):
            client.complete_async(descriptor_factory("x = "))


def test_uses_the_given_empty_cache(generator):
    cache = CompletionCache()
    with CompletionClient(generator, cache=cache) as client:
        assert client.cache is cache


def test_close_keeps_a_cache_passed_in(generator, descriptor_factory):
    cache = CompletionCache()
    shared = descriptor_factory("shared = ")
    cache.store(build_fingerprint(shared), "shared = load()", shared)

    with CompletionClient(generator, cache=cache) as client:
        client.complete(descriptor_factory("other = ", current_function="save"))
        assert len(cache) == 2

    assert len(cache) == 2
    assert cache.lookup(build_fingerprint(shared), shared) == "shared = load()"


def test_close_clears_a_cache_the_client_created(generator, descriptor_factory):
    client = CompletionClient(generator)
    client.complete(descriptor_factory("result = "))
    cache = client.cache
    assert len(cache) == 1

    client.close()
    assert len(cache) == 0
