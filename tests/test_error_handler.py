import pytest
from unittest.mock import MagicMock

from error_handler import ErrorHandler


class RateLimitError(Exception):
    """Stand-in with the same class name as the SDK's rate limit error."""


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def handler(sleeps):
    return ErrorHandler(max_retries=3, retry_interval=0.5, sleep=sleeps.append)


def test_success_without_retry(handler, sleeps):
    success, result = handler.retry_operation(lambda a, b: a + b, args=(2, 3))
    assert success is True
    assert result == 5
    assert sleeps == []
    assert handler.get_error_summary()["total_errors"] == 0


def test_retries_recoverable_errors_with_backoff(handler, sleeps):
    operation = MagicMock(side_effect=[TimeoutError("t"), ConnectionError("c"), "done"])
    success, result = handler.retry_operation(operation, kwargs={"line": "x"})

    assert (success, result) == (True, "done")
    assert operation.call_count == 3
    operation.assert_called_with(line="x")
    assert sleeps == [0.5, 1.0]


def test_gives_up_after_max_retries(handler, sleeps):
    error = TimeoutError("still slow")
    operation = MagicMock(side_effect=error)
    success, result = handler.retry_operation(operation)

    assert success is False
    assert result is error
    assert operation.call_count == 4
    assert sleeps == [0.5, 1.0, 2.0]


def test_unrecoverable_error_not_retried(handler, sleeps):
    operation = MagicMock(side_effect=KeyError("missing"))
    success, result = handler.retry_operation(operation)

    assert success is False
    assert isinstance(result, KeyError)
    assert operation.call_count == 1
    assert sleeps == []


def test_recoverable_by_name(handler):
    assert handler.is_recoverable(RateLimitError("429"))
    assert not handler.is_recoverable(ValueError("bad"))


def test_should_retry_respects_limit(handler):
    assert handler.should_retry(TimeoutError(), 2)
    assert not handler.should_retry(TimeoutError(), 3)
    assert not handler.should_retry(ValueError(), 0)


def test_zero_retries():
    handler = ErrorHandler(max_retries=0, sleep=lambda s: None)
    operation = MagicMock(side_effect=TimeoutError())
    success, _ = handler.retry_operation(operation)
    assert not success
    assert operation.call_count == 1


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        ErrorHandler(max_retries=-1)


def test_error_summary_and_reset(handler):
    handler.handle_error(TimeoutError("a"), {"fingerprint": "k1"})
    handler.handle_error(ValueError("b"))

    summary = handler.get_error_summary()
    assert summary["total_errors"] == 2
    assert summary["error_count_by_type"] == {"TimeoutError": 1, "ValueError": 1}
    assert summary["recoverable_errors"] == 1
    assert summary["unrecoverable_errors"] == 1
    assert summary["latest_error"]["error_message"] == "b"

    handler.reset()
    assert handler.get_error_summary()["latest_error"] is None


def test_recorded_details_are_bounded():
    handler = ErrorHandler(max_recorded=3)
    for i in range(5):
        handler.handle_error(ValueError(str(i)))

    assert len(handler.error_details) == 3
    assert handler.error_details[0]["error_message"] == "2"
    assert handler.get_error_summary()["total_errors"] == 5


def test_from_config():
    config = MagicMock()
    config.get.side_effect = lambda key, default=None: {"client.max_retries": 5,
                                                        "client.retry_interval": 0.1}.get(key, default)
    handler = ErrorHandler.from_config(config)
    assert handler.max_retries == 5
    assert handler.retry_interval == 0.1
