"""
Completion client: consults the cache around the expensive generation call.

The client holds a :class:`CompletionCache` handle and owns a small thread
pool for asynchronous requests; there is no process-wide cache instance. Create a
client per editor session and close it (or use it as a context manager) when
the session ends.
"""
import re
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Union

from context_descriptor import ContextDescriptor, build_fingerprint, descriptor_from_dict
from completion_cache import CompletionCache
from error_handler import ErrorHandler
from logger_config import get_logger, log_performance, LogContext

logger = get_logger("completion.client", "client")

SOURCE_CACHE = "cache"
SOURCE_GENERATED = "generated"
SOURCE_FALLBACK = "fallback"
SOURCE_NONE = "none"

DEFAULT_MAX_SUGGESTION_LENGTH = 150
DEFAULT_MIN_TRIGGER_LENGTH = 2

_CODE_FENCES = ("```python", "```kotlin", "```java", "```javascript", "```typescript", "```")
_CHATTER_PREFIXES = ("Here", "This", "The", "//")
_REFUSALS = ("I cannot", "I'm sorry")
_CODE_CHARACTERS = re.compile(r"[a-zA-Z0-9_=()\[\].:{}\-<>\"'\s]")

# Common trigger lines and their canned completions
BASIC_FALLBACKS = {
    "def v": "def validate(self):",
    "def": "def process(self):",
    "class": "class DataProcessor:",
    "import t": "import torch",
    "import n": "import numpy as np",
    "import p": "import pandas as pd",
    "for i": "for i in range(10):",
    "for": "for item in data:",
    "if": "if condition:",
    "while": "while condition:",
    "try": "try:",
    "with": "with open('file.txt') as f:",
}


@dataclass(frozen=True)
class CompletionResult:
    suggestion: str
    source: str
    fingerprint: str = ""

    def __bool__(self) -> bool:
        return bool(self.suggestion)


def clean_completion(raw: str, max_length: int = DEFAULT_MAX_SUGGESTION_LENGTH) -> str:
    """
    Reduce raw model output to a single suggested line.

    Strips markdown fences and back-ticks, drops explanatory or refusal lines
    and keeps the first remaining line, truncated to *max_length*.

    Args:
        raw: Text returned by the generator
        max_length: Maximum length of the returned line

    Returns:
        Cleaned suggestion, or an empty string if nothing usable remains
    """
    cleaned = raw or ""
    for fence in _CODE_FENCES:
        cleaned = cleaned.replace(fence, "")
    cleaned = cleaned.replace("`", "").strip()
    if not cleaned:
        return ""

    lines = [
        line for line in cleaned.split("\n")
        if line.strip()
        and not line.strip().startswith(_CHATTER_PREFIXES)
        and not any(refusal in line for refusal in _REFUSALS)
    ]
    if not lines:
        return ""

    first_line = lines[0].strip()
    if len(first_line) < 2:
        return ""
    if not _CODE_CHARACTERS.search(first_line):
        logger.debug(f"Content filtered out - validation failed: '{first_line}'")
        return ""
    return first_line[:max_length]


def basic_fallback_completion(current_line: str) -> str:
    """Canned completion for a handful of common trigger lines."""
    return BASIC_FALLBACKS.get(current_line.strip(), "")


class CompletionClient:
    """
    Serves completion requests from the cache, generating on a miss.

    Args:
        generator: Callable turning a descriptor into raw suggestion text
            (for example a :class:`groq_client.GroqClient`)
        cache: Cache handle; a default-sized cache is created if None.
            A cache passed in stays usable after :py:meth:`close`
        config_manager: Optional ConfigManager supplying ``client.*`` settings
        error_handler: Retry policy for the generator
        max_workers: Thread pool size for :py:meth:`complete_async`
    """

    def __init__(self,
                 generator: Callable[[ContextDescriptor], str],
                 cache: Optional[CompletionCache] = None,
                 config_manager=None,
                 error_handler: Optional[ErrorHandler] = None,
                 max_workers: Optional[int] = None):
        self.generator = generator
        # Only a cache created here is cleared on close
        self._owns_cache = cache is None

        if config_manager is not None:
            self.cache = cache if cache is not None else CompletionCache.from_config(config_manager)
            self.error_handler = error_handler if error_handler is not None else ErrorHandler.from_config(config_manager)
            self.min_trigger_length = int(config_manager.get("client.min_trigger_length",
                                                             DEFAULT_MIN_TRIGGER_LENGTH))
            self.max_suggestion_length = int(config_manager.get("client.max_suggestion_length",
                                                                DEFAULT_MAX_SUGGESTION_LENGTH))
            max_workers = max_workers or int(config_manager.get("client.max_workers", 4))
        else:
            self.cache = cache if cache is not None else CompletionCache()
            self.error_handler = error_handler if error_handler is not None else ErrorHandler()
            self.min_trigger_length = DEFAULT_MIN_TRIGGER_LENGTH
            self.max_suggestion_length = DEFAULT_MAX_SUGGESTION_LENGTH

        self._executor = ThreadPoolExecutor(max_workers=max_workers or 4,
                                            thread_name_prefix="completion")
        self._closed = False

    def _generate(self, descriptor: ContextDescriptor) -> Optional[str]:
        """Run the generator with retries; None when every attempt failed."""
        success, outcome = self.error_handler.retry_operation(self.generator, args=(descriptor,))
        if not success:
            logger.warning(f"Generation failed: {type(outcome).__name__}: {outcome}")
            return None
        return clean_completion(outcome or "", self.max_suggestion_length)

    @log_performance()
    def complete(self, descriptor: Union[ContextDescriptor, dict]) -> CompletionResult:
        """
        Produce a suggestion for a request.

        Args:
            descriptor: Context of the request (a descriptor or a plain mapping)

        Returns:
            CompletionResult naming where the suggestion came from
        """
        if isinstance(descriptor, dict):
            descriptor = descriptor_from_dict(descriptor)

        trigger = descriptor.current_line.strip()
        if len(trigger) < self.min_trigger_length:
            return CompletionResult("", SOURCE_NONE)

        fingerprint = build_fingerprint(descriptor)
        with LogContext(fingerprint=fingerprint):
            cached = self.cache.lookup(fingerprint, descriptor)
            if cached is not None:
                return CompletionResult(cached, SOURCE_CACHE, fingerprint)

            suggestion = self._generate(descriptor)
            if suggestion is None:
                # Generation errored out: offer a canned line but do not cache it
                fallback = basic_fallback_completion(trigger)
                return CompletionResult(fallback, SOURCE_FALLBACK if fallback else SOURCE_NONE, fingerprint)

            source = SOURCE_GENERATED
            if not suggestion:
                suggestion = basic_fallback_completion(trigger)
                source = SOURCE_FALLBACK

            if not suggestion or suggestion.startswith("#"):
                logger.info(f"No completion available for: '{trigger}'")
                return CompletionResult("", SOURCE_NONE, fingerprint)

            self.cache.store(fingerprint, suggestion, descriptor)
            return CompletionResult(suggestion, source, fingerprint)

    def complete_async(self, descriptor: Union[ContextDescriptor, dict]) -> "Future[CompletionResult]":
        """Schedule :py:meth:`complete` on the client's thread pool."""
        if self._closed:
            raise RuntimeError("CompletionClient is closed")
        return self._executor.submit(self.complete, descriptor)

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Drop cached suggestions, all of them or those whose fingerprint contains *pattern*."""
        if pattern is None:
            return self.cache.invalidate_all()
        return self.cache.invalidate_by_pattern(pattern)

    def close(self) -> None:
        """
        Wait for pending requests, then release the thread pool.

        A cache the client created itself is cleared; a cache passed in by
        the caller is left as it is.
        """
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        if self._owns_cache:
            self.cache.invalidate_all()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
