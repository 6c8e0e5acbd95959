"""
Command-line entry point for the completion cache.

Sub-commands:

* ``complete``  - run one completion request through a fresh client
* ``replay``    - feed a file of requests through one client and report cache behaviour
* ``config``    - show, read or change the JSON configuration
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config_manager import ConfigManager
from context_descriptor import ContextDescriptor, descriptor_from_dict
from completion_cache import CompletionCache
from completion_client import CompletionClient, CompletionResult
from groq_client import GroqClient
from logger_config import get_logger, get_logger_config

logger = get_logger("completion.cli", "system")

SOURCE_STYLES = {"cache": "green", "generated": "cyan", "fallback": "yellow", "none": "dim"}


def _offline_generator(descriptor: ContextDescriptor) -> str:
    """Generator used with --no-groq: always empty, so the client falls back."""
    return ""


def _add_global_flags(p: argparse.ArgumentParser) -> None:
    """Attach global CLI flags to parser *p*."""
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    p.add_argument("--quiet", "-q", action="store_true", help="Only show warnings and errors")
    p.add_argument("--config", type=str, help="Path to the JSON configuration file")
    p.add_argument("--format", "-f", choices=["json", "text"], default="text", help="Output format")


def _add_request_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("--no-groq", action="store_true", help="Do not call the generation API")
    p.add_argument("--threshold", type=float, help="Override the cache similarity threshold")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="completion-cache",
                                description="Context-aware cache for inline code completions")
    _add_global_flags(p)
    sub = p.add_subparsers(dest="command", required=True)

    complete = sub.add_parser("complete", help="Complete a single line")
    complete.add_argument("--line", required=True, help="Current line up to the cursor")
    complete.add_argument("--function", default="", help="Enclosing function name")
    complete.add_argument("--class", dest="current_class", default="", help="Enclosing class name")
    complete.add_argument("--language", default="python")
    complete.add_argument("--var", dest="variables", action="append", default=[], help="Variable in scope (repeatable)")
    complete.add_argument("--import", dest="imports", action="append", default=[], help="Import line (repeatable)")
    complete.add_argument("--line-number", type=int, default=0)
    _add_request_flags(complete)

    replay = sub.add_parser("replay", help="Replay a JSON or JSON-lines file of requests")
    replay.add_argument("file", type=str)
    _add_request_flags(replay)

    config = sub.add_parser("config", help="Inspect or change configuration")
    config_sub = config.add_subparsers(dest="action", required=True)
    config_sub.add_parser("show", help="Print the configuration with secrets masked")
    get = config_sub.add_parser("get", help="Print one value")
    get.add_argument("key")
    set_ = config_sub.add_parser("set", help="Set one value and save")
    set_.add_argument("key")
    set_.add_argument("value")

    return p


def _setup_logging(args: argparse.Namespace, config: ConfigManager) -> None:
    level_name = str(config.get("logging.level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    console_level = logging.WARNING
    if args.verbose:
        level = console_level = logging.DEBUG
    elif args.quiet:
        level = console_level = logging.WARNING
    get_logger_config().update_levels(log_level=level, console_level=console_level)


def _load_requests(path: Path) -> List[Dict[str, Any]]:
    """Read requests from a JSON list or from one JSON object per line."""
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    if isinstance(data, dict):
        return [data]
    return list(data)


def _build_client(args: argparse.Namespace, config: ConfigManager) -> CompletionClient:
    if args.threshold is not None:
        config.set("cache.similarity_threshold", args.threshold, save=False)
    generator = _offline_generator if args.no_groq else GroqClient.from_config(config)
    return CompletionClient(generator, cache=CompletionCache.from_config(config), config_manager=config)


def _result_dict(descriptor: ContextDescriptor, result: CompletionResult) -> Dict[str, Any]:
    return {
        "line": descriptor.current_line,
        "suggestion": result.suggestion,
        "source": result.source,
        "fingerprint": result.fingerprint,
    }


def _run_complete(args: argparse.Namespace, config: ConfigManager, console: Console) -> int:
    descriptor = ContextDescriptor(
        current_line=args.line,
        current_function=args.function,
        current_class=args.current_class,
        language=args.language,
        variables=args.variables,
        imports=args.imports,
        line_number=args.line_number,
    )
    with _build_client(args, config) as client:
        result = client.complete(descriptor)

    if args.format == "json":
        print(json.dumps(_result_dict(descriptor, result), ensure_ascii=False, indent=2))
    else:
        style = SOURCE_STYLES.get(result.source, "")
        console.print(f"[{style}]{result.source}[/{style}] {escape(result.suggestion)}", highlight=False)
    return 0


def _run_replay(args: argparse.Namespace, config: ConfigManager, console: Console) -> int:
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"Request file not found: {path}")
        return 1
    try:
        requests = _load_requests(path)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid request file {path}: {e}")
        return 1

    rows = []
    with _build_client(args, config) as client:
        for item in requests:
            descriptor = descriptor_from_dict(item)
            rows.append(_result_dict(descriptor, client.complete(descriptor)))
        stats = client.cache.stats()
        metrics = client.cache.metrics()

    if args.format == "json":
        print(json.dumps({"results": rows, "stats": stats.to_dict(), "metrics": metrics},
                         ensure_ascii=False, indent=2))
        return 0

    table = Table(title=f"Replayed {len(rows)} requests")
    table.add_column("#", justify="right")
    table.add_column("Line")
    table.add_column("Source")
    table.add_column("Suggestion")
    for i, row in enumerate(rows, 1):
        style = SOURCE_STYLES.get(row["source"], "")
        table.add_row(str(i), escape(row["line"]), f"[{style}]{row['source']}[/{style}]", escape(row["suggestion"]))
    console.print(table)

    summary = Table(title="Cache")
    summary.add_column("Metric")
    summary.add_column("Value", justify="right")
    for name, value in {**stats.to_dict(), **metrics}.items():
        summary.add_row(name, f"{value:.2f}" if isinstance(value, float) else str(value))
    console.print(summary)
    return 0


def _run_config(args: argparse.Namespace, config: ConfigManager) -> int:
    if args.action == "show":
        print(str(config))
    elif args.action == "get":
        print(json.dumps(config.get(args.key), ensure_ascii=False))
    else:
        try:
            config.set(args.key, ConfigManager.parse_value(args.value))
        except ValueError as e:
            logger.error(str(e))
            return 1
        print(json.dumps({args.key: config.get(args.key)}, ensure_ascii=False))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    config = ConfigManager(args.config)
    _setup_logging(args, config)
    console = Console()

    if args.command == "complete":
        return _run_complete(args, config, console)
    if args.command == "replay":
        return _run_replay(args, config, console)
    return _run_config(args, config)


if __name__ == "__main__":
    sys.exit(main())
