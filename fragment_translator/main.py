"""Command-line entry point for fragment translation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from rich.progress import BarColumn, Progress, TextColumn

from fragment_translator import config
from fragment_translator.core.cache import TranslationCache
from fragment_translator.core.translation_queue import TranslationQueue
from fragment_translator.core.transport import OpenAITransport
from fragment_translator.utils.rich_logging import (
    configure_logging,
    get_console,
    print_run_summary,
)
from fragment_translator.utils.text_preprocessor import (
    TextPreprocessor,
    normalize_text,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Translate blank-line separated text fragments with an LLM."
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("-i", "--input", help="input file of fragments")
    source.add_argument(
        "--clipboard",
        action="store_true",
        help="read fragments from the clipboard and copy the result back",
    )
    parser.add_argument("-o", "--output", help="output file (default: stdout)")
    parser.add_argument(
        "-c", "--context", default="", help="document title passed as context"
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


async def translate_fragments(
    queue: TranslationQueue, fragments: list[str], context: str
) -> tuple[list[str], int]:
    """Enqueue every fragment and collect results in input order.

    Returns the translations and the number of fragments that failed; a
    failed fragment is kept in its source form.
    """
    futures = [queue.enqueue(fragment, context) for fragment in fragments]
    results: list[str] = []
    failures = 0

    with Progress(
        TextColumn("[bold cyan]Translating"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=get_console(),
        transient=True,
    ) as progress:
        task_id = progress.add_task("translate", total=len(futures))
        waiting = set(futures)
        while waiting:
            done, waiting = await asyncio.wait(
                waiting, return_when=asyncio.FIRST_COMPLETED
            )
            progress.advance(task_id, len(done))

    for fragment, future in zip(fragments, futures, strict=True):
        if future.exception() is not None:
            logger.warning("Fragment failed, keeping source: %.60s", fragment)
            results.append(fragment)
            failures += 1
        else:
            results.append(future.result())
    return results, failures


async def run(args: argparse.Namespace) -> int:
    preprocessor = TextPreprocessor()
    if args.clipboard:
        fragments = preprocessor.read_clipboard()
    else:
        fragments = preprocessor.read_file(args.input)
    fragments = [normalize_text(fragment) for fragment in fragments]

    if not fragments:
        logger.warning("No fragments to translate.")
        return 0

    cache = TranslationCache()
    if config.CACHE_FILE:
        cache.load(config.CACHE_FILE)

    async with TranslationQueue(transport=OpenAITransport(), cache=cache) as queue:
        results, failures = await translate_fragments(queue, fragments, args.context)
        metrics = queue.get_metrics()

    if config.CACHE_FILE:
        cache.save(config.CACHE_FILE)

    if args.clipboard:
        preprocessor.write_clipboard(results)
    elif args.output:
        preprocessor.write_file(args.output, results)
    else:
        sys.stdout.write("\n\n".join(results) + "\n")

    print_run_summary(metrics, failures)
    if failures > 0:
        logger.warning("Some fragments failed to translate. Check the log and retry.")
        return 2
    return 0


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    if not os.environ.get("OPENAI_API_KEY"):
        logger.error("OPENAI_API_KEY is not set.")
        logger.error("Add OPENAI_API_KEY to the .env file or export it directly.")
        sys.exit(1)

    try:
        exit_code = asyncio.run(run(args))
    except FileNotFoundError:
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error during translation")
        sys.exit(1)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
