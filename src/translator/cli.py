"""Command-line entry point: translate one SRT file and report progress."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

from common.config import settings
from common.logging_config import setup_cli_logging
from common.schemas import JobEventType, JobResult, JobStatus, TranslationEvent
from common.string_utils import mask_secret, slugify_language
from translator.cancellation import CancellationToken
from translator.errors import JobValidationError
from translator.translation_orchestrator import build_job_config, translate_srt
from translator.translation_service import create_translation_client

EXIT_OK = 0
EXIT_INCOMPLETE = 1
EXIT_INVALID_INPUT = 2


# Color codes for terminal output
class Colors:
    BLUE = "\033[0;34m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[0;33m"
    RED = "\033[0;31m"
    NC = "\033[0m"


def print_info(message: str) -> None:
    """Print info message in blue"""
    print(f"{Colors.BLUE}ℹ {message}{Colors.NC}")


def print_success(message: str) -> None:
    """Print success message in green"""
    print(f"{Colors.GREEN}✓ {message}{Colors.NC}")


def print_warning(message: str) -> None:
    """Print warning message in yellow"""
    print(f"{Colors.YELLOW}⚠ {message}{Colors.NC}")


def print_error(message: str) -> None:
    """Print error message in red"""
    print(f"{Colors.RED}✗ {message}{Colors.NC}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="srt-translate",
        description="Translate an SRT subtitle file with a remote LLM, batch by batch.",
    )
    parser.add_argument("input", type=Path, help="SRT file to translate")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output file (default: <input stem>.<language>.srt next to the input)",
    )
    parser.add_argument(
        "-l",
        "--language",
        default=None,
        help=f"Target language (default: {settings.translation_target_language})",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Provider API key (default: GEMINI_API_KEY / OPENAI_API_KEY)",
    )
    parser.add_argument(
        "--provider",
        choices=["gemini", "openai"],
        default=None,
        help=f"Translation provider (default: {settings.translation_provider})",
    )
    parser.add_argument(
        "--base-delay",
        type=int,
        default=None,
        metavar="MS",
        help="Base delay in milliseconds, minimum 100 "
        f"(default: {settings.translation_base_delay_ms})",
    )
    parser.add_argument(
        "--quota-delay",
        type=int,
        default=None,
        metavar="MS",
        help="Quota delay in milliseconds, minimum 1000 "
        f"(default: {settings.translation_quota_delay_ms})",
    )
    parser.add_argument(
        "--chunks",
        type=int,
        default=None,
        help=f"Number of batches (default: {settings.translation_chunk_count})",
    )
    parser.add_argument(
        "--no-pacing",
        action="store_true",
        help="Do not wait base delay between successful batches",
    )
    parser.add_argument("--log-level", default=None, help="Log level override")
    parser.add_argument(
        "--log-file", action="store_true", help="Also write logs to ./logs/"
    )
    return parser


def default_output_path(input_path: Path, language: str) -> Path:
    """<stem>.<language-slug>.srt next to the input file."""
    return input_path.with_name(f"{input_path.stem}.{slugify_language(language)}.srt")


class ProgressRenderer:
    """Renders engine events on the terminal."""

    def __call__(self, event: TranslationEvent) -> None:
        payload = event.payload
        if event.event_type == JobEventType.PROGRESS:
            print_info(
                f"{payload['percentage']}% Complete "
                f"({payload['batches_completed']}/{payload['batches_total']} batches, "
                f"{payload['entries_completed']}/{payload['entries_total']} entries)"
            )
        elif event.event_type == JobEventType.RETRY_SCHEDULED:
            seconds = payload["delay_seconds"]
            if payload["state"] == "quota_wait":
                print_warning(
                    f"Quota exceeded. Retrying batch {event.batch_label} in {seconds:.0f}s..."
                )
            else:
                print_warning(
                    f"Batch {event.batch_label}: {payload['reason']}. "
                    f"Retrying in {seconds:.1f}s..."
                )
        elif event.event_type == JobEventType.BATCH_SPLIT:
            print_warning(
                f"Batch {event.batch_label} keeps mismatching; split into "
                f"{', '.join(payload['sub_batches'])}"
            )
        elif event.event_type == JobEventType.BATCH_FAILED:
            print_error(
                f"Failed batch {event.batch_label}: {payload['reason']}. Continuing..."
            )
        elif event.event_type == JobEventType.JOB_CANCELLED:
            print_warning("Translation cancelled")


def print_report(result: JobResult, output_path: Path) -> None:
    report = result.report
    print_info(
        f"Wrote {output_path} ({report.translated_entries} of "
        f"{report.total_entries} entries translated)"
    )
    if result.status == JobStatus.COMPLETED:
        print_success("All entries translated successfully!")
        return
    for failure in report.failed_batches:
        print_error(
            f"Batch {failure.batch_label} ({failure.entry_count} entries): {failure.reason}"
        )
    for skipped in report.not_attempted_batches:
        print_warning(f"Batch {skipped.batch_label} ({skipped.entry_count} entries): not attempted")
    print_warning(report.summary())


def install_signal_handlers(token: CancellationToken) -> None:
    """Route SIGINT/SIGTERM to cooperative cancellation."""
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                signum, token.cancel, f"received {signal.Signals(signum).name}"
            )
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on some platforms (e.g. Windows)
            pass


async def run_cli(args: argparse.Namespace) -> int:
    logger = setup_cli_logging(log_level=args.log_level, log_to_file=args.log_file)

    provider = args.provider or settings.translation_provider
    try:
        config = build_job_config(
            api_key=args.api_key or settings.get_api_key(provider) or "",
            target_language=args.language,
            base_delay_ms=args.base_delay,
            quota_delay_ms=args.quota_delay,
            chunk_count=args.chunks,
            pace_between_batches=False if args.no_pacing else None,
        )
        if not args.input.is_file():
            raise JobValidationError(f"Subtitle file not found: {args.input}")
        try:
            content = args.input.read_text(encoding="utf-8-sig")
        except UnicodeDecodeError as e:
            raise JobValidationError(f"Subtitle file is not valid UTF-8: {e}") from e
    except JobValidationError as e:
        print_error(str(e))
        return EXIT_INVALID_INPUT

    output_path = args.output or default_output_path(args.input, config.target_language)
    logger.info(
        f"🚀 Translating {args.input} to {config.target_language} with {provider} "
        f"(key {mask_secret(config.api_key)}, {config.chunk_count} batches)"
    )

    token = CancellationToken()
    install_signal_handlers(token)

    client = create_translation_client(provider)
    try:
        result = await translate_srt(
            content,
            config,
            client=client,
            on_event=ProgressRenderer(),
            cancel_token=token,
        )
    except JobValidationError as e:
        print_error(str(e))
        return EXIT_INVALID_INPUT
    finally:
        await client.aclose()

    output_path.write_text(result.document + "\n", encoding="utf-8")
    print_report(result, output_path)
    return EXIT_OK if result.status == JobStatus.COMPLETED else EXIT_INCOMPLETE


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the srt-translate command."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run_cli(args))


if __name__ == "__main__":
    sys.exit(main())
