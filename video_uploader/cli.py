"""Command line interface for video_uploader package."""
from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import SingleFileUploadProgress, render_configuration_summary
from .errors import UploadCancelled, UploadError
from .models import CaptureMetadata, RetryPolicy, UploadConfig, UploadOptions
from .orchestrator import UploadOrchestrator

DEFAULT_API_URL = "http://localhost:3000"
DEFAULT_CONTENT_TYPE = "video/mp4"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug, --log-level or LOG_LEVEL is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _env_number(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as exc:
        raise CLIError(f"invalid value for {name}: {raw!r}") from exc


def _guess_content_type(source: Path) -> str:
    guessed, _ = mimetypes.guess_type(source.name)
    if guessed and guessed.startswith("video/"):
        return guessed
    return DEFAULT_CONTENT_TYPE


def _build_config(args: argparse.Namespace) -> UploadConfig:
    api_url = args.api_url or os.getenv("VIDEO_UPLOAD_API_URL") or DEFAULT_API_URL
    max_retries = args.max_retries
    if max_retries is None:
        max_retries = _env_number("VIDEO_UPLOAD_MAX_RETRIES", int, 3)
    retry_delay = args.retry_delay
    if retry_delay is None:
        retry_delay = _env_number("VIDEO_UPLOAD_RETRY_DELAY", float, 1.0)
    backoff = args.backoff_multiplier
    if backoff is None:
        backoff = _env_number("VIDEO_UPLOAD_BACKOFF", float, 2.0)

    try:
        retry = RetryPolicy(
            max_retries=max_retries,
            initial_delay=retry_delay,
            backoff_multiplier=backoff,
        )
        return UploadConfig(api_url=api_url.rstrip("/"), retry=retry)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


def _build_options(args: argparse.Namespace, source: Path) -> UploadOptions:
    try:
        return UploadOptions(
            content_type=args.content_type or _guess_content_type(source),
            file_name=args.file_name,
            metadata=CaptureMetadata(duration=args.duration, fps=args.fps, angle=args.angle),
            deadline=args.timeout,
        )
    except ValueError as exc:
        raise CLIError(str(exc)) from exc


async def _run_upload(
    source: Path,
    config: UploadConfig,
    options: UploadOptions,
    token: Optional[str],
    confirm: bool,
) -> int:
    progress = SingleFileUploadProgress(source)

    async with UploadOrchestrator(config.api_url, token=token, config=config) as orchestrator:
        progress.attach(orchestrator.events)
        progress.start()
        handle = orchestrator.submit(source, options)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, handle.upload_id)
        except (NotImplementedError, RuntimeError):
            pass  # e.g. Windows event loops

        try:
            credential = await handle.wait()
        except UploadCancelled as exc:
            progress.complete(success=False, error=str(exc))
            return EXIT_CANCELLED
        except UploadError as exc:
            progress.complete(success=False, error=str(exc))
            return EXIT_FAILED
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

        progress.complete(success=True)

        if confirm:
            try:
                await orchestrator.confirm(credential.video_id)
            except UploadError as exc:
                print(f"ERROR: confirm failed for {credential.video_id}: {exc}", file=sys.stderr)
                return EXIT_FAILED

        print(credential.video_id)
        return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="video-up",
        description="Upload a video to object storage through a signed URL, with retries.",
    )
    parser.add_argument("source", nargs="?", type=Path, help="Video file to upload")
    parser.add_argument("--content-type", default=None, help="MIME type (default: guessed, else video/mp4)")
    parser.add_argument("--file-name", default=None, help="File name announced to the backend")
    parser.add_argument("--duration", type=float, default=None, help="Clip duration in seconds")
    parser.add_argument("--fps", type=float, default=None, help="Capture frame rate")
    parser.add_argument("--angle", default=None, help="Capture angle (front, side, 3quarter, overhead)")
    parser.add_argument(
        "--api-url",
        default=None,
        help=f"Backend URL (default from VIDEO_UPLOAD_API_URL or {DEFAULT_API_URL})",
    )
    parser.add_argument("--token", default=None, help="Bearer token (default from VIDEO_UPLOAD_TOKEN)")
    parser.add_argument("--max-retries", type=int, default=None, help="Retries after the first attempt (default 3)")
    parser.add_argument("--retry-delay", type=float, default=None, help="First backoff delay in seconds (default 1)")
    parser.add_argument("--backoff-multiplier", type=float, default=None, help="Backoff growth factor (default 2)")
    parser.add_argument("--timeout", type=float, default=None, help="Overall deadline in seconds")
    parser.add_argument("--confirm", action="store_true", help="Confirm the upload with the backend afterwards")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="video-up (from video_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_FAILED

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.source is None:
        parser.print_help()
        return EXIT_OK

    source = Path(args.source).expanduser()
    if not source.is_file():
        print(f"ERROR: source is not a file: {source}", file=sys.stderr)
        return EXIT_FAILED

    try:
        config = _build_config(args)
        options = _build_options(args, source)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_FAILED

    token = args.token or os.getenv("VIDEO_UPLOAD_TOKEN")
    if not args.silent:
        render_configuration_summary(
            {
                "Source": str(source),
                "Content Type": options.content_type,
                "API": config.api_url,
                "Token": "set" if token else "(missing)",
                "Retries": f"{config.retry.max_retries} ({', '.join(f'{d:g}s' for d in config.retry.delays()) or 'none'})",
                "Deadline": f"{options.deadline:g}s" if options.deadline else "-",
                "Confirm": "yes" if args.confirm else "no",
                "Env File": str(used_env_file) if used_env_file else "-",
                "Logging": effective_log_mode,
            }
        )

    try:
        return asyncio.run(_run_upload(source, config, options, token, args.confirm))
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
