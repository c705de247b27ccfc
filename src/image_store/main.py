"""Main module for the image store CLI."""

import sys
import json
import argparse
from contextlib import ExitStack
from pathlib import Path
from typing import Dict, List, Optional

from . import __version__
from .core import (
    ErrorKind,
    ImageStoreError,
    ImageStoreFactory,
    IngestResult,
    UploadFile,
    get_logger,
    load_config,
    set_log_level,
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CLIENT_ERROR = 2

# Human-readable messages, keyed by error reason first and error kind second
REASON_MESSAGES: Dict[str, str] = {
    "empty_batch": "No files uploaded",
    "too_many_files": "Too many files in one request.",
    "invalid_file_type": "Invalid file type.",
    "file_too_large": "File too large.",
    "invalid_filename": "Invalid file name.",
    "unreadable_stream": "The uploaded file could not be read.",
    "invalid_size": "Invalid size parameter.",
    "empty_image_id": "No imageID provided",
    "invalid_image_id": "Invalid imageID.",
    "image_not_found": "The requested image was not found.",
}

KIND_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_INPUT: "Invalid request.",
    ErrorKind.NOT_FOUND: "The requested image was not found.",
    ErrorKind.ACCESS_DENIED: "An error occurred while storing the image.",
    ErrorKind.CORRUPT_DATA: "An error occurred while processing the image.",
    ErrorKind.IO_FAILURE: "An error occurred while storing the image.",
    ErrorKind.LOCKED: "The image is temporarily unavailable.",
    ErrorKind.INTERNAL: "An error occurred while processing your request.",
}


def describe_error(kind: Optional[ErrorKind], reason: Optional[str] = None) -> str:
    """Return the message shown to users for an error kind/reason."""
    if reason and reason in REASON_MESSAGES:
        return REASON_MESSAGES[reason]
    if kind is None:
        return KIND_MESSAGES[ErrorKind.INTERNAL]
    return KIND_MESSAGES.get(kind, KIND_MESSAGES[ErrorKind.INTERNAL])


def format_ingest_result(result: IngestResult) -> Dict[str, object]:
    """Boundary view of a single ingestion result."""
    entry: Dict[str, object] = {
        "file": result.filename,
        "status": result.status.value,
    }
    if result.success:
        entry["image_id"] = result.image_id
        entry["variants"] = sorted(result.variants)
        if result.metadata_error:
            entry["warning"] = "Metadata could not be extracted."
    else:
        entry["error_kind"] = result.error_kind.value if result.error_kind else None
        entry["message"] = f"{result.filename} {describe_error(result.error_kind, result.error_reason)}"
    return entry


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        prog="image-store",
        description="Image Store - ingest images, generate resized variants and serve them back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest images with default settings
  image-store ingest photo1.jpg photo2.png

  # Ingest on a thread pool with a settings file
  image-store --config settings.json ingest *.jpg --processor multithread

  # Download the phone variant of an image
  image-store get 3f0c...e1 phone -o phone.webp

  # Show stored camera/location metadata
  image-store metadata 3f0c...e1
        """,
    )
    parser.add_argument("--config", default=None, help="JSON settings file")
    parser.add_argument("--root", default=None, help="Storage root folder")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers: argparse._SubParsersAction = parser.add_subparsers(
        dest="command", help="Available commands"
    )

    ingest_parser = subparsers.add_parser("ingest", help="Ingest one or more image files")
    ingest_parser.add_argument("files", nargs="+", help="Image files to ingest")
    ingest_parser.add_argument(
        "--processor",
        type=str,
        default=None,
        choices=["serial", "multithread"],
        help="Batch strategy to use (default: from configuration)",
    )

    get_parser = subparsers.add_parser("get", help="Download a stored image variant")
    get_parser.add_argument("image_id", help="Image identifier")
    get_parser.add_argument("size", help="Size label, e.g. phone or original")
    get_parser.add_argument(
        "-o", "--output", default=None, help="Output file (default: stdout)"
    )

    metadata_parser = subparsers.add_parser("metadata", help="Show stored image metadata")
    metadata_parser.add_argument("image_id", help="Image identifier")

    subparsers.add_parser("version", help="Show version information")
    return parser


def run_ingest(orchestrator, files: List[str]) -> int:
    with ExitStack() as stack:
        uploads = []
        for name in files:
            path = Path(name)
            try:
                stream = stack.enter_context(open(path, "rb"))
            except OSError:
                print(json.dumps({"file": name, "message": f"{name} could not be opened."}))
                return EXIT_CLIENT_ERROR
            uploads.append(UploadFile(filename=path.name, stream=stream))

        results = orchestrator.ingest(uploads)

    print(json.dumps([format_ingest_result(result) for result in results], indent=2))
    return EXIT_OK if all(result.success for result in results) else EXIT_FAILURE


def run_get(orchestrator, image_id: str, size: str, output: Optional[str]) -> int:
    result = orchestrator.retrieve(image_id, size)
    if not result.found:
        print(describe_error(ErrorKind.NOT_FOUND, "image_not_found"), file=sys.stderr)
        return EXIT_FAILURE

    if output:
        with open(output, "wb") as handle:
            for chunk in orchestrator.iter_content(result):
                handle.write(chunk)
        print(json.dumps({"file": output, "content_type": result.content_type}))
    else:
        for chunk in orchestrator.iter_content(result):
            sys.stdout.buffer.write(chunk)
        sys.stdout.buffer.flush()
    return EXIT_OK


def run_metadata(orchestrator, image_id: str) -> int:
    lookup = orchestrator.get_metadata(image_id)
    if not lookup.found:
        print(describe_error(ErrorKind.NOT_FOUND, "image_not_found"), file=sys.stderr)
        return EXIT_FAILURE
    data = lookup.metadata.model_dump() if lookup.metadata is not None else None
    print(json.dumps({"image_id": image_id, "metadata": data}, indent=2))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the command-line interface of the image store.

    Translates CLI arguments into orchestrator calls and maps error kinds to
    user-facing messages and exit codes. Full error details only go to the log.
    """
    parser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    if args.command == "version":
        print("Image Store CLI")
        print(f"Version {__version__}")
        print("Image ingestion, resizing and retrieval")
        sys.exit(EXIT_OK)
    elif args.command is None:
        parser.print_help()
        sys.exit(EXIT_FAILURE)
    else:
        sys.exit(run_command(args))


def run_command(args: argparse.Namespace) -> int:
    """Run an ingest, get or metadata command and return its exit code."""
    logger = get_logger("cli")
    if args.debug:
        set_log_level("DEBUG")

    try:
        config = load_config(
            args.config,
            storage_root=args.root,
            processor=getattr(args, "processor", None),
            debug=args.debug or None,
        )
        if config.debug:
            set_log_level("DEBUG")
        orchestrator = ImageStoreFactory.create_orchestrator(config)

        if args.command == "ingest":
            exit_code = run_ingest(orchestrator, args.files)
        elif args.command == "get":
            exit_code = run_get(orchestrator, args.image_id, args.size, args.output)
        else:
            exit_code = run_metadata(orchestrator, args.image_id)

    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        exit_code = EXIT_FAILURE
    except ImageStoreError as e:
        logger.error(f"{args.command} failed: {e}", exc_info=e.kind == ErrorKind.INTERNAL)
        print(describe_error(e.kind, e.reason), file=sys.stderr)
        exit_code = EXIT_CLIENT_ERROR if e.kind == ErrorKind.INVALID_INPUT else EXIT_FAILURE
    except Exception as e:
        logger.error(f"{args.command} failed unexpectedly: {e}", exc_info=True)
        print(describe_error(ErrorKind.INTERNAL), file=sys.stderr)
        exit_code = EXIT_FAILURE

    return exit_code


if __name__ == "__main__":
    main()
