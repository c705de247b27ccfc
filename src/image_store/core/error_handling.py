# src/image_store/core/error_handling.py

import errno
import functools
import logging
import time

from PIL import Image, UnidentifiedImageError

from .exceptions import (
    AccessDeniedError,
    CorruptDataError,
    ErrorKind,
    ImageStoreError,
    InternalError,
    NotFoundError,
    ResourceLockedError,
    StorageIOError,
)

# errno values raised when another process holds the file
LOCKED_ERRNOS = tuple(
    getattr(errno, name)
    for name in ("EAGAIN", "EBUSY", "ETXTBSY", "EDEADLK")
    if hasattr(errno, name)
)
# Windows sharing/lock violations surface as PermissionError with these codes
LOCKED_WINERRORS = (32, 33)


def classify_os_error(exc, operation, image_id=None):
    """
    Map an OSError onto the error taxonomy.

    The returned error never carries the OS error text; callers should raise
    it ``from exc`` so the original stays available to internal logging.
    """
    winerror = getattr(exc, "winerror", None)
    if winerror in LOCKED_WINERRORS or exc.errno in LOCKED_ERRNOS:
        return ResourceLockedError(
            "Resource is locked by another process",
            operation=operation,
            image_id=image_id,
        )
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(
            "Resource not found", operation=operation, image_id=image_id
        )
    if isinstance(exc, PermissionError):
        return AccessDeniedError(
            "Access denied", operation=operation, image_id=image_id
        )
    if exc.errno == errno.ENAMETOOLONG:
        return StorageIOError(
            "Path too long", operation=operation, image_id=image_id
        )
    return StorageIOError(
        "Storage operation failed", operation=operation, image_id=image_id
    )


def with_error_handling(func):
    """
    A decorator to wrap functions with standardized error handling.

    Errors that are already classified pass through untouched; OS errors,
    Pillow decode errors and anything unexpected are mapped into the taxonomy.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(func.__module__ + '.' + func.__name__)
        try:
            return func(*args, **kwargs)
        except ImageStoreError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError) as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise CorruptDataError(
                "Image payload could not be decoded", operation=func.__name__
            ) from e
        except OSError as e:
            logger.error(f"Error in '{func.__name__}': {e}", exc_info=True)
            raise classify_os_error(e, func.__name__) from e
        except Exception as e:
            logger.error(f"Unhandled error in '{func.__name__}': {e}", exc_info=True)
            raise InternalError(
                "An unexpected error occurred", operation=func.__name__
            ) from e
    return wrapper


def retry_on_lock(max_attempts=3, initial_delay=0.05, backoff_factor=2):
    """
    Decorator to retry operations that fail with ResourceLockedError.

    Uses exponential backoff; any other error is raised immediately.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = logging.getLogger(func.__module__ + '.' + func.__name__)
            attempts = 0
            delay = initial_delay
            while True:
                try:
                    return func(*args, **kwargs)
                except ResourceLockedError as e:
                    attempts += 1
                    if attempts >= max_attempts:
                        logger.error(
                            f"Operation '{func.__name__}' still locked after {max_attempts} attempts: {e}"
                        )
                        raise
                    logger.info(
                        f"Operation '{func.__name__}' hit a locked resource. Attempt {attempts}/{max_attempts}. "
                        f"Retrying in {delay:.2f}s."
                    )
                    time.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator


class BatchOperationContextManager:
    """
    Context manager collecting the per-file failures of an ingestion batch.

    Failures are tallied by error kind and summarized in a single warning
    when the block exits. Exceptions raised inside the block are logged and
    never suppressed.
    """
    def __init__(self, operation_name="Batch Operation", total_items=0):
        self.operation_name = operation_name
        self.total_items = total_items
        self.errors = []
        self.logger = logging.getLogger(self.__class__.__module__ + '.' + self.__class__.__name__)

    def __enter__(self):
        self.logger.info(f"Starting {self.operation_name} with {self.total_items} item(s).")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.logger.error(
                f"{self.operation_name} aborted: {exc_val}",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        elif self.errors:
            breakdown = ", ".join(
                f"{count} {kind}" for kind, count in sorted(self.kind_counts().items())
            )
            self.logger.warning(
                f"{self.operation_name}: {len(self.errors)} of {self.total_items} item(s) failed ({breakdown})."
            )
            for error_detail in self.errors:
                self.logger.warning(
                    f"  {error_detail['item']}: [{error_detail['kind']}] {error_detail['error']}"
                )
        else:
            self.logger.info(f"{self.operation_name}: all {self.total_items} item(s) succeeded.")
        return False

    def add_error(self, error_message, item_identifier="Unknown item", kind=None):
        """Record a failed item; kind defaults to internal."""
        self.errors.append({
            "item": item_identifier,
            "error": str(error_message),
            "kind": kind or ErrorKind.INTERNAL.value,
        })

    def add_result(self, result):
        """Record an ingestion result if it failed."""
        if not result.success:
            kind = result.error_kind.value if result.error_kind else None
            self.add_error(result.error, item_identifier=result.filename, kind=kind)

    def kind_counts(self):
        counts = {}
        for error_detail in self.errors:
            counts[error_detail["kind"]] = counts.get(error_detail["kind"], 0) + 1
        return counts
