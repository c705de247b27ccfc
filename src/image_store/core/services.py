"""Ingestion and retrieval services for the image store."""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from .error_handling import BatchOperationContextManager, with_error_handling
from .exceptions import (
    CorruptDataError,
    ImageStoreError,
    InternalError,
    InvalidInputError,
)
from .image_utils import content_type_for
from .models import (
    ORIGINAL_SIZE_LABEL,
    IngestResult,
    IngestStatus,
    MetadataLookup,
    ProcessingConfig,
    RetrievalResult,
    UploadFile,
)
from .observability import LogContext, MetricsCollector, PerformanceMetrics
from .protocols import (
    BatchProcessor,
    LoggerProtocol,
    MetadataExtractorProtocol,
    ProcessingService,
    StorageBackendProtocol,
    VariantGeneratorProtocol,
)


@dataclass
class ProcessingContext:
    """Context for a single ingestion."""

    correlation_id: str
    start_time: float = field(default_factory=time.time)
    log_context: LogContext = field(default_factory=LogContext)


def validate_upload(upload: UploadFile, config: ProcessingConfig) -> None:
    """
    Check an upload against the allow-list and size limit.

    Raises:
        InvalidInputError: If the extension is not allowed or the file is too large
    """
    filename = (upload.filename or "").strip()
    if not filename:
        raise InvalidInputError("Upload has no file name", reason="invalid_filename")

    extension = Path(filename).suffix.lower()
    if extension not in config.allowed_extensions:
        raise InvalidInputError(
            f"{filename} has a disallowed file type", reason="invalid_file_type"
        )

    try:
        size = upload.content_length()
    except (OSError, ValueError) as exc:
        raise InvalidInputError(
            f"{filename} could not be read", reason="unreadable_stream"
        ) from exc
    if size > config.max_file_size:
        raise InvalidInputError(
            f"{filename} exceeds the maximum size of {config.max_file_size} bytes",
            reason="file_too_large",
        )


class ImageIngestionService(ProcessingService):
    """Runs one upload through validation, storage, metadata and variants."""

    def __init__(
        self,
        storage: StorageBackendProtocol,
        metadata_extractor: MetadataExtractorProtocol,
        variant_generator: VariantGeneratorProtocol,
        logger: LoggerProtocol,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        self._storage = storage
        self._metadata_extractor = metadata_extractor
        self._variant_generator = variant_generator
        self._logger = logger
        self._metrics_collector = metrics_collector

    def ingest_file(self, upload: UploadFile, config: ProcessingConfig) -> IngestResult:
        """Ingest a single file. Failures are reported in the result, never raised."""
        result = IngestResult(filename=upload.filename)
        log_context = LogContext(
            operation="ingest_file", component="image_ingestion_service"
        ).with_metadata(filename=upload.filename)
        context = ProcessingContext(
            correlation_id=log_context.correlation_id, log_context=log_context
        )

        try:
            validate_upload(upload, config)
            image_id = str(uuid.uuid4())
            result.image_id = image_id
            result.advance(IngestStatus.VALIDATED)
            log_context = log_context.with_image_id(image_id)
            context.log_context = log_context

            self._logger.debug("Storing original", log_context.with_operation("store_original"))
            original_path = self._storage.store_original(
                upload.stream, image_id, upload.filename, max_size=config.max_file_size
            )
            result.advance(IngestStatus.STORED)

            self._extract_metadata(result, original_path, log_context)
            self._generate_variants(result, original_path, config, log_context)

            result.advance(IngestStatus.COMPLETE)
            self._logger.info(
                "Image ingested",
                log_context,
                variants=len(result.variants),
            )

        except ImageStoreError as e:
            result.fail(e)
            self._logger.warning(
                "Image ingestion failed",
                log_context.with_metadata(
                    stage=result.failed_stage.value, kind=e.kind.value, error=str(e)
                ),
            )
        except Exception as e:
            result.fail(InternalError(f"{upload.filename} could not be processed"))
            self._logger.error(
                "Unexpected error during ingestion",
                log_context.with_metadata(error=str(e)),
                exc_info=True,
            )

        result.processing_time = time.time() - context.start_time
        if self._metrics_collector is not None:
            self._metrics_collector.record_metric(
                PerformanceMetrics(
                    operation="ingest_file",
                    start_time=context.start_time,
                    end_time=context.start_time + result.processing_time,
                    success=result.success,
                    error_kind=result.error_kind.value if result.error_kind else None,
                    metadata={"filename": upload.filename, "image_id": result.image_id},
                )
            )
        return result

    def _extract_metadata(
        self, result: IngestResult, original_path: Path, log_context: LogContext
    ) -> None:
        # Metadata problems are recorded but never stop the pipeline
        metadata_context = log_context.with_operation("extract_metadata")
        try:
            metadata = self._metadata_extractor.extract(original_path)
            self._storage.store_metadata(result.image_id, metadata)
        except ImageStoreError as e:
            result.metadata_error = str(e)
            self._logger.warning(
                "Metadata extraction failed, continuing",
                metadata_context.with_metadata(kind=e.kind.value, error=str(e)),
            )
            return
        result.metadata = metadata
        result.advance(IngestStatus.METADATA_EXTRACTED)
        self._logger.debug("Metadata stored", metadata_context)

    def _generate_variants(
        self,
        result: IngestResult,
        original_path: Path,
        config: ProcessingConfig,
        log_context: LogContext,
    ) -> None:
        variant_context = log_context.with_operation("generate_variants")
        image = self._variant_generator.decode(original_path)
        with image:
            for target in config.target_sizes:
                data = self._variant_generator.generate(image, target)
                path = self._storage.store_variant(result.image_id, target.name, data)
                result.variants[target.name] = str(path)
                self._logger.debug(
                    f"Stored {target.name} variant", variant_context, bytes=len(data)
                )
        result.advance(IngestStatus.VARIANTS_GENERATED)


class SerialBatchProcessor(BatchProcessor):
    """Serial batch processor implementation."""

    def __init__(self, processing_service: ProcessingService, logger: LoggerProtocol):
        self._processing_service = processing_service
        self._logger = logger

    def process_batch(
        self, uploads: List[UploadFile], config: ProcessingConfig
    ) -> List[IngestResult]:
        """Ingest uploads one by one."""
        results = []

        for upload in uploads:
            result = self._processing_service.ingest_file(upload, config)
            results.append(result)

        return results


class ThreadedBatchProcessor(BatchProcessor):
    """Batch processor that ingests uploads on a thread pool."""

    def __init__(
        self,
        processing_service: ProcessingService,
        logger: LoggerProtocol,
        max_workers: int = 4,
    ):
        self._processing_service = processing_service
        self._logger = logger
        self._max_workers = max_workers

    def process_batch(
        self, uploads: List[UploadFile], config: ProcessingConfig
    ) -> List[IngestResult]:
        """Ingest uploads concurrently; results keep the input order."""
        if not uploads:
            return []

        max_workers = min(self._max_workers, len(uploads))
        results: List[Optional[IngestResult]] = [None] * len(uploads)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(self._processing_service.ingest_file, upload, config)
                for upload in uploads
            ]
            for index, future in enumerate(futures):
                try:
                    results[index] = future.result()
                except Exception as e:
                    upload = uploads[index]
                    self._logger.error(
                        f"Worker failed for {upload.filename}: {e}", exc_info=True
                    )
                    result = IngestResult(filename=upload.filename)
                    result.fail(InternalError(f"{upload.filename} could not be processed"))
                    results[index] = result

        return results  # type: ignore[return-value]


class ImageStoreOrchestrator:
    """Entry point for batch ingestion, variant retrieval and metadata lookup."""

    def __init__(
        self,
        storage: StorageBackendProtocol,
        batch_processor: BatchProcessor,
        config: ProcessingConfig,
        logger: LoggerProtocol,
    ):
        self._storage = storage
        self._batch_processor = batch_processor
        self._logger = logger
        self.config = config

    def ingest(self, uploads: List[UploadFile]) -> List[IngestResult]:
        """
        Ingest a batch of uploads, one result per file.

        Raises:
            InvalidInputError: If the batch is empty or holds too many files
        """
        config = self.config
        if not uploads:
            raise InvalidInputError("No files uploaded", reason="empty_batch")
        if len(uploads) > config.max_files_per_request:
            raise InvalidInputError(
                f"Maximum {config.max_files_per_request} files allowed per request",
                reason="too_many_files",
            )

        with BatchOperationContextManager(
            operation_name="Ingestion", total_items=len(uploads)
        ) as batch_manager:
            results = self._batch_processor.process_batch(uploads, config)
            for result in results:
                batch_manager.add_result(result)

        return results

    @with_error_handling
    def retrieve(self, image_id: str, size: str) -> RetrievalResult:
        """
        Resolve a stored asset for (image_id, size).

        A missing image or variant yields ``found=False``.

        Raises:
            InvalidInputError: If the size label is not allowed or the id is empty
        """
        label = (size or "").strip().lower()
        if not label or label not in self.config.allowed_sizes:
            raise InvalidInputError(
                f"Invalid size parameter: {size!r}", reason="invalid_size"
            )
        if not image_id or not image_id.strip():
            raise InvalidInputError("No image id provided", reason="empty_image_id")

        result = RetrievalResult(image_id=image_id, size=label)
        path = self._storage.resolve_variant_path(image_id, label)
        if path is None:
            self._logger.info(
                "Image not found",
                LogContext(operation="retrieve", image_id=image_id),
                size=label,
            )
            return result

        result.found = True
        result.path = path
        result.content_type = content_type_for(path.suffix)
        if label == ORIGINAL_SIZE_LABEL:
            result.download_name = f"{image_id}_{label}{path.suffix}"
        else:
            result.download_name = f"{image_id}_{label}.{self.config.target_extension}"
        return result

    def iter_content(self, result: RetrievalResult) -> Iterator[bytes]:
        """Stream the bytes of a found retrieval result."""
        if not result.found or result.path is None:
            raise InvalidInputError(
                "Nothing to stream for a missing image", reason="image_not_found"
            )
        return self._storage.iter_asset(result.path)

    @with_error_handling
    def get_metadata(self, image_id: str) -> MetadataLookup:
        """
        Look up the metadata sidecar of an image.

        Distinguishes an unknown image (``found=False``) from an existing image
        without metadata (``found=True, metadata=None``).

        Raises:
            CorruptDataError: If the sidecar exists but cannot be parsed
        """
        if not image_id or not image_id.strip():
            raise InvalidInputError("No image id provided", reason="empty_image_id")

        lookup = MetadataLookup(image_id=image_id)
        if not self._storage.image_exists(image_id):
            return lookup

        lookup.found = True
        try:
            lookup.metadata = self._storage.get_metadata(image_id)
        except CorruptDataError:
            self._logger.error(
                "Metadata sidecar is corrupt",
                LogContext(operation="get_metadata", image_id=image_id),
            )
            raise
        return lookup
