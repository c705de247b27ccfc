"""Factory classes for creating configured service instances."""

import logging
from typing import Optional

from .models import ProcessingConfig
from .metadata import ExifMetadataExtractor
from .observability import MetricsCollector, StructuredLogger
from .protocols import (
    BatchProcessor,
    LoggerProtocol,
    MetadataExtractorProtocol,
    ProcessingService,
    StorageBackendProtocol,
    VariantGeneratorProtocol,
)
from .services import (
    ImageIngestionService,
    ImageStoreOrchestrator,
    SerialBatchProcessor,
    ThreadedBatchProcessor,
)
from .storage import FileSystemStorage
from .variants import PillowVariantGenerator


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, level: int = logging.INFO) -> LoggerProtocol:
        """Create a configured structured logger."""
        return StructuredLogger(name, level)


class BatchProcessorFactory:
    """Factory for the batch strategy named in the configuration."""

    @staticmethod
    def create_batch_processor(
        config: ProcessingConfig,
        processing_service: ProcessingService,
        logger: LoggerProtocol,
    ) -> BatchProcessor:
        if config.processor == "multithread":
            return ThreadedBatchProcessor(
                processing_service, logger, max_workers=config.max_workers
            )
        return SerialBatchProcessor(processing_service, logger)


class ImageStoreFactory:
    """Factory for creating the complete ingestion/retrieval pipeline."""

    @staticmethod
    def create_orchestrator(
        config: Optional[ProcessingConfig] = None,
        storage: Optional[StorageBackendProtocol] = None,
        metadata_extractor: Optional[MetadataExtractorProtocol] = None,
        variant_generator: Optional[VariantGeneratorProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> ImageStoreOrchestrator:
        """Create a fully configured orchestrator; reload by calling again."""
        if config is None:
            config = ProcessingConfig()

        if storage is None:
            storage = FileSystemStorage.from_config(config)

        if metadata_extractor is None:
            metadata_extractor = ExifMetadataExtractor()

        if variant_generator is None:
            variant_generator = PillowVariantGenerator.from_config(config)

        if logger is None:
            level = logging.DEBUG if config.debug else logging.INFO
            logger = LoggerFactory.create_logger("services", level)

        ingestion_service = ImageIngestionService(
            storage=storage,
            metadata_extractor=metadata_extractor,
            variant_generator=variant_generator,
            logger=logger,
            metrics_collector=metrics_collector,
        )
        batch_processor = BatchProcessorFactory.create_batch_processor(
            config, ingestion_service, logger
        )

        return ImageStoreOrchestrator(
            storage=storage,
            batch_processor=batch_processor,
            config=config,
            logger=logger,
        )
