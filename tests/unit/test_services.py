"""Unit tests for service implementations."""

import errno
import io
import threading
import time
import uuid

import pytest
from unittest.mock import Mock
from PIL import Image

from image_store.core.exceptions import (
    CorruptDataError,
    ErrorKind,
    InvalidInputError,
    StorageIOError,
)
from image_store.core.models import (
    ImageMetadata,
    IngestResult,
    IngestStatus,
    ProcessingConfig,
    UploadFile,
)
from image_store.core.observability import MetricsCollector
from image_store.core.services import (
    ImageIngestionService,
    ImageStoreOrchestrator,
    SerialBatchProcessor,
    ThreadedBatchProcessor,
    validate_upload,
)
from image_store.core.storage import FileSystemStorage
from image_store.testing.fakes import FakeLogger, InMemoryStorage, make_uploads


def make_extractor(metadata=None):
    extractor = Mock()
    extractor.extract.return_value = metadata or ImageMetadata(make="Canon", model="EOS")
    return extractor


def make_generator():
    generator = Mock()
    generator.decode.side_effect = lambda path: Image.new("RGB", (64, 48))
    generator.generate.side_effect = lambda image, target: f"{target.name}-bytes".encode()
    return generator


def make_service(storage=None, extractor=None, generator=None, metrics=None):
    return ImageIngestionService(
        storage=storage or InMemoryStorage(),
        metadata_extractor=extractor or make_extractor(),
        variant_generator=generator or make_generator(),
        logger=FakeLogger(),
        metrics_collector=metrics,
    )


def make_orchestrator(storage=None, config=None, service=None):
    storage = storage or InMemoryStorage()
    config = config or ProcessingConfig()
    logger = FakeLogger()
    service = service or make_service(storage=storage)
    return ImageStoreOrchestrator(
        storage=storage,
        batch_processor=SerialBatchProcessor(service, logger),
        config=config,
        logger=logger,
    )


class UnreadableStream(io.RawIOBase):
    def readable(self):
        return True

    def tell(self):
        raise OSError(errno.EIO, "gone")


class TestValidateUpload:
    """Tests for validate_upload."""

    @pytest.mark.parametrize("filename", ["photo.jpg", "photo.JPEG", "shot.png", "art.WebP"])
    def test_allowed_files(self, filename):
        validate_upload(UploadFile(filename, io.BytesIO(b"x")), ProcessingConfig())

    @pytest.mark.parametrize("filename", ["notes.txt", "archive.jpg.zip", "noextension"])
    def test_disallowed_extension(self, filename):
        with pytest.raises(InvalidInputError) as excinfo:
            validate_upload(UploadFile(filename, io.BytesIO(b"x")), ProcessingConfig())
        assert excinfo.value.reason == "invalid_file_type"

    def test_size_limit_is_inclusive(self):
        config = ProcessingConfig(max_file_size=10)
        validate_upload(UploadFile("a.jpg", io.BytesIO(b"x" * 10)), config)

        with pytest.raises(InvalidInputError) as excinfo:
            validate_upload(UploadFile("a.jpg", io.BytesIO(b"x" * 11)), config)
        assert excinfo.value.reason == "file_too_large"

    def test_empty_filename(self):
        with pytest.raises(InvalidInputError) as excinfo:
            validate_upload(UploadFile("  ", io.BytesIO(b"x")), ProcessingConfig())
        assert excinfo.value.reason == "invalid_filename"

    def test_unreadable_stream(self):
        with pytest.raises(InvalidInputError) as excinfo:
            validate_upload(UploadFile("a.jpg", UnreadableStream()), ProcessingConfig())
        assert excinfo.value.reason == "unreadable_stream"


class TestImageIngestionService:
    """Tests for ImageIngestionService."""

    def test_ingest_file_success(self):
        """Test a file flows through every stage."""
        storage = InMemoryStorage()
        service = make_service(storage=storage)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"jpeg")), ProcessingConfig()
        )

        assert result.success
        assert result.status == IngestStatus.COMPLETE
        assert uuid.UUID(result.image_id).version == 4
        assert sorted(result.variants) == ["desktop", "phone", "tablet"]
        assert result.metadata == ImageMetadata(make="Canon", model="EOS")
        assert storage.originals[result.image_id] == ("photo.jpg", b"jpeg")
        assert storage.variants[result.image_id]["phone"] == b"phone-bytes"
        assert [op for op, _ in storage.operations] == [
            "store_original",
            "store_metadata",
            "store_variant",
            "store_variant",
            "store_variant",
        ]

    def test_each_file_gets_a_new_id(self):
        service = make_service()
        config = ProcessingConfig()

        first = service.ingest_file(UploadFile("a.jpg", io.BytesIO(b"1")), config)
        second = service.ingest_file(UploadFile("a.jpg", io.BytesIO(b"1")), config)

        assert first.image_id != second.image_id

    def test_invalid_file_never_touches_storage(self):
        storage = InMemoryStorage()
        service = make_service(storage=storage)

        result = service.ingest_file(
            UploadFile("notes.txt", io.BytesIO(b"text")), ProcessingConfig()
        )

        assert result.status == IngestStatus.FAILED
        assert result.failed_stage == IngestStatus.RECEIVED
        assert result.error_kind == ErrorKind.INVALID_INPUT
        assert result.error_reason == "invalid_file_type"
        assert result.image_id is None
        assert storage.operations == []

    def test_understated_declared_size_is_caught_while_storing(self):
        storage = InMemoryStorage()
        service = make_service(storage=storage)
        upload = UploadFile("a.jpg", io.BytesIO(b"x" * 1000), size=5)

        result = service.ingest_file(upload, ProcessingConfig(max_file_size=10))

        assert result.status == IngestStatus.FAILED
        assert result.failed_stage == IngestStatus.VALIDATED
        assert result.error_reason == "file_too_large"
        assert storage.originals == {}

    def test_understated_declared_size_on_disk(self, tmp_path):
        storage = FileSystemStorage(tmp_path)
        service = make_service(storage=storage)
        upload = UploadFile("a.jpg", io.BytesIO(b"x" * 1000), size=5)

        result = service.ingest_file(upload, ProcessingConfig(max_file_size=10))

        assert result.error_reason == "file_too_large"
        assert list(tmp_path.iterdir()) == []

    def test_metadata_failure_is_not_fatal(self):
        """Test that extraction errors are recorded but variants are still produced."""
        extractor = Mock()
        extractor.extract.side_effect = CorruptDataError("Image metadata could not be read")
        storage = InMemoryStorage()
        service = make_service(storage=storage, extractor=extractor)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"jpeg")), ProcessingConfig()
        )

        assert result.success
        assert result.metadata is None
        assert "could not be read" in result.metadata_error
        assert result.image_id not in storage.metadata
        assert len(result.variants) == 3

    def test_metadata_write_failure_is_not_fatal(self):
        storage = InMemoryStorage()
        storage.set_failure("store_metadata", StorageIOError("Storage operation failed"))
        service = make_service(storage=storage)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"jpeg")), ProcessingConfig()
        )

        assert result.success
        assert result.metadata_error

    def test_decode_failure_fails_the_file(self):
        generator = make_generator()
        generator.decode.side_effect = CorruptDataError("Image payload could not be decoded")
        storage = InMemoryStorage()
        service = make_service(storage=storage, generator=generator)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"not really")), ProcessingConfig()
        )

        assert result.status == IngestStatus.FAILED
        assert result.failed_stage == IngestStatus.METADATA_EXTRACTED
        assert result.error_kind == ErrorKind.CORRUPT_DATA
        # The original stays stored
        assert result.image_id in storage.originals

    def test_variant_write_failure(self):
        storage = InMemoryStorage()
        storage.set_failure("store_variant", StorageIOError("Storage operation failed"))
        service = make_service(storage=storage)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"jpeg")), ProcessingConfig()
        )

        assert result.status == IngestStatus.FAILED
        assert result.error_kind == ErrorKind.IO_FAILURE

    def test_unexpected_error_is_internal(self):
        generator = make_generator()
        generator.generate.side_effect = RuntimeError("boom")
        service = make_service(generator=generator)

        result = service.ingest_file(
            UploadFile("photo.jpg", io.BytesIO(b"jpeg")), ProcessingConfig()
        )

        assert result.error_kind == ErrorKind.INTERNAL
        assert "boom" not in result.error

    def test_metrics_are_recorded(self):
        metrics = MetricsCollector()
        service = make_service(metrics=metrics)
        config = ProcessingConfig()

        service.ingest_file(UploadFile("photo.jpg", io.BytesIO(b"jpeg")), config)
        service.ingest_file(UploadFile("notes.txt", io.BytesIO(b"text")), config)

        summary = metrics.get_summary("ingest_file")
        assert summary["total_operations"] == 2
        assert summary["successful_operations"] == 1
        assert summary["failed_operations"] == 1


class TestBatchProcessors:
    """Tests for the serial and threaded batch processors."""

    def test_serial_process_batch_preserves_order(self):
        processor = SerialBatchProcessor(make_service(), FakeLogger())
        uploads = make_uploads([("a.jpg", b"1"), ("b.txt", b"2"), ("c.png", b"3")])

        results = processor.process_batch(uploads, ProcessingConfig())

        assert [r.filename for r in results] == ["a.jpg", "b.txt", "c.png"]
        assert [r.success for r in results] == [True, False, True]

    def test_threaded_process_batch_preserves_order(self):
        """Test that results come back in input order even when finishing out of order."""
        service = Mock()

        def ingest_file(upload, config):
            time.sleep(0.05 if upload.filename == "first.jpg" else 0)
            result = IngestResult(filename=upload.filename)
            result.advance(IngestStatus.COMPLETE)
            return result

        service.ingest_file.side_effect = ingest_file
        processor = ThreadedBatchProcessor(service, FakeLogger(), max_workers=3)
        uploads = make_uploads([("first.jpg", b"1"), ("second.jpg", b"2"), ("third.jpg", b"3")])

        results = processor.process_batch(uploads, ProcessingConfig())

        assert [r.filename for r in results] == ["first.jpg", "second.jpg", "third.jpg"]
        assert all(r.success for r in results)

    def test_threaded_process_batch_runs_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)
        service = Mock()

        def ingest_file(upload, config):
            barrier.wait()
            result = IngestResult(filename=upload.filename)
            result.advance(IngestStatus.COMPLETE)
            return result

        service.ingest_file.side_effect = ingest_file
        processor = ThreadedBatchProcessor(service, FakeLogger(), max_workers=2)

        results = processor.process_batch(
            make_uploads([("a.jpg", b"1"), ("b.jpg", b"2")]), ProcessingConfig()
        )

        assert all(r.success for r in results)

    def test_threaded_worker_crash_becomes_internal_result(self):
        service = Mock()
        service.ingest_file.side_effect = RuntimeError("worker died")
        logger = FakeLogger()
        processor = ThreadedBatchProcessor(service, logger)

        results = processor.process_batch(make_uploads([("a.jpg", b"1")]), ProcessingConfig())

        assert results[0].error_kind == ErrorKind.INTERNAL
        assert len(logger.get_logs("ERROR")) == 1

    def test_threaded_empty_batch(self):
        processor = ThreadedBatchProcessor(Mock(), FakeLogger())
        assert processor.process_batch([], ProcessingConfig()) == []


class TestOrchestratorIngest:
    """Tests for ImageStoreOrchestrator.ingest."""

    def test_empty_batch_rejected(self):
        with pytest.raises(InvalidInputError) as excinfo:
            make_orchestrator().ingest([])
        assert excinfo.value.reason == "empty_batch"

    def test_too_many_files_rejected(self):
        storage = InMemoryStorage()
        orchestrator = make_orchestrator(storage=storage)
        uploads = make_uploads([(f"{i}.jpg", b"x") for i in range(6)])

        with pytest.raises(InvalidInputError) as excinfo:
            orchestrator.ingest(uploads)

        assert excinfo.value.reason == "too_many_files"
        assert storage.operations == []

    def test_mixed_batch(self):
        """Test that one bad file does not stop its siblings."""
        config = ProcessingConfig(max_file_size=5)
        orchestrator = make_orchestrator(config=config)
        uploads = make_uploads(
            [("good.jpg", b"12345"), ("notes.txt", b"1"), ("huge.png", b"123456")]
        )

        results = orchestrator.ingest(uploads)

        assert [r.success for r in results] == [True, False, False]
        assert results[1].error_reason == "invalid_file_type"
        assert results[2].error_reason == "file_too_large"


class TestOrchestratorRetrieve:
    """Tests for ImageStoreOrchestrator.retrieve and iter_content."""

    @pytest.fixture
    def stored(self):
        storage = InMemoryStorage()
        orchestrator = make_orchestrator(storage=storage)
        result = orchestrator.ingest(make_uploads([("photo.jpg", b"jpeg-bytes")]))[0]
        storage.operations.clear()
        return orchestrator, storage, result.image_id

    def test_invalid_size_never_touches_storage(self, stored):
        orchestrator, storage, image_id = stored

        with pytest.raises(InvalidInputError) as excinfo:
            orchestrator.retrieve(image_id, "huge")

        assert excinfo.value.reason == "invalid_size"
        assert storage.operations == []

    def test_size_is_validated_before_the_id(self, stored):
        orchestrator, storage, _ = stored
        with pytest.raises(InvalidInputError) as excinfo:
            orchestrator.retrieve("", "huge")
        assert excinfo.value.reason == "invalid_size"

    def test_empty_image_id(self, stored):
        orchestrator, storage, _ = stored
        with pytest.raises(InvalidInputError) as excinfo:
            orchestrator.retrieve("  ", "phone")
        assert excinfo.value.reason == "empty_image_id"
        assert storage.operations == []

    def test_retrieve_variant(self, stored):
        orchestrator, _, image_id = stored

        result = orchestrator.retrieve(image_id, "PHONE")

        assert result.found
        assert result.size == "phone"
        assert result.content_type == "image/webp"
        assert result.download_name == f"{image_id}_phone.webp"
        assert b"".join(orchestrator.iter_content(result)) == b"phone-bytes"

    def test_retrieve_original(self, stored):
        orchestrator, _, image_id = stored

        result = orchestrator.retrieve(image_id, "original")

        assert result.content_type == "image/jpeg"
        assert result.download_name == f"{image_id}_original.jpg"
        assert b"".join(orchestrator.iter_content(result)) == b"jpeg-bytes"

    def test_unknown_image(self, stored):
        orchestrator, _, _ = stored

        result = orchestrator.retrieve(str(uuid.uuid4()), "phone")

        assert not result.found
        with pytest.raises(InvalidInputError):
            orchestrator.iter_content(result)

    def test_allowed_size_without_variant(self, stored):
        config = ProcessingConfig(allowed_sizes="phone,tablet,desktop,original,poster")
        storage = stored[1]
        orchestrator = make_orchestrator(storage=storage, config=config)

        assert not orchestrator.retrieve(stored[2], "poster").found

    def test_storage_errors_are_classified(self, stored):
        orchestrator, storage, image_id = stored
        storage.set_failure("resolve_variant_path", OSError(errno.EIO, "io"))

        with pytest.raises(StorageIOError):
            orchestrator.retrieve(image_id, "phone")


class TestOrchestratorMetadata:
    """Tests for ImageStoreOrchestrator.get_metadata."""

    def test_unknown_image(self):
        lookup = make_orchestrator().get_metadata("missing")
        assert not lookup.found
        assert lookup.metadata is None

    def test_image_without_metadata(self):
        storage = InMemoryStorage()
        storage.store_original(io.BytesIO(b"x"), "img-1", "photo.jpg")

        lookup = make_orchestrator(storage=storage).get_metadata("img-1")

        assert lookup.found
        assert lookup.metadata is None

    def test_image_with_metadata(self):
        storage = InMemoryStorage()
        orchestrator = make_orchestrator(storage=storage)
        image_id = orchestrator.ingest(make_uploads([("photo.jpg", b"x")]))[0].image_id

        lookup = orchestrator.get_metadata(image_id)

        assert lookup.found
        assert lookup.metadata.make == "Canon"

    def test_corrupt_sidecar_propagates(self):
        storage = InMemoryStorage()
        storage.store_original(io.BytesIO(b"x"), "img-1", "photo.jpg")
        storage.set_failure("get_metadata", CorruptDataError("Metadata sidecar could not be parsed"))

        with pytest.raises(CorruptDataError):
            make_orchestrator(storage=storage).get_metadata("img-1")

    def test_empty_id(self):
        with pytest.raises(InvalidInputError):
            make_orchestrator().get_metadata("")
