import zipfile

import pytest
from docx import Document

from intake_pipeline import normalizer
from intake_pipeline.pipeline import CONVERSION_FAILURE_REASON, IntakePipeline, parse_document
from intake_pipeline.schema import BatchStatus, ParsedOrder

from conftest import ADMIN_ID, FakeExtractor, order_json

ITEMS = [
    {"workName": "Замена масла", "quantity": 1, "price": 1500, "total": 1500},
    {"workName": "Шиномонтаж", "quantity": 4, "price": 500, "total": 2000},
]


def write_docx(path, text="ЗАКАЗ-НАРЯД №15"):
    document = Document()
    document.add_paragraph(text)
    document.save(str(path))
    return path


@pytest.fixture
def extractor():
    return FakeExtractor(response=order_json(ITEMS))


@pytest.fixture
def pipeline(extractor, oil_change_catalog, batches):
    return IntakePipeline(extractor, oil_change_catalog, batches)


@pytest.mark.parametrize("suffix", [".jpg", ".png", ".webp", ".pdf", ".docx", ".doc", ".zip", ".rar", ".txt", ""])
@pytest.mark.parametrize("payload", [b"", b"\x00\x01garbage\xff" * 10])
def test_parse_document_never_raises(tmp_path, suffix, payload):
    path = tmp_path / f"upload{suffix}"
    path.write_bytes(payload)

    order = parse_document(path, FakeExtractor(response="not json at all"))

    assert isinstance(order, ParsedOrder)
    assert order.needs_operator_review is True
    assert order.items == ()


def test_docx_end_to_end(tmp_path, pipeline, extractor, batches):
    station = batches.upsert_station(-1001, "СТО Север")
    path = write_docx(tmp_path / "order.docx")

    (result,) = pipeline.process_file(path, station_id=station.id)

    assert "ЗАКАЗ-НАРЯД №15" in extractor.requests[0].text
    assert result.source_name == "order.docx"
    assert result.batch.status is BatchStatus.NEEDS_REVIEW
    assert result.batch.station_id == station.id
    assert len(result.warnings) == 1
    assert "+300" in result.warnings[0]
    assert [item.validation_error is not None for item in result.items] == [True, False]

    batches.approve(ADMIN_ID, result.batch.id)
    rows = batches.export_approved(ADMIN_ID)
    assert [row.station for row in rows] == ["СТО Север", "СТО Север"]


def test_clean_document_is_unreviewed(tmp_path, oil_change_catalog, batches):
    extractor = FakeExtractor(response=order_json([{"workName": "Замена масла", "price": 1200}]))
    pipeline = IntakePipeline(extractor, oil_change_catalog, batches)

    (result,) = pipeline.process_file(write_docx(tmp_path / "order.docx"))

    assert result.batch.status is BatchStatus.UNREVIEWED
    assert result.warnings == ()


def test_unreadable_file_becomes_review_batch(tmp_path, pipeline, extractor):
    path = tmp_path / "scan.pdf"
    path.write_bytes(b"not a pdf")

    (result,) = pipeline.process_file(path)

    assert extractor.requests == []
    assert result.batch.status is BatchStatus.NEEDS_REVIEW
    assert result.batch.review_reason.startswith(CONVERSION_FAILURE_REASON)
    assert result.items == ()


def test_extractor_outage_becomes_review_batch(tmp_path, oil_change_catalog, batches):
    pipeline = IntakePipeline(FakeExtractor(error=ConnectionError("down")), oil_change_catalog, batches)
    (result,) = pipeline.process_file(write_docx(tmp_path / "order.docx"))
    assert result.batch.status is BatchStatus.NEEDS_REVIEW


def test_price_source_outage_does_not_block_ingest(tmp_path, extractor, unavailable_catalog, batches):
    pipeline = IntakePipeline(extractor, unavailable_catalog, batches)
    (result,) = pipeline.process_file(write_docx(tmp_path / "order.docx"))

    assert result.warnings == ()
    assert result.batch.status is BatchStatus.UNREVIEWED


def test_zip_yields_one_batch_per_document(tmp_path, pipeline, extractor):
    docx_path = write_docx(tmp_path / "order.docx")
    archive = tmp_path / "week.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.write(docx_path, "first.docx")
        zf.write(docx_path, "folder/second.docx")
        zf.writestr("inner.zip", b"PK nested")

    results = pipeline.process_file(archive, operator_id=None)

    assert [r.source_name for r in results] == ["week.zip/first.docx", "week.zip/folder/second.docx"]
    assert len({r.batch.id for r in results}) == 2
    assert len(extractor.requests) == 2


def test_corrupt_zip_becomes_single_review_batch(tmp_path, pipeline):
    archive = tmp_path / "week.zip"
    archive.write_bytes(b"garbage")

    (result,) = pipeline.process_file(archive)

    assert result.source_name == "week.zip"
    assert result.batch.status is BatchStatus.NEEDS_REVIEW


def test_rar_without_unrar_is_skipped(tmp_path, pipeline, monkeypatch):
    archive = tmp_path / "week.rar"
    archive.write_bytes(b"Rar!\x1a\x07\x00")
    monkeypatch.setattr(normalizer.shutil, "which", lambda name: None)

    assert pipeline.process_file(archive) == []


def test_oversized_mileage_is_stored_as_review_batch(tmp_path, oil_change_catalog, batches):
    extractor = FakeExtractor(response=order_json(ITEMS[:1], mileage=99999999999999999999))
    pipeline = IntakePipeline(extractor, oil_change_catalog, batches)

    (result,) = pipeline.process_file(write_docx(tmp_path / "order.docx"))

    assert result.batch.status is BatchStatus.NEEDS_REVIEW
    assert result.items[0].mileage is None
    assert "Пробег не распознан" in result.batch.review_reason
