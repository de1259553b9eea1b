import csv
from dataclasses import replace

import pytest

import admin
from intake_pipeline.config import Settings
from intake_pipeline.errors import AuthorizationDenied, NotFound
from intake_pipeline.schema import ParsedItem, ParsedOrder

from conftest import ADMIN_ID, OUTSIDER_ID

ORDER = ParsedOrder(
    items=(ParsedItem(work_name="Замена масла", quantity=1, price=1200, total=1200),),
    needs_operator_review=False,
    raw_text="",
    plate_number="А123ВС77",
)


@pytest.fixture
def settings():
    return replace(Settings(), admin_ids=(ADMIN_ID,))


@pytest.fixture
def console(conn, settings):
    return admin.AdminConsole(conn, settings, ADMIN_ID)


def test_approve_and_export_csv(console, tmp_path):
    station = console.batches.upsert_station(1, "СТО Север")
    batch, _ = console.batches.ingest(ORDER, station_id=station.id)

    assert "подтверждён" in console.approve(batch.id)

    output = tmp_path / "export.csv"
    assert "1 позиций" in console.export(output)
    with output.open(encoding="utf-8-sig", newline="") as handle:
        header, row = list(csv.reader(handle))
    assert header[0] == "Автосервис"
    assert row[0] == "СТО Север"
    assert row[4] == "Замена масла"


def test_export_with_nothing_approved(console, tmp_path):
    output = tmp_path / "export.csv"
    assert "Нет подтверждённых" in console.export(output)
    assert not output.exists()


def test_export_for_unknown_operator(console, tmp_path):
    with pytest.raises(NotFound):
        console.export(tmp_path / "x.csv", operator_id=999)


def test_review_lists_rejection_reason(console):
    batch, _ = console.batches.ingest(ORDER)
    console.reject(batch.id, "Нет подписи")
    text = console.review()
    assert f"#{batch.id}" in text
    assert "Нет подписи" in text


def test_outsider_is_denied(conn, settings):
    outsider = admin.AdminConsole(conn, settings, OUTSIDER_ID)
    with pytest.raises(AuthorizationDenied):
        outsider.stats()
    with pytest.raises(AuthorizationDenied):
        outsider.operators()


def test_operator_commands(console):
    assert "Иван" in console.add_operator("123456789", "Иван")
    assert "Иван" in console.operators()
    operator = console.registry.find(123456789)
    assert "удалён" in console.remove_operator(operator.id)
    assert "Операторов не зарегистрировано" in console.operators()


def test_main_reports_errors_with_exit_code(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(admin, "get_settings", lambda: replace(Settings(), admin_ids=()))
    db_path = tmp_path / "intake.db"

    assert admin.main(["--db", str(db_path), "approve", "42"]) == 1
    assert "Пакет #42 не найден" in capsys.readouterr().out

    assert admin.main(["--db", str(db_path), "stats"]) == 0
    assert "Всего пакетов: 0" in capsys.readouterr().out


def test_writeback_prints_sheet_rows(console):
    batch, _ = console.batches.ingest(ORDER)
    lines = console.writeback(batch.id).split("\n")

    assert lines[0].startswith(f"=== Пакет #{batch.id} | Неизвестно |")
    assert lines[2] == "Замена масла\t1\t1200\t1200\t"
    assert lines[3] == "ИТОГО\t1\t\t1200\t"


def test_added_operator_becomes_a_known_identity(console, conn, caplog):
    with caplog.at_level("INFO"):
        console.add_operator("123456789", "Иван")

    rows = conn.execute("SELECT external_id FROM known_identities").fetchall()
    assert [row["external_id"] for row in rows] == [123456789]
    assert "Operator 123456789 (Иван) registered" in caplog.text


def test_oversized_operator_id_is_rejected(console):
    assert "Неверный формат" in console.add_operator("99999999999999999999", "Иван")
    assert "Операторов не зарегистрировано" in console.operators()
