import asyncio
import io
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import UploadFile
from sqlalchemy.exc import SQLAlchemyError

from inventario.models.audit_log import AuditLog
from inventario.models.equipment import Equipment, EquipmentHistory
from inventario.routes.equipment_imports import (
    get_import_status,
    preview_consolidation,
    preview_periodic_update,
    run_consolidation,
    run_periodic_update,
)
from inventario.services import equipment_store
from inventario.services.app_settings import ImportSettings, load_import_settings, store_import_settings

BASE_CSV = (
    "EQUIPAMENTO,PATRIMONIO,SERIAL,USUÁRIO ATUAL,STATUS,EMAIL COLABORADOR\n"
    "Notebook Dell,P-001,AB 001,Ana,Em Uso,ana@empresa.com\n"
    "Desktop HP,P-002,CD002,,Manutenção,\n"
    "Monitor LG,P-003,EF003,,Em Uso,velho@empresa.com\n"
)
ABSOLUTE_CSV = (
    "Nome do dispositivo,Número de série,Nome do usuário atual,Marca,Modelo\n"
    "NB-ANA,ab001,Ana,Dell,Latitude 5420\n"
    "NB-NOVO,GH004,Bruno,Lenovo,T14\n"
)
PERIODIC_CSV = (
    "Nome do dispositivo,Número de série,Nome do usuário atual,Marca,Modelo\n"
    "NB-ANA,AB001,,Dell,Latitude 5420\n"
    "NB-CAIO,IJ005,Caio,Apple,MacBook Air\n"
)


def upload(text: str, filename: str = "arquivo.csv") -> UploadFile:
    return UploadFile(file=io.BytesIO(text.encode("utf-8")), filename=filename)


def consolidate_files(db, user, base_text=BASE_CSV, absolute_text=ABSOLUTE_CSV):
    return asyncio.run(
        run_consolidation(
            base_file=upload(base_text, "base.csv") if base_text is not None else None,
            absolute_file=upload(absolute_text, "absolute.csv") if absolute_text is not None else None,
            db=db,
            current_user=user,
        )
    )


def periodic_update(db, user, text=PERIODIC_CSV):
    return asyncio.run(run_periodic_update(absolute_file=upload(text, "absolute.csv"), db=db, current_user=user))


def envelope(response) -> dict:
    return json.loads(response.body)


def equipment_by_serial(db, serial: str) -> Equipment:
    return db.query(Equipment).filter(Equipment.serial == serial).one()


def test_consolidation_replaces_inventory_and_sets_markers(db_session, admin_user):
    result = consolidate_files(db_session, admin_user)

    assert result.success is True
    assert result.total_records == 4
    assert db_session.query(Equipment).count() == 4

    merged = equipment_by_serial(db_session, "ab001")
    assert merged.equipamento == "NB-ANA"
    assert merged.patrimonio == "P-001"
    assert merged.brand == "Dell"
    assert merged.status == "Em Uso"
    assert merged.approval_status == "approved"
    assert merged.created_by_id == admin_user.id
    assert json.loads(merged.qr_code) == {"id": merged.id, "serial": "ab001", "type": "equipment"}

    protected = equipment_by_serial(db_session, "CD002")
    assert protected.status == "Manutenção"

    returned = equipment_by_serial(db_session, "EF003")
    assert returned.status == "Estoque"
    assert returned.usuario_atual == ""
    assert returned.email_colaborador == ""

    settings = load_import_settings(db_session)
    assert settings.has_initial_consolidation_run is True
    assert settings.last_absolute_update_timestamp

    audit = db_session.query(AuditLog).filter(AuditLog.action_type == "IMPORT").one()
    assert audit.target_id == "ALL"
    assert audit.details == "Replaced entire equipment inventory with 4 items via initial consolidation tool."


def test_second_consolidation_discards_previous_inventory_and_history(db_session, admin_user):
    consolidate_files(db_session, admin_user)
    periodic_update(db_session, admin_user)
    assert db_session.query(EquipmentHistory).count() > 0

    result = consolidate_files(db_session, admin_user, base_text="SERIAL,EQUIPAMENTO\nZZ999,Unico\n", absolute_text=None)

    assert result.total_records == 1
    assert [row.serial for row in db_session.query(Equipment).all()] == ["ZZ999"]
    assert db_session.query(EquipmentHistory).count() == 0


def test_consolidation_without_files_returns_400(db_session, admin_user):
    response = consolidate_files(db_session, admin_user, base_text=None, absolute_text=None)

    assert response.status_code == 400
    assert envelope(response)["success"] is False


def test_consolidation_with_malformed_file_returns_422_and_persists_nothing(db_session, admin_user):
    response = consolidate_files(db_session, admin_user, base_text="SERIAL,EQUIPAMENTO\n", absolute_text=None)

    assert response.status_code == 422
    assert envelope(response)["message"].startswith("Falha ao processar arquivo:")
    assert db_session.query(Equipment).count() == 0
    assert load_import_settings(db_session).has_initial_consolidation_run is False


def test_consolidation_rolls_back_on_storage_failure(db_session, admin_user, monkeypatch):
    consolidate_files(db_session, admin_user)

    def failing_log_action(*args, **kwargs):
        raise SQLAlchemyError("falha simulada")

    monkeypatch.setattr(equipment_store, "log_action", failing_log_action)
    response = consolidate_files(db_session, admin_user, base_text="SERIAL\nNOVO1\n", absolute_text=None)

    assert response.status_code == 500
    assert envelope(response)["message"].startswith("Falha ao salvar no sistema:")
    assert db_session.query(Equipment).count() == 4
    assert db_session.query(Equipment).filter(Equipment.serial == "NOVO1").count() == 0


def test_consolidation_preview_does_not_persist(db_session, admin_user):
    preview = asyncio.run(
        preview_consolidation(
            base_file=upload(BASE_CSV, "base.csv"),
            absolute_file=upload(ABSOLUTE_CSV, "absolute.csv"),
            current_user=admin_user,
        )
    )

    assert preview.base_records == 3
    assert preview.absolute_records == 2
    assert preview.total == 4
    assert db_session.query(Equipment).count() == 0


def test_periodic_update_records_history_and_keeps_absent_equipment(db_session, admin_user):
    consolidate_files(db_session, admin_user)
    untouched_before = equipment_by_serial(db_session, "CD002").updated_at

    result = periodic_update(db_session, admin_user)

    assert result.success is True
    assert (result.inserted_count, result.updated_count, result.unchanged_count) == (1, 1, 0)
    assert db_session.query(Equipment).count() == 5

    updated = equipment_by_serial(db_session, "ab001")
    assert updated.usuario_atual == ""
    assert updated.status == "Estoque"
    changes = {
        row.change_type: (row.from_value, row.to_value, row.changed_by)
        for row in db_session.query(EquipmentHistory).filter(EquipmentHistory.equipment_id == updated.id)
    }
    assert changes == {
        "usuario_atual": ("Ana", "", admin_user.username),
        "status": ("Em Uso", "Estoque", admin_user.username),
    }

    created = equipment_by_serial(db_session, "IJ005")
    assert created.status == "Em Uso"
    assert created.approval_status == "approved"
    assert created.created_by_id == admin_user.id
    assert json.loads(created.qr_code)["id"] == created.id
    [creation] = db_session.query(EquipmentHistory).filter(EquipmentHistory.equipment_id == created.id).all()
    assert (creation.change_type, creation.from_value, creation.to_value) == (
        "initial_import",
        "N/A",
        "Importado via atualização periódica",
    )

    assert equipment_by_serial(db_session, "CD002").updated_at == untouched_before
    partial = db_session.query(AuditLog).filter(AuditLog.target_id == "PARTIAL").one()
    assert partial.details == "Periodic update of equipment inventory with 2 items from Absolute report."


def test_periodic_update_twice_is_idempotent(db_session, admin_user):
    consolidate_files(db_session, admin_user)
    periodic_update(db_session, admin_user)
    history_before = db_session.query(EquipmentHistory).count()

    result = periodic_update(db_session, admin_user)

    assert (result.inserted_count, result.updated_count, result.unchanged_count) == (0, 0, 2)
    assert db_session.query(EquipmentHistory).count() == history_before


def test_periodic_update_before_consolidation_only_moves_timestamp(db_session, admin_user):
    result = periodic_update(db_session, admin_user)

    assert result.inserted_count == 2
    settings = load_import_settings(db_session)
    assert settings.has_initial_consolidation_run is False
    assert settings.last_absolute_update_timestamp


def test_periodic_preview_reports_plan_without_writing(db_session, admin_user):
    consolidate_files(db_session, admin_user)

    preview = asyncio.run(
        preview_periodic_update(absolute_file=upload(PERIODIC_CSV), db=db_session, current_user=admin_user)
    )

    assert (preview.inserted_count, preview.updated_count, preview.history_count) == (1, 1, 3)
    kinds = {change.serial: (change.kind, change.fields) for change in preview.changes}
    assert kinds["ab001"] == ("update", ["usuario_atual", "status"])
    assert kinds["IJ005"] == ("insert", ["initial_import"])
    assert db_session.query(EquipmentHistory).count() == 0


def test_periodic_update_rolls_back_whole_batch_on_storage_failure(db_session, admin_user, monkeypatch):
    db_session.add(Equipment(equipamento="NB-ANA", serial="AB001", usuario_atual="Ana", status="Em Uso"))
    db_session.commit()
    real_log_action = equipment_store.log_action
    calls = []

    def log_action_failing_on_second_call(*args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise SQLAlchemyError("falha simulada")
        return real_log_action(*args, **kwargs)

    monkeypatch.setattr(equipment_store, "log_action", log_action_failing_on_second_call)
    response = periodic_update(db_session, admin_user)

    assert response.status_code == 500
    assert envelope(response)["success"] is False
    assert len(calls) == 2
    assert db_session.query(Equipment).count() == 1
    assert equipment_by_serial(db_session, "AB001").usuario_atual == "Ana"
    assert db_session.query(EquipmentHistory).count() == 0
    assert db_session.query(AuditLog).count() == 0
    assert load_import_settings(db_session).last_absolute_update_timestamp is None


def test_periodic_update_requires_absolute_file(db_session, admin_user):
    response = asyncio.run(run_periodic_update(absolute_file=None, db=db_session, current_user=admin_user))

    assert response.status_code == 400


def test_import_status_switches_tool_after_consolidation(db_session, admin_user):
    assert get_import_status(db=db_session, current_user=admin_user).next_tool == "consolidation"

    consolidate_files(db_session, admin_user)

    status = get_import_status(db=db_session, current_user=admin_user)
    assert status.next_tool == "periodic"
    assert status.has_initial_consolidation_run is True
    assert status.update_required is False


def test_import_status_flags_overdue_periodic_update(db_session, admin_user):
    assert get_import_status(db=db_session, current_user=admin_user).update_required is True

    stale = ImportSettings(True, "2024-01-01T08:00:00+00:00")
    store_import_settings(db_session, stale)
    db_session.commit()

    assert get_import_status(db=db_session, current_user=admin_user).update_required is True


@pytest.mark.parametrize(
    ("timestamp", "hours_later", "expected"),
    [
        (None, 0, True),
        ("nao e data", 0, True),
        ("2024-01-01T08:00:00+00:00", 1, False),
        ("2024-01-01T08:00:00+00:00", 48, False),
        ("2024-01-01T08:00:00+00:00", 49, True),
        ("2024-01-01T08:00:00", 49, True),
    ],
)
def test_update_required_after_48_hours(timestamp, hours_later, expected):
    now = datetime(2024, 1, 1, 8, tzinfo=timezone.utc) + timedelta(hours=hours_later)

    assert ImportSettings(True, timestamp).update_required(now=now) is expected
