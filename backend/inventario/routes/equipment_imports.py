import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from inventario.core.auth import require_permission
from inventario.core.config import UPLOAD_MAX_BYTES
from inventario.database.deps import get_db
from inventario.models.user import User
from inventario.schemas.equipment_import import (
    ConsolidationPreviewOut,
    ImportResultOut,
    ImportStatusOut,
    PeriodicUpdatePreviewOut,
    PlannedChangeOut,
)
from inventario.services.app_settings import load_import_settings
from inventario.services.equipment_consolidation import (
    Actor,
    NoInputError,
    ReconciliationResult,
    UpsertKind,
    consolidate,
    reconcile,
)
from inventario.services.equipment_csv import (
    SOURCE_LABELS,
    MalformedInputError,
    SourceFormat,
    decode_csv_bytes,
    parse_source,
)
from inventario.services.equipment_store import (
    PersistenceError,
    apply_consolidation,
    apply_reconciliation,
    load_persisted_equipment,
)

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/equipments/import", tags=["Equipment Import"])

IMPORT_PERMISSION = "equipments.import"
MISSING_ABSOLUTE_MESSAGE = "Por favor, selecione o Relatório Absolute."


def _actor(user: User) -> Actor:
    return Actor(username=user.username, id=user.id)


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _has_upload(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(str(upload.filename or "").strip())


async def _read_source(upload: Optional[UploadFile], source_format: SourceFormat) -> Optional[list[dict[str, str]]]:
    if not _has_upload(upload):
        return None
    raw_bytes = await upload.read()
    label = SOURCE_LABELS[source_format]
    if len(raw_bytes) > UPLOAD_MAX_BYTES:
        raise MalformedInputError(f"{label} excede o tamanho máximo permitido.")
    try:
        records = parse_source(decode_csv_bytes(raw_bytes), source_format)
    except MalformedInputError as exc:
        raise MalformedInputError(f"{label}: {exc}") from exc
    logger.info("%s lido (%s): %s registros com serial.", label, upload.filename, len(records))
    return records


def _planned_changes(result: ReconciliationResult, serial_by_id: dict[int, str]) -> list[PlannedChangeOut]:
    changes: list[PlannedChangeOut] = []
    for plan in result.upserts:
        serial = plan.serial if plan.kind == UpsertKind.INSERT else serial_by_id.get(plan.id, "")
        changes.append(
            PlannedChangeOut(
                kind=plan.kind.value,
                equipment_id=plan.id,
                serial=serial,
                fields=[change.field_name for change in plan.changes],
            )
        )
    return changes


@router.get("/status", response_model=ImportStatusOut)
def get_import_status(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(IMPORT_PERMISSION)),
):
    settings = load_import_settings(db)
    return ImportStatusOut(
        has_initial_consolidation_run=settings.has_initial_consolidation_run,
        last_absolute_update_timestamp=settings.last_absolute_update_timestamp,
        next_tool="periodic" if settings.has_initial_consolidation_run else "consolidation",
        update_required=settings.update_required(),
    )


@router.post("/consolidation/preview", response_model=ConsolidationPreviewOut)
async def preview_consolidation(
    base_file: Optional[UploadFile] = File(None),
    absolute_file: Optional[UploadFile] = File(None),
    current_user: User = Depends(require_permission(IMPORT_PERMISSION)),
):
    try:
        base_records = await _read_source(base_file, SourceFormat.BASE)
        absolute_records = await _read_source(absolute_file, SourceFormat.ABSOLUTE)
        dataset = consolidate(base_records, absolute_records)
    except NoInputError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))
    except MalformedInputError as exc:
        logger.warning("Arquivo rejeitado na pre-visualizacao da consolidacao: %s", exc)
        return _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Falha ao processar arquivo: {exc}")

    return ConsolidationPreviewOut(
        base_records=len(base_records or []),
        absolute_records=len(absolute_records or []),
        total=len(dataset),
        items=dataset,
    )


@router.post("/consolidation", response_model=ImportResultOut)
async def run_consolidation(
    base_file: Optional[UploadFile] = File(None),
    absolute_file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(IMPORT_PERMISSION)),
):
    try:
        base_records = await _read_source(base_file, SourceFormat.BASE)
        absolute_records = await _read_source(absolute_file, SourceFormat.ABSOLUTE)
        dataset = consolidate(base_records, absolute_records)
    except NoInputError as exc:
        return _failure(status.HTTP_400_BAD_REQUEST, str(exc))
    except MalformedInputError as exc:
        logger.warning("Arquivo rejeitado na consolidacao: %s", exc)
        return _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Falha ao processar arquivo: {exc}")

    try:
        apply_consolidation(db, dataset, _actor(current_user), load_import_settings(db))
    except PersistenceError as exc:
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Falha ao salvar no sistema: {exc}")

    return ImportResultOut(
        success=True,
        message=f"Inventário consolidado com sucesso: {len(dataset)} equipamentos importados.",
        total_records=len(dataset),
        inserted_count=len(dataset),
    )


@router.post("/periodic-update/preview", response_model=PeriodicUpdatePreviewOut)
async def preview_periodic_update(
    absolute_file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(IMPORT_PERMISSION)),
):
    try:
        records = await _read_source(absolute_file, SourceFormat.ABSOLUTE)
    except MalformedInputError as exc:
        logger.warning("Arquivo rejeitado na pre-visualizacao da atualizacao: %s", exc)
        return _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Falha ao processar arquivo: {exc}")
    if records is None:
        return _failure(status.HTTP_400_BAD_REQUEST, MISSING_ABSOLUTE_MESSAGE)

    persisted = load_persisted_equipment(db)
    result = reconcile(records, persisted, _actor(current_user))
    return PeriodicUpdatePreviewOut(
        total_records=len(records),
        inserted_count=result.inserted_count,
        updated_count=result.updated_count,
        unchanged_count=result.unchanged_count,
        history_count=len(result.history_entries),
        changes=_planned_changes(result, {item.id: item.serial for item in persisted}),
    )


@router.post("/periodic-update", response_model=ImportResultOut)
async def run_periodic_update(
    absolute_file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(IMPORT_PERMISSION)),
):
    try:
        records = await _read_source(absolute_file, SourceFormat.ABSOLUTE)
    except MalformedInputError as exc:
        logger.warning("Arquivo rejeitado na atualizacao periodica: %s", exc)
        return _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Falha ao processar arquivo: {exc}")
    if records is None:
        return _failure(status.HTTP_400_BAD_REQUEST, MISSING_ABSOLUTE_MESSAGE)

    actor = _actor(current_user)
    result = reconcile(records, load_persisted_equipment(db), actor)
    try:
        apply_reconciliation(db, result, actor, load_import_settings(db), incoming_count=len(records))
    except PersistenceError as exc:
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Falha ao salvar no sistema: {exc}")

    return ImportResultOut(
        success=True,
        message=(
            f"Atualização concluída: {result.inserted_count} novos, {result.updated_count} atualizados, "
            f"{result.unchanged_count} sem alteração."
        ),
        total_records=len(records),
        inserted_count=result.inserted_count,
        updated_count=result.updated_count,
        unchanged_count=result.unchanged_count,
        history_count=len(result.history_entries),
    )
