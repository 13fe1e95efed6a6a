import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventario.core.auth import require_any_permission, require_permission
from inventario.core.config import UPLOAD_MAX_BYTES
from inventario.core.permissions import has_permission
from inventario.database.deps import get_db
from inventario.models.license import License
from inventario.models.user import User
from inventario.schemas.license import (
    LicenseApprovalUpdate,
    LicenseCreate,
    LicenseImportOut,
    LicenseOut,
    LicenseTotalsUpdate,
    LicenseUpdate,
    OperationResultOut,
    ProductRename,
)
from inventario.services.app_settings import load_license_totals, store_license_totals
from inventario.services.equipment_consolidation import APPROVAL_APPROVED, diff_fields
from inventario.services.equipment_csv import MalformedInputError, decode_csv_bytes
from inventario.services.equipment_history import log_action
from inventario.services.equipment_store import APPROVAL_PENDING, APPROVAL_REJECTED
from inventario.services.license_csv import parse_license_csv

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/licenses", tags=["Licenses"])
get_licenses_viewer = require_any_permission("licenses.view", "licenses.manage")
get_licenses_manager = require_permission("licenses.manage")

MANAGE_PERMISSION = "licenses.manage"
LICENSE_FIELDS = tuple(LicenseCreate.model_fields)


def _is_manager(user: User) -> bool:
    return has_permission(user, MANAGE_PERMISSION)


def _clean_product(value: Optional[str]) -> str:
    return " ".join(str(value or "").split())


def _visible_licenses(db: Session, current_user: User):
    query = db.query(License)
    if _is_manager(current_user):
        return query
    return query.filter(
        or_(
            License.approval_status == APPROVAL_APPROVED,
            License.created_by_id == current_user.id,
        )
    )


def _get_license_or_404(db: Session, license_id: int, current_user: User) -> License:
    row = _visible_licenses(db, current_user).filter(License.id == license_id).first()
    if not row:
        raise HTTPException(status_code=404, detail="Licença não encontrada.")
    return row


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@router.get("/", response_model=list[LicenseOut])
def list_licenses(
    q: Optional[str] = Query(default=None),
    produto: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_viewer),
):
    query = _visible_licenses(db, current_user)
    if produto:
        query = query.filter(License.produto == _clean_product(produto))
    if q:
        search = f"%{' '.join(q.split())}%"
        query = query.filter(
            or_(
                License.produto.ilike(search),
                License.usuario.ilike(search),
                License.chave_serial.ilike(search),
                License.setor.ilike(search),
                License.nome_computador.ilike(search),
            )
        )
    return query.order_by(License.produto.asc(), License.usuario.asc(), License.id.asc()).offset(offset).limit(limit).all()


@router.get("/totals", response_model=dict[str, int])
def get_license_totals(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_viewer),
):
    return load_license_totals(db)


@router.post("/totals", response_model=OperationResultOut)
def save_license_totals(
    payload: LicenseTotalsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    totals = {_clean_product(name): value for name, value in payload.totals.items() if _clean_product(name)}
    if any(value < 0 for value in totals.values()):
        raise HTTPException(status_code=422, detail="O total de licenças não pode ser negativo.")

    store_license_totals(db, totals)
    log_action(db, current_user.username, "UPDATE", "TOTALS", None, "Updated license totals")
    db.commit()
    return OperationResultOut(success=True, message="Totais de licenças salvos com sucesso.")


@router.post("/rename-product", status_code=status.HTTP_204_NO_CONTENT)
def rename_product(
    payload: ProductRename,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    old_name = _clean_product(payload.old_name)
    new_name = _clean_product(payload.new_name)
    if not old_name or not new_name:
        raise HTTPException(status_code=422, detail="Informe o nome atual e o novo nome do produto.")
    if old_name == new_name:
        return None

    db.query(License).filter(License.produto == old_name).update({License.produto: new_name})
    # O total contratado acompanha o produto renomeado.
    totals = load_license_totals(db)
    if old_name in totals:
        totals[new_name] = totals.get(new_name, 0) + totals.pop(old_name)
        store_license_totals(db, totals)
    log_action(db, current_user.username, "UPDATE", "PRODUCT", old_name, f"Renamed product from {old_name} to {new_name}")
    db.commit()
    return None


@router.post("/import", response_model=LicenseImportOut)
async def import_licenses(
    produto: str = Form(...),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    """Substitui todas as licencas de um produto pelas linhas do CSV, numa unica transacao."""
    product_name = _clean_product(produto)
    if not product_name:
        return _failure(status.HTTP_400_BAD_REQUEST, "Informe o produto das licenças importadas.")
    if file is None or not str(file.filename or "").strip():
        return _failure(status.HTTP_400_BAD_REQUEST, "Por favor, selecione o arquivo CSV de licenças.")

    raw_bytes = await file.read()
    try:
        if len(raw_bytes) > UPLOAD_MAX_BYTES:
            raise MalformedInputError("Arquivo excede o tamanho máximo permitido.")
        records = parse_license_csv(decode_csv_bytes(raw_bytes))
    except MalformedInputError as exc:
        logger.warning("CSV de licencas rejeitado (%s): %s", product_name, exc)
        return _failure(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Falha ao processar arquivo: {exc}")

    try:
        removed_count = db.query(License).filter(License.produto == product_name).delete()
        for record in records:
            db.add(
                License(
                    produto=product_name,
                    approval_status=APPROVAL_APPROVED,
                    created_by_id=current_user.id,
                    **record,
                )
            )
        log_action(
            db,
            current_user.username,
            "IMPORT",
            "LICENSE",
            product_name,
            f"Replaced all licenses for product {product_name} with {len(records)} new items via CSV import.",
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Falha ao importar licencas de %s.", product_name)
        return _failure(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Erro de banco de dados: {exc}")

    logger.info("Licencas de %s importadas por %s: %s itens.", product_name, current_user.username, len(records))
    return LicenseImportOut(
        success=True,
        message=f"Licenças para {product_name} importadas com sucesso.",
        produto=product_name,
        total_records=len(records),
        removed_count=removed_count,
    )


@router.get("/{license_id}", response_model=LicenseOut)
def get_license(
    license_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_viewer),
):
    return _get_license_or_404(db, license_id, current_user)


@router.post("/", response_model=LicenseOut, status_code=status.HTTP_201_CREATED)
def create_license(
    payload: LicenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_viewer),
):
    data = payload.model_dump()
    data["produto"] = _clean_product(data["produto"])
    row = License(
        **data,
        approval_status=APPROVAL_APPROVED if _is_manager(current_user) else APPROVAL_PENDING,
        created_by_id=current_user.id,
    )
    db.add(row)
    db.flush()
    log_action(
        db,
        current_user.username,
        "CREATE",
        "LICENSE",
        row.id,
        f"Created new license for product: {row.produto}",
    )
    db.commit()
    db.refresh(row)
    return row


@router.put("/{license_id}", response_model=LicenseOut)
def update_license(
    license_id: int,
    payload: LicenseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    row = _get_license_or_404(db, license_id, current_user)
    data = payload.model_dump(exclude_unset=True)
    for name in ("produto", "chave_serial", "usuario"):
        if name in data:
            data[name] = str(data[name] or "").strip()
            if not data[name]:
                raise HTTPException(status_code=422, detail=f"Campo obrigatório: {name}.")
    current = {name: getattr(row, name) for name in LICENSE_FIELDS}
    changes = diff_fields(current, data)
    if not changes:
        return row

    for name, _, _ in changes:
        setattr(row, name, data[name])
    log_action(
        db,
        current_user.username,
        "UPDATE",
        "LICENSE",
        row.id,
        f"Updated license for product: {row.produto}. Changes: {', '.join(name for name, _, _ in changes)}",
    )
    db.commit()
    db.refresh(row)
    return row


@router.post("/{license_id}/approval", response_model=LicenseOut)
def review_license(
    license_id: int,
    payload: LicenseApprovalUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    row = _get_license_or_404(db, license_id, current_user)
    reason = " ".join(str(payload.rejection_reason or "").split())
    if not payload.approved and not reason:
        raise HTTPException(status_code=422, detail="Informe o motivo da rejeição.")

    row.approval_status = APPROVAL_APPROVED if payload.approved else APPROVAL_REJECTED
    row.rejection_reason = None if payload.approved else reason
    log_action(
        db,
        current_user.username,
        "APPROVE" if payload.approved else "REJECT",
        "LICENSE",
        row.id,
        f"License {row.produto} for {row.usuario} {'approved' if payload.approved else 'rejected'}."
        + ("" if payload.approved else f" Reason: {reason}"),
    )
    db.commit()
    db.refresh(row)
    return row


@router.delete("/{license_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_license(
    license_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_licenses_manager),
):
    row = _get_license_or_404(db, license_id, current_user)
    details = f"Deleted license for product: {row.produto}"
    db.delete(row)
    log_action(db, current_user.username, "DELETE", "LICENSE", license_id, details)
    db.commit()
    return None
