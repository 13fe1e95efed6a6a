import logging
import os
import threading

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import inspect, text

from inventario.core.config import (
    ADMIN_EMAIL,
    ADMIN_NAME,
    ADMIN_PASSWORD,
    ADMIN_ROLE,
    ADMIN_USERNAME,
    CORS_ORIGIN_REGEX,
    CORS_ORIGINS,
    parse_cors_origins,
)
from inventario.core.security import get_password_hash
from inventario.database.base import Base
from inventario.database.session import SessionLocal, engine
from inventario.models import User
from inventario.routes import approvals, audit, auth, equipment_imports, equipments, licenses, users
from inventario.services.app_settings import ensure_default_config

logger = logging.getLogger("uvicorn.error")
app = FastAPI(title="Inventário de TI")

cors_origins = parse_cors_origins(CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)


@app.middleware("http")
async def ensure_utf8_json_charset(request: Request, call_next):
    response = await call_next(request)
    content_type = str(response.headers.get("content-type", ""))
    if content_type.startswith("application/json") and "charset=" not in content_type.lower():
        response.headers["content-type"] = "application/json; charset=utf-8"
    return response


# Colunas adicionadas depois da primeira versao do banco.
LATE_COLUMNS = {
    "users": {
        "username": "VARCHAR(120)",
        "permissions": "TEXT DEFAULT '[]'",
        "last_login": "TIMESTAMP",
    },
    "equipments": {
        "condicao_termo": "VARCHAR(50)",
        "observacoes": "TEXT",
        "approval_status": "VARCHAR(50) DEFAULT 'approved'",
        "rejection_reason": "TEXT",
        "created_by_id": "INTEGER",
    },
    "licenses": {
        "approval_status": "VARCHAR(50) DEFAULT 'approved'",
        "rejection_reason": "TEXT",
        "created_by_id": "INTEGER",
    },
}


def ensure_late_columns():
    inspector = inspect(engine)
    table_names = inspector.get_table_names()
    with engine.begin() as conn:
        for table_name, columns in LATE_COLUMNS.items():
            if table_name not in table_names:
                continue
            existing = {col["name"] for col in inspector.get_columns(table_name)}
            for column_name, ddl in columns.items():
                if column_name not in existing:
                    conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl}"))


def ensure_legacy_defaults():
    with engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE users "
                "SET username = email "
                "WHERE username IS NULL OR username = ''"
            )
        )
        conn.execute(
            text(
                "UPDATE equipments "
                "SET approval_status = 'approved' "
                "WHERE approval_status IS NULL OR approval_status = ''"
            )
        )


def ensure_app_config():
    db = SessionLocal()
    try:
        ensure_default_config(db)
    finally:
        db.close()


def ensure_admin_user():
    if not ADMIN_EMAIL or not ADMIN_PASSWORD:
        return
    db = SessionLocal()
    try:
        existing = db.query(User).filter(User.email == ADMIN_EMAIL).first()
        if existing:
            updated = False
            if ADMIN_NAME and existing.name != ADMIN_NAME:
                existing.name = ADMIN_NAME
                updated = True
            if ADMIN_ROLE and existing.role != ADMIN_ROLE:
                existing.role = ADMIN_ROLE
                updated = True
            if updated:
                db.commit()
            return
        admin = User(
            username=ADMIN_USERNAME,
            name=ADMIN_NAME,
            email=ADMIN_EMAIL,
            password=get_password_hash(ADMIN_PASSWORD),
            role=ADMIN_ROLE
        )
        db.add(admin)
        db.commit()
    finally:
        db.close()


def run_db_bootstrap() -> None:
    steps = [
        ("create_all", lambda: Base.metadata.create_all(bind=engine)),
        ("ensure_late_columns", ensure_late_columns),
        ("ensure_legacy_defaults", ensure_legacy_defaults),
        ("ensure_app_config", ensure_app_config),
        ("ensure_admin_user", ensure_admin_user),
    ]
    for step_name, step_fn in steps:
        try:
            step_fn()
        except Exception:  # pragma: no cover - startup hardening
            logger.exception("Falha ao executar bootstrap do banco (etapa: %s)", step_name)


_bootstrap_lock = threading.Lock()
_bootstrap_started = False


def trigger_db_bootstrap() -> None:
    global _bootstrap_started
    with _bootstrap_lock:
        if _bootstrap_started:
            return
        _bootstrap_started = True

    mode = str(os.getenv("DB_BOOTSTRAP_MODE", "background") or "background").strip().lower()
    if mode == "off":
        logger.info("DB bootstrap desativado (DB_BOOTSTRAP_MODE=off).")
        return
    if mode == "sync":
        logger.info("Executando DB bootstrap em modo sincronizado.")
        run_db_bootstrap()
        return

    logger.info("Executando DB bootstrap em background.")
    threading.Thread(target=run_db_bootstrap, daemon=True, name="db-bootstrap").start()


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(equipment_imports.router)
app.include_router(equipments.router)
app.include_router(licenses.router)
app.include_router(approvals.router)
app.include_router(audit.router)

@app.get("/")
def root():
    return {"message": "API rodando corretamente!"}


@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/health/db")
def healthcheck_db():
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return {"status": "ok"}


@app.on_event("startup")
def startup_event():
    trigger_db_bootstrap()
