from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inventario.core.config import COMPANY_NAME
from inventario.models.app_config import AppConfig

HAS_INITIAL_CONSOLIDATION_RUN = "hasInitialConsolidationRun"
LAST_ABSOLUTE_UPDATE_TIMESTAMP = "lastAbsoluteUpdateTimestamp"
COMPANY_NAME_KEY = "companyName"
LICENSE_TOTALS_KEY = "license_totals"

DEFAULT_CONFIG = {
    COMPANY_NAME_KEY: COMPANY_NAME,
    HAS_INITIAL_CONSOLIDATION_RUN: "false",
    LAST_ABSOLUTE_UPDATE_TIMESTAMP: None,
}
UPDATE_OVERDUE_AFTER = timedelta(hours=48)


@dataclass(frozen=True)
class ImportSettings:
    has_initial_consolidation_run: bool = False
    last_absolute_update_timestamp: Optional[str] = None

    def after_consolidation(self, when: Optional[datetime] = None) -> "ImportSettings":
        return ImportSettings(
            has_initial_consolidation_run=True,
            last_absolute_update_timestamp=_iso_timestamp(when),
        )

    def after_periodic_update(self, when: Optional[datetime] = None) -> "ImportSettings":
        return replace(self, last_absolute_update_timestamp=_iso_timestamp(when))

    def update_required(self, now: Optional[datetime] = None) -> bool:
        """Sem atualizacao registrada, ou a ultima tem mais de 48 horas."""
        last_update = _parse_timestamp(self.last_absolute_update_timestamp)
        if last_update is None:
            return True
        return abs((now or datetime.now(timezone.utc)) - last_update) > UPDATE_OVERDUE_AFTER


def _iso_timestamp(when: Optional[datetime]) -> str:
    return (when or datetime.now(timezone.utc)).isoformat()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(str(value or "").strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _parse_bool(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in {"true", "1", "yes", "sim"}


def get_config_value(db: Session, key: str) -> Optional[str]:
    row = db.query(AppConfig).filter(AppConfig.config_key == key).first()
    return row.config_value if row else None


def set_config_value(db: Session, key: str, value: Optional[str]) -> None:
    row = db.query(AppConfig).filter(AppConfig.config_key == key).first()
    if row is None:
        db.add(AppConfig(config_key=key, config_value=value))
        return
    row.config_value = value


def load_import_settings(db: Session) -> ImportSettings:
    return ImportSettings(
        has_initial_consolidation_run=_parse_bool(get_config_value(db, HAS_INITIAL_CONSOLIDATION_RUN)),
        last_absolute_update_timestamp=get_config_value(db, LAST_ABSOLUTE_UPDATE_TIMESTAMP) or None,
    )


def store_import_settings(db: Session, settings: ImportSettings) -> None:
    """Grava os marcadores na transacao aberta, sem commit."""
    set_config_value(
        db,
        HAS_INITIAL_CONSOLIDATION_RUN,
        "true" if settings.has_initial_consolidation_run else "false",
    )
    set_config_value(db, LAST_ABSOLUTE_UPDATE_TIMESTAMP, settings.last_absolute_update_timestamp)


def company_name(db: Session) -> str:
    return get_config_value(db, COMPANY_NAME_KEY) or COMPANY_NAME


def ensure_default_config(db: Session) -> None:
    existing = {row.config_key for row in db.query(AppConfig.config_key).all()}
    missing = [key for key in DEFAULT_CONFIG if key not in existing]
    for key in missing:
        db.add(AppConfig(config_key=key, config_value=DEFAULT_CONFIG[key]))
    if missing:
        db.commit()


def load_license_totals(db: Session) -> dict[str, int]:
    """Quantidade contratada por produto; valor corrompido conta como vazio."""
    try:
        decoded = json.loads(get_config_value(db, LICENSE_TOTALS_KEY) or "{}")
    except json.JSONDecodeError:
        return {}
    if not isinstance(decoded, dict):
        return {}
    totals: dict[str, int] = {}
    for product, value in decoded.items():
        try:
            totals[str(product)] = int(value)
        except (TypeError, ValueError):
            continue
    return totals


def store_license_totals(db: Session, totals: dict[str, int]) -> None:
    set_config_value(db, LICENSE_TOTALS_KEY, json.dumps(totals, ensure_ascii=False, sort_keys=True))
