from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from inventario.services.equipment_csv import EquipmentField, merge_key

STATUS_IN_USE = "Em Uso"
STATUS_IN_STOCK = "Estoque"
PROTECTED_STATUSES = frozenset({"Manutenção", "Descartado", "Perdido", "Doado"})

APPROVAL_APPROVED = "approved"
CREATION_CHANGE_TYPE = "initial_import"
CREATION_FROM_VALUE = "N/A"
CREATION_TO_VALUE = "Importado via atualização periódica"

# Campos derivados ou usados como chave nunca entram no diff campo a campo.
RECONCILE_IGNORED_FIELDS = frozenset({EquipmentField.SERIAL.value, EquipmentField.STATUS.value})

_USER = EquipmentField.USUARIO_ATUAL.value
_EMAIL = EquipmentField.EMAIL_COLABORADOR.value
_STATUS = EquipmentField.STATUS.value
_SERIAL = EquipmentField.SERIAL.value


class NoInputError(ValueError):
    """Consolidacao chamada sem nenhum dos dois arquivos."""


class UpsertKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class Actor:
    username: str
    id: Optional[int] = None


@dataclass(frozen=True)
class PersistedEquipment:
    id: int
    fields: Mapping[str, Any]

    @property
    def serial(self) -> str:
        return str(self.fields.get(_SERIAL) or "")

    @property
    def status(self) -> Optional[str]:
        return self.fields.get(_STATUS)


@dataclass(frozen=True)
class FieldChange:
    entity_id: Optional[int]
    changed_by: str
    field_name: str
    old_value: str
    new_value: str


@dataclass
class UpsertPlan:
    kind: UpsertKind
    fields: dict[str, Any]
    changes: list[FieldChange] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def serial(self) -> str:
        return str(self.fields.get(_SERIAL) or "")


@dataclass
class ReconciliationResult:
    upserts: list[UpsertPlan] = field(default_factory=list)
    history_entries: list[FieldChange] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def inserted_count(self) -> int:
        return sum(1 for plan in self.upserts if plan.kind == UpsertKind.INSERT)

    @property
    def updated_count(self) -> int:
        return sum(1 for plan in self.upserts if plan.kind == UpsertKind.UPDATE)


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def has_current_user(record: Mapping[str, Any]) -> bool:
    return bool(as_text(record.get(_USER)).strip())


def derive_status(record: Mapping[str, Any], current_status: Optional[str] = None) -> Optional[str]:
    """Status a partir do usuario atual.

    Usuario preenchido resulta em "Em Uso". Usuario vazio resulta em "Estoque",
    a menos que ``current_status`` seja um status terminal protegido. Sem a
    coluna de usuario no registro o status atual e mantido.
    """
    if has_current_user(record):
        return STATUS_IN_USE
    if _USER not in record:
        return current_status or STATUS_IN_STOCK
    if current_status in PROTECTED_STATUSES:
        return current_status
    return STATUS_IN_STOCK


def overlay(target: dict[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    target.update(source)
    return target


def diff_fields(
    current: Mapping[str, Any],
    incoming: Mapping[str, Any],
    ignore: Iterable[str] = (),
) -> list[tuple[str, str, str]]:
    ignored = set(ignore)
    changes: list[tuple[str, str, str]] = []
    for name, new_value in incoming.items():
        if name in ignored:
            continue
        old_text = as_text(current.get(name))
        new_text = as_text(new_value)
        if old_text != new_text:
            changes.append((name, old_text, new_text))
    return changes


def _apply_consolidation_status(record: dict[str, Any]) -> dict[str, Any]:
    if has_current_user(record):
        record[_STATUS] = STATUS_IN_USE
        return record
    # Sem estado persistido: o "status anterior" e o que veio da propria planilha.
    if record.get(_STATUS) in PROTECTED_STATUSES:
        return record
    record[_STATUS] = STATUS_IN_STOCK
    record[_USER] = ""
    record[_EMAIL] = ""
    return record


def _fold_by_merge_key(*sources: Sequence[Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
    merged: dict[str, dict[str, Any]] = {}
    for records in sources:
        for record in records:
            key = merge_key(record.get(_SERIAL))
            if not key:
                continue
            overlay(merged.setdefault(key, {}), record)
    return merged


def consolidate(
    base_records: Optional[Sequence[Mapping[str, Any]]] = None,
    absolute_records: Optional[Sequence[Mapping[str, Any]]] = None,
) -> list[dict[str, Any]]:
    """Monta o inventario inicial a partir da planilha base e/ou do relatorio Absolute.

    Registros da base entram primeiro e os do Absolute sao sobrepostos campo a
    campo, entao o Absolute vence quando os dois definem o mesmo campo. O
    resultado e deduplicado pela chave de serial e segue a ordem de insercao.
    """
    if base_records is None and absolute_records is None:
        raise NoInputError(
            "Por favor, selecione pelo menos um arquivo (Planilha Base ou Relatório Absolute)."
        )

    merged = _fold_by_merge_key(base_records or [], absolute_records or [])
    return [_apply_consolidation_status(record) for record in merged.values()]


def reconcile(
    incoming_records: Sequence[Mapping[str, Any]],
    persisted_equipment: Sequence[PersistedEquipment],
    actor: Actor,
) -> ReconciliationResult:
    """Compara o relatorio Absolute com o inventario persistido.

    Gera um plano de UPDATE por equipamento que mudou e um plano de INSERT por
    serial desconhecido. Equipamentos ausentes do relatorio nao sao tocados.
    """
    persisted_by_key: dict[str, PersistedEquipment] = {}
    for item in persisted_equipment:
        persisted_by_key.setdefault(merge_key(item.serial), item)

    result = ReconciliationResult()
    for key, record in _fold_by_merge_key(incoming_records).items():
        existing = persisted_by_key.get(key)

        if existing is None:
            fields = {name: value for name, value in record.items() if name != _STATUS}
            fields[_STATUS] = derive_status(record)
            fields["approval_status"] = APPROVAL_APPROVED
            fields["created_by_id"] = actor.id
            creation = FieldChange(
                entity_id=None,
                changed_by=actor.username,
                field_name=CREATION_CHANGE_TYPE,
                old_value=CREATION_FROM_VALUE,
                new_value=CREATION_TO_VALUE,
            )
            result.upserts.append(UpsertPlan(kind=UpsertKind.INSERT, fields=fields, changes=[creation]))
            result.history_entries.append(creation)
            continue

        update_set: dict[str, Any] = {}
        changes: list[FieldChange] = []
        for name, old_text, new_text in diff_fields(existing.fields, record, ignore=RECONCILE_IGNORED_FIELDS):
            update_set[name] = record[name]
            changes.append(FieldChange(existing.id, actor.username, name, old_text, new_text))

        new_status = derive_status(record, existing.status)
        if as_text(new_status) != as_text(existing.status):
            update_set[_STATUS] = new_status
            changes.append(
                FieldChange(existing.id, actor.username, _STATUS, as_text(existing.status), as_text(new_status))
            )

        if not update_set:
            result.unchanged_count += 1
            continue

        result.upserts.append(UpsertPlan(kind=UpsertKind.UPDATE, id=existing.id, fields=update_set, changes=changes))
        result.history_entries.extend(changes)

    return result
