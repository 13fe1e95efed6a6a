import pytest

from inventario.services.equipment_consolidation import (
    NoInputError,
    STATUS_IN_STOCK,
    STATUS_IN_USE,
    consolidate,
    derive_status,
    diff_fields,
)


def test_consolidate_requires_at_least_one_source():
    with pytest.raises(NoInputError):
        consolidate()


def test_consolidate_accepts_a_single_empty_source():
    assert consolidate(base_records=[]) == []
    assert consolidate(absolute_records=[]) == []


def test_absolute_fields_override_base_fields_for_same_serial():
    base = [{"serial": "abc 1", "equipamento": "PC Base", "patrimonio": "P-1", "usuario_atual": ""}]
    absolute = [{"serial": "ABC1", "equipamento": "PC Absolute", "usuario_atual": "Maria"}]

    dataset = consolidate(base, absolute)

    assert dataset == [
        {
            "serial": "ABC1",
            "equipamento": "PC Absolute",
            "patrimonio": "P-1",
            "usuario_atual": "Maria",
            "status": STATUS_IN_USE,
        }
    ]


def test_consolidate_keeps_first_appearance_order():
    base = [{"serial": "S1"}, {"serial": "S2"}]
    absolute = [{"serial": "S3"}, {"serial": "s1"}]

    dataset = consolidate(base, absolute)

    assert [record["serial"] for record in dataset] == ["s1", "S2", "S3"]


def test_blank_user_moves_to_stock_and_clears_collaborator():
    base = [{"serial": "S2", "status": "Em Uso", "usuario_atual": "  ", "email_colaborador": "a@b.com"}]

    [record] = consolidate(base)

    assert record["status"] == STATUS_IN_STOCK
    assert record["usuario_atual"] == ""
    assert record["email_colaborador"] == ""


def test_protected_status_survives_blank_user():
    base = [{"serial": "S1", "status": "Manutenção", "usuario_atual": "", "email_colaborador": "x@y.com"}]

    [record] = consolidate(base)

    assert record["status"] == "Manutenção"
    assert record["email_colaborador"] == "x@y.com"


def test_user_from_absolute_wins_over_protected_status():
    base = [{"serial": "S1", "status": "Descartado", "usuario_atual": ""}]
    absolute = [{"serial": "S1", "usuario_atual": "Joao"}]

    [record] = consolidate(base, absolute)

    assert record["status"] == STATUS_IN_USE


def test_duplicate_serials_inside_one_source_overlay_last_row():
    base = [{"serial": "S1", "equipamento": "A", "local": "Matriz"}, {"serial": "S 1", "equipamento": "B"}]

    [record] = consolidate(base)

    assert record["equipamento"] == "B"
    assert record["local"] == "Matriz"


@pytest.mark.parametrize(
    ("record", "current", "expected"),
    [
        ({"usuario_atual": "Ana"}, None, STATUS_IN_USE),
        ({"usuario_atual": "Ana"}, "Manutenção", STATUS_IN_USE),
        ({"usuario_atual": ""}, "Manutenção", "Manutenção"),
        ({"usuario_atual": ""}, "Em Uso", STATUS_IN_STOCK),
        ({"usuario_atual": ""}, None, STATUS_IN_STOCK),
        ({}, "Descartado", "Descartado"),
        ({}, None, STATUS_IN_STOCK),
    ],
)
def test_derive_status(record, current, expected):
    assert derive_status(record, current) == expected


def test_diff_fields_treats_none_and_empty_as_equal():
    assert diff_fields({"brand": None}, {"brand": ""}) == []
    assert diff_fields({"brand": "Dell"}, {"brand": "HP", "serial": "X"}, ignore={"serial"}) == [
        ("brand", "Dell", "HP")
    ]
