from __future__ import annotations

import re
from types import MappingProxyType
from typing import Mapping

from inventario.services.equipment_csv import (
    BOM,
    CSV_SEPARATOR,
    MalformedInputError,
    normalize_header,
    split_csv_line,
)

LICENSE_FIELD_NAMES = (
    "tipo_licenca",
    "chave_serial",
    "data_expiracao",
    "usuario",
    "cargo",
    "setor",
    "gestor",
    "centro_custo",
    "conta_razao",
    "nome_computador",
    "numero_chamado",
    "observacoes",
)

# Rotulos da tela de licencas e os nomes de campo usados nas exportacoes antigas.
LICENSE_COLUMNS: Mapping[str, str] = MappingProxyType(
    {
        normalize_header(header): field
        for header, field in {
            "TIPO DE LICENÇA": "tipo_licenca",
            "TIPOLICENCA": "tipo_licenca",
            "CHAVE/SERIAL": "chave_serial",
            "CHAVE SERIAL": "chave_serial",
            "DATA DE VENCIMENTO": "data_expiracao",
            "DATA DE EXPIRAÇÃO": "data_expiracao",
            "DATAEXPIRACAO": "data_expiracao",
            "USUÁRIO": "usuario",
            "USUÁRIO ATRIBUÍDO": "usuario",
            "CARGO": "cargo",
            "SETOR": "setor",
            "GESTOR": "gestor",
            "CENTRO DE CUSTO": "centro_custo",
            "CENTROCUSTO": "centro_custo",
            "CONTA RAZÃO": "conta_razao",
            "CONTARAZAO": "conta_razao",
            "NOME DO COMPUTADOR": "nome_computador",
            "NOMECOMPUTADOR": "nome_computador",
            "Nº DO CHAMADO": "numero_chamado",
            "NÚMERO DO CHAMADO": "numero_chamado",
            "NUMEROCHAMADO": "numero_chamado",
            "OBSERVAÇÕES": "observacoes",
        }.items()
    }
)


def parse_license_csv(text: str) -> list[dict[str, str]]:
    """Le as licencas de um produto; o produto vem do formulario, nao do arquivo.

    Linhas sem nenhum campo reconhecido preenchido sao ignoradas.
    """
    content = str(text or "").replace(BOM, "").strip()
    lines = [line for line in re.split(r"\r\n|\n", content) if line.strip()] if content else []
    if len(lines) < 2:
        raise MalformedInputError("O arquivo CSV deve conter um cabeçalho e pelo menos uma linha de dados.")

    header_line = lines[0].rstrip()
    if header_line.endswith(CSV_SEPARATOR):
        header_line = header_line[:-1]
    header_fields = [LICENSE_COLUMNS.get(normalize_header(cell)) for cell in split_csv_line(header_line)]
    if not any(header_fields):
        raise MalformedInputError("Nenhuma coluna de licença reconhecida no cabeçalho.")

    records: list[dict[str, str]] = []
    for line in lines[1:]:
        values = split_csv_line(line)
        record = {name: "" for name in LICENSE_FIELD_NAMES}
        for index, field in enumerate(header_fields):
            if field is not None and index < len(values) and values[index]:
                record[field] = values[index]
        if any(record.values()):
            records.append(record)
    return records
