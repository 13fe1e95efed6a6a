from __future__ import annotations

import re
import unicodedata
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class EquipmentField(str, Enum):
    EQUIPAMENTO = "equipamento"
    GARANTIA = "garantia"
    PATRIMONIO = "patrimonio"
    SERIAL = "serial"
    USUARIO_ATUAL = "usuario_atual"
    USUARIO_ANTERIOR = "usuario_anterior"
    LOCAL = "local"
    SETOR = "setor"
    DATA_ENTREGA_USUARIO = "data_entrega_usuario"
    STATUS = "status"
    DATA_DEVOLUCAO = "data_devolucao"
    TIPO = "tipo"
    NOTA_COMPRA = "nota_compra"
    NOTA_PL_KM = "nota_pl_km"
    TERMO_RESPONSABILIDADE = "termo_responsabilidade"
    FOTO = "foto"
    QR_CODE = "qr_code"
    BRAND = "brand"
    MODEL = "model"
    EMAIL_COLABORADOR = "email_colaborador"
    IDENTIFICADOR = "identificador"
    NOME_SO = "nome_so"
    MEMORIA_FISICA_TOTAL = "memoria_fisica_total"
    GRUPO_POLITICAS = "grupo_politicas"
    PAIS = "pais"
    CIDADE = "cidade"
    ESTADO_PROVINCIA = "estado_provincia"
    CONDICAO_TERMO = "condicao_termo"
    OBSERVACOES = "observacoes"


EQUIPMENT_FIELD_NAMES = tuple(field.value for field in EquipmentField)


class SourceFormat(str, Enum):
    BASE = "base"
    ABSOLUTE = "absolute"


class MalformedInputError(ValueError):
    """O CSV nao tem cabecalho e ao menos uma linha de dados, ou nao pode ser lido."""


_HEADER_STRIP_PATTERN = re.compile(r"[\s/]+")

CSV_SEPARATOR = ","
QUOTE_CHAR = '"'
BOM = "\ufeff"


def normalize_header(value: str) -> str:
    """Chave de busca de um cabecalho: maiusculo, sem acentos, sem espacos e sem barras.

    Usada tanto para montar as tabelas de mapeamento quanto para consulta-las.
    """
    text = str(value or "").replace(BOM, "").strip().upper()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return _HEADER_STRIP_PATTERN.sub("", text)


def merge_key(serial: str | None) -> str:
    return str(serial or "").upper().replace(" ", "")


def _clean_cell(value: str) -> str:
    text = value.strip()
    if text.startswith(QUOTE_CHAR):
        text = text[1:]
    if text.endswith(QUOTE_CHAR):
        text = text[:-1]
    return text


def split_csv_line(line: str) -> list[str]:
    """Divide uma linha em campos respeitando separadores entre aspas.

    Nao implementa o escape de aspas do RFC 4180: aspas apenas alternam o
    estado "dentro de campo". Nunca levanta excecao.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in str(line or ""):
        if char == QUOTE_CHAR:
            in_quotes = not in_quotes
        elif char == CSV_SEPARATOR and not in_quotes:
            fields.append(_clean_cell("".join(current)))
            current = []
        else:
            current.append(char)
    fields.append(_clean_cell("".join(current)))
    return fields


def _build_mapping(columns: Mapping[str, EquipmentField]) -> Mapping[str, EquipmentField]:
    return MappingProxyType({normalize_header(header): field for header, field in columns.items()})


# Planilha base da empresa.
BASE_COLUMNS = _build_mapping(
    {
        "EQUIPAMENTO": EquipmentField.EQUIPAMENTO,
        "GARANTIA": EquipmentField.GARANTIA,
        "PATRIMONIO": EquipmentField.PATRIMONIO,
        "SERIAL": EquipmentField.SERIAL,
        "USUÁRIO ATUAL": EquipmentField.USUARIO_ATUAL,
        "USUÁRIO ANTERIOR": EquipmentField.USUARIO_ANTERIOR,
        "LOCAL": EquipmentField.LOCAL,
        "SETOR": EquipmentField.SETOR,
        "DATA ENTREGA O USUÁRIO": EquipmentField.DATA_ENTREGA_USUARIO,
        "STATUS": EquipmentField.STATUS,
        "DATA DE DEVOLUÇÃO": EquipmentField.DATA_DEVOLUCAO,
        "TIPO": EquipmentField.TIPO,
        "NOTA DE COMPRA": EquipmentField.NOTA_COMPRA,
        "NOTA / PL K&M": EquipmentField.NOTA_PL_KM,
        "TERMO DE RESPONSABILIDADE": EquipmentField.TERMO_RESPONSABILIDADE,
        "FOTO": EquipmentField.FOTO,
        "QR CODE": EquipmentField.QR_CODE,
        "MARCA": EquipmentField.BRAND,
        "MODELO": EquipmentField.MODEL,
        "EMAIL COLABORADOR": EquipmentField.EMAIL_COLABORADOR,
        "IDENTIFICADOR": EquipmentField.IDENTIFICADOR,
        "NOME DO SO": EquipmentField.NOME_SO,
        "MEMÓRIA FÍSICA TOTAL": EquipmentField.MEMORIA_FISICA_TOTAL,
        "GRUPO DE POLÍTICAS": EquipmentField.GRUPO_POLITICAS,
        "PAÍS": EquipmentField.PAIS,
        "CIDADE": EquipmentField.CIDADE,
        "ESTADO/PROVÍNCIA": EquipmentField.ESTADO_PROVINCIA,
        "CONDIÇÃO DO TERMO": EquipmentField.CONDICAO_TERMO,
        "OBSERVAÇÕES": EquipmentField.OBSERVACOES,
    }
)

# Relatorio exportado pelo agente Absolute.
ABSOLUTE_COLUMNS = _build_mapping(
    {
        "NOME DO DISPOSITIVO": EquipmentField.EQUIPAMENTO,
        "NÚMERO DE SÉRIE": EquipmentField.SERIAL,
        "NOME DO USUÁRIO ATUAL": EquipmentField.USUARIO_ATUAL,
        "MARCA": EquipmentField.BRAND,
        "MODELO": EquipmentField.MODEL,
        "EMAIL DO COLABORADOR": EquipmentField.EMAIL_COLABORADOR,
        "IDENTIFICADOR": EquipmentField.IDENTIFICADOR,
        "NOME DO SO": EquipmentField.NOME_SO,
        "MEMÓRIA FÍSICA TOTAL": EquipmentField.MEMORIA_FISICA_TOTAL,
        "GRUPO DE POLÍTICAS": EquipmentField.GRUPO_POLITICAS,
        "PAÍS": EquipmentField.PAIS,
        "CIDADE": EquipmentField.CIDADE,
        "ESTADO/PROVÍNCIA": EquipmentField.ESTADO_PROVINCIA,
    }
)

COLUMN_MAPPINGS: Mapping[SourceFormat, Mapping[str, EquipmentField]] = MappingProxyType(
    {
        SourceFormat.BASE: BASE_COLUMNS,
        SourceFormat.ABSOLUTE: ABSOLUTE_COLUMNS,
    }
)

SOURCE_LABELS = {
    SourceFormat.BASE: "Planilha Base",
    SourceFormat.ABSOLUTE: "Relatório Absolute",
}


def decode_csv_bytes(raw_bytes: bytes) -> str:
    for encoding in ("utf-8-sig", "utf-8", "cp1252", "latin-1"):
        try:
            return raw_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise MalformedInputError("Não foi possível ler o CSV. Salve o arquivo em UTF-8 ou ANSI e tente novamente.")


def parse_equipment_csv(text: str, mapping: Mapping[str, EquipmentField]) -> list[dict[str, str]]:
    """Converte o texto de um CSV em registros parciais de equipamento.

    Cada registro so contem os campos cujo cabecalho existe em ``mapping``.
    Linhas sem numero de serie sao descartadas. A ordem das linhas e mantida
    e seriais repetidos nao sao deduplicados aqui.
    """
    content = str(text or "").replace(BOM, "").strip()
    lines = re.split(r"\r\n|\n", content) if content else []
    if len([line for line in lines if line.strip()]) < 2:
        raise MalformedInputError("O arquivo CSV deve conter um cabeçalho e pelo menos uma linha de dados.")

    header_line = lines[0].rstrip()
    if header_line.endswith(CSV_SEPARATOR):
        header_line = header_line[:-1]
    header_fields = [mapping.get(normalize_header(cell)) for cell in split_csv_line(header_line)]

    records: list[dict[str, str]] = []
    for line in lines[1:]:
        if not line.strip():
            continue
        values = split_csv_line(line)
        record: dict[str, str] = {}
        for index, field in enumerate(header_fields):
            if field is None:
                continue
            record[field.value] = values[index].strip() if index < len(values) else ""

        if not record.get(EquipmentField.SERIAL.value, "").strip():
            continue
        records.append(record)
    return records


def parse_source(text: str, source_format: SourceFormat) -> list[dict[str, str]]:
    return parse_equipment_csv(text, COLUMN_MAPPINGS[source_format])
