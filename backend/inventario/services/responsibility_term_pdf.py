from __future__ import annotations

from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

TERM_KINDS = {
    "entrega": "Termo de Entrega de Equipamento",
    "devolucao": "Termo de Devolução de Equipamento",
}

TERM_DECLARATIONS = {
    "entrega": (
        "Declaro ter recebido o equipamento descrito abaixo em perfeitas condições de uso, "
        "comprometendo-me a zelar por sua guarda e conservação e a devolvê-lo quando solicitado."
    ),
    "devolucao": (
        "Declaro ter devolvido o equipamento descrito abaixo, nas condições registradas neste termo."
    ),
}


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "title",
            parent=base["Title"],
            fontName="Helvetica-Bold",
            fontSize=18,
            leading=22,
            alignment=1,
            spaceAfter=4,
        ),
        "subtitle": ParagraphStyle(
            "subtitle",
            parent=base["Normal"],
            fontName="Helvetica-Bold",
            fontSize=12,
            leading=14,
            alignment=1,
            spaceAfter=8,
        ),
        "section": ParagraphStyle(
            "section",
            parent=base["Normal"],
            fontName="Helvetica-Bold",
            fontSize=11,
            leading=13,
            spaceBefore=6,
            spaceAfter=3,
        ),
        "normal": ParagraphStyle(
            "normal",
            parent=base["Normal"],
            fontName="Helvetica",
            fontSize=10,
            leading=13,
        ),
        "small": ParagraphStyle(
            "small",
            parent=base["Normal"],
            fontName="Helvetica",
            fontSize=9,
            leading=11,
        ),
    }


def _equipment_table(equipment: dict[str, Any]) -> Table:
    rows = [
        ["Equipamento", equipment.get("equipamento", ""), "Serial", equipment.get("serial", "")],
        ["Marca", equipment.get("brand", ""), "Modelo", equipment.get("model", "")],
        ["Patrimônio", equipment.get("patrimonio", ""), "Tipo", equipment.get("tipo", "")],
        ["Local", equipment.get("local", ""), "Setor", equipment.get("setor", "")],
        ["Garantia", equipment.get("garantia", ""), "Condição", equipment.get("condicao_termo", "")],
    ]
    table = Table(rows, colWidths=[30 * mm, 65 * mm, 30 * mm, 65 * mm])
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("GRID", (0, 0), (-1, -1), 0.4, colors.black),
                ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f6f6f6")),
                ("BACKGROUND", (2, 0), (2, -1), colors.HexColor("#f6f6f6")),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return table


def _collaborator_table(payload: dict[str, Any]) -> Table:
    equipment = payload.get("equipment", {}) or {}
    rows = [
        ["Colaborador", payload.get("collaborator_name", ""), "E-mail", equipment.get("email_colaborador", "")],
        ["Data de entrega", equipment.get("data_entrega_usuario", ""), "Data de devolução", equipment.get("data_devolucao", "")],
    ]
    table = Table(rows, colWidths=[30 * mm, 65 * mm, 30 * mm, 65 * mm])
    table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
                ("GRID", (0, 0), (-1, -1), 0.4, colors.black),
                ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f6f6f6")),
                ("BACKGROUND", (2, 0), (2, -1), colors.HexColor("#f6f6f6")),
                ("TOPPADDING", (0, 0), (-1, -1), 4),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    return table


def _signature_table() -> Table:
    table = Table(
        [
            ["", ""],
            ["Colaborador", "Responsável TI"],
        ],
        colWidths=[95 * mm, 95 * mm],
        rowHeights=[13 * mm, 7 * mm],
    )
    table.setStyle(
        TableStyle(
            [
                ("LINEABOVE", (0, 0), (0, 0), 0.8, colors.black),
                ("LINEABOVE", (1, 0), (1, 0), 0.8, colors.black),
                ("FONTNAME", (0, 1), (-1, 1), "Helvetica"),
                ("FONTSIZE", (0, 1), (-1, 1), 9),
                ("ALIGN", (0, 1), (-1, 1), "CENTER"),
            ]
        )
    )
    return table


def build_responsibility_term_pdf(payload: dict[str, Any]) -> bytes:
    kind = payload.get("kind", "entrega")
    if kind not in TERM_KINDS:
        raise ValueError("Tipo de termo invalido.")

    output = BytesIO()
    document = SimpleDocTemplate(
        output,
        pagesize=A4,
        leftMargin=10 * mm,
        rightMargin=10 * mm,
        topMargin=12 * mm,
        bottomMargin=12 * mm,
        title=TERM_KINDS[kind],
    )
    styles = _styles()
    equipment = payload.get("equipment", {}) or {}

    story: list[Any] = [
        Paragraph(TERM_KINDS[kind], styles["title"]),
        Paragraph(escape(payload.get("company_name", "")), styles["subtitle"]),
        Paragraph(TERM_DECLARATIONS[kind], styles["normal"]),
        Spacer(1, 8),
        Paragraph("Equipamento", styles["section"]),
        _equipment_table(equipment),
        Spacer(1, 6),
        Paragraph("Colaborador", styles["section"]),
        _collaborator_table(payload),
        Spacer(1, 6),
        Paragraph("Observações", styles["section"]),
        Paragraph(escape(equipment.get("observacoes") or "Sem observações."), styles["normal"]),
        Spacer(1, 24),
        _signature_table(),
        Spacer(1, 8),
        Paragraph(f"Gerado em: {payload.get('generated_at', '')}", styles["small"]),
    ]
    document.build(story)
    return output.getvalue()
