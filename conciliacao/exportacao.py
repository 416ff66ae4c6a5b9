# conciliacao/exportacao.py
"""Exportação das vendas conciliadas em CSV (pt-BR, ';') e XLSX."""

from __future__ import annotations

import csv
import io
from typing import Dict, Iterable, List, Mapping, Optional

from .agregador import FUSO_PADRAO, operational_zone
from .registros import Role, SaleRecord, coerce_amount

BASE_HEADERS = ["data", "origem", "mikrotik", "usuario", "plano", "valor_bruto"]
ADMIN_HEADERS = ["comissao_admin", "comissao_usuario"]


def headers_for(role) -> List[str]:
    return BASE_HEADERS + (ADMIN_HEADERS if Role.parse(role) == Role.ADMIN else [])


def _brl_number(value: float) -> str:
    """1234.5 -> '1234,50' (sem separador de milhar, para reimportar sem ambiguidade)."""
    return f"{value:.2f}".replace(".", ",")


def _rows(records: Iterable[SaleRecord], role, device_names: Optional[Mapping[str, str]],
          user_names: Optional[Mapping[str, str]], tz_name: str):
    role = Role.parse(role)
    zone = operational_zone(tz_name)
    device_names = device_names or {}
    user_names = user_names or {}
    for r in records:
        row = {
            "data": r.timestamp.astimezone(zone).strftime("%d/%m/%Y %H:%M"),
            "origem": r.source.label,
            "mikrotik": device_names.get(r.device_id, r.device_id),
            "usuario": user_names.get(r.user_id, r.user_id) if r.user_id else "",
            "plano": r.plan_label,
            "valor_bruto": r.gross_amount,
        }
        if role == Role.ADMIN:
            row["comissao_admin"] = r.admin_commission
            row["comissao_usuario"] = r.user_commission
        yield row


def export_sales_csv(records: Iterable[SaleRecord], role, device_names: Optional[Mapping[str, str]] = None,
                     user_names: Optional[Mapping[str, str]] = None, tz_name: str = FUSO_PADRAO) -> str:
    """Uma linha por venda conciliada; colunas de comissão só para admin."""
    headers = headers_for(role)
    buf = io.StringIO()
    w = csv.writer(buf, delimiter=";", lineterminator="\n")
    w.writerow(headers)
    for row in _rows(records, role, device_names, user_names, tz_name):
        w.writerow([
            _brl_number(row[h]) if isinstance(row[h], float) else row[h]
            for h in headers
        ])
    return buf.getvalue()


def parse_sales_csv(text: str) -> List[Dict]:
    """Lê de volta um CSV gerado por export_sales_csv; valores monetários viram float."""
    reader = csv.DictReader(io.StringIO(text), delimiter=";")
    rows = []
    for raw in reader:
        row = dict(raw)
        for campo in ("valor_bruto", "comissao_admin", "comissao_usuario"):
            if campo in row:
                value, _ = coerce_amount(row[campo])
                row[campo] = value or 0.0
        rows.append(row)
    return rows


def export_sales_xlsx(records: Iterable[SaleRecord], role, device_names: Optional[Mapping[str, str]] = None,
                      user_names: Optional[Mapping[str, str]] = None, tz_name: str = FUSO_PADRAO) -> bytes:
    """Mesmas colunas do CSV numa planilha; valores monetários como número."""
    from openpyxl import Workbook

    headers = headers_for(role)
    wb = Workbook()
    ws = wb.active
    ws.title = "Vendas"
    ws.append(headers)
    for row in _rows(records, role, device_names, user_names, tz_name):
        ws.append([row[h] for h in headers])
    for col in ("F", "G", "H")[:len(headers) - len(BASE_HEADERS) + 1]:
        for cell in ws[col][1:]:
            cell.number_format = "#,##0.00"
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out.read()
