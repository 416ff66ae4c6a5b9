# conciliacao/registros.py
"""
Tipos da conciliação: o registro de venda normalizado (SaleRecord), as
origens de venda, o papel de quem consulta e a janela de relatório.
Também concentra a coerção de valores monetários e datas vindos do Supabase.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple

from dateutil import parser as date_parser
from dateutil import tz

# Diferença máxima aceita entre bruto e (admin + usuário)
TOLERANCIA_CENTAVOS = 0.01


class Source(str, Enum):
    PIX = "pix"
    PHYSICAL_VOUCHER = "physical_voucher"
    CAPTIVE_VOUCHER = "captive_voucher"

    @property
    def label(self) -> str:
        return SOURCE_LABELS[self]


SOURCE_LABELS = {
    Source.PIX: "PIX",
    Source.PHYSICAL_VOUCHER: "Voucher físico",
    Source.CAPTIVE_VOUCHER: "Voucher captive",
}


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def parse(cls, value) -> "Role":
        if isinstance(value, Role):
            return value
        return cls.ADMIN if str(value or "").strip().lower() == "admin" else cls.USER


class ResolutionConfidence(str, Enum):
    DIRECT = "direct"          # chave estrangeira (mikrotik -> dono) ou user_id gravado
    BACKFILLED = "backfilled"  # user_id gravado pela migração de backfill
    LOW = "low"                # heurística valor + horário, só para exibição
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class SaleRecord:
    id: str
    source: Source
    gross_amount: float
    admin_commission: float
    user_commission: float
    device_id: str
    user_id: Optional[str]
    timestamp: datetime
    mac_address: str = ""
    plan_label: str = ""
    resolution_confidence: ResolutionConfidence = ResolutionConfidence.UNRESOLVED
    commission_derived: bool = False

    @property
    def is_pix(self) -> bool:
        return self.source == Source.PIX

    def framed_amount(self, role: Role) -> float:
        """Valor do registro no enquadramento do papel: bruto para admin, comissão para usuário."""
        return self.gross_amount if role == Role.ADMIN else self.user_commission

    def with_attribution(self, user_id: Optional[str], confidence: ResolutionConfidence) -> "SaleRecord":
        return replace(self, user_id=user_id, resolution_confidence=confidence)

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["source"] = self.source.value
        d["resolution_confidence"] = self.resolution_confidence.value
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass(frozen=True)
class ReportWindow:
    """Janela semiaberta [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("ReportWindow exige datas com fuso horário")
        if self.end < self.start:
            raise ValueError("ReportWindow: fim anterior ao início")

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    @property
    def last_instant(self) -> datetime:
        """Último instante dentro da janela (o fim é exclusivo)."""
        return self.end - timedelta(microseconds=1)

    def anchor(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """
        (referência, fechamento) dos períodos de um rollup desta janela.

        A referência escolhe o dia, a semana e o mês; o fechamento é o fim
        exclusivo de hoje, semana e mês. Sem now, ou com now depois da janela,
        os períodos são os do último instante da janela.
        """
        if now is None or now >= self.end:
            return self.last_instant, self.end
        return now, now

    def to_dict(self) -> Dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# ----------------- Coerção -----------------
def coerce_amount(value) -> Tuple[Optional[float], Optional[str]]:
    """
    Converte um campo monetário em float com 2 casas.

    Returns:
        (valor, anomalia): valor é None quando o campo está ausente;
        anomalia é None, "ausente", "invalido" ou "negativo".
    """
    if value is None:
        return None, "ausente"
    if isinstance(value, bool):
        return 0.0, "invalido"
    if isinstance(value, (int, float)):
        v = float(value)
    else:
        s = str(value).strip()
        if s == "" or s.upper() == "NULL":
            return None, "ausente"
        try:
            v = float(s)
        except ValueError:
            # formato brasileiro: 1.234,56
            s = s.replace(".", "").replace(",", ".")
            try:
                v = float(s)
            except ValueError:
                return 0.0, "invalido"
    if math.isnan(v) or math.isinf(v):
        return 0.0, "invalido"
    if v < 0:
        return 0.0, "negativo"
    return round(v, 2), None


def parse_timestamp(value) -> Optional[datetime]:
    """ISO 8601 -> datetime com fuso; sem fuso assume UTC (timestamptz do Postgres)."""
    if isinstance(value, datetime):
        moment = value
    else:
        if not value:
            return None
        try:
            moment = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz.UTC)
    return moment


def split_pix_amount(gross_amount: float, admin_percentage: float) -> Tuple[float, float]:
    """Divide uma venda PIX pela porcentagem da plataforma configurada no MikroTik."""
    pct = min(max(float(admin_percentage or 0), 0.0), 100.0)
    admin = round(gross_amount * pct / 100.0, 2)
    return admin, round(gross_amount - admin, 2)


def reconcile_pix_split(gross: float, admin: Optional[float], user: Optional[float],
                        admin_percentage: Optional[float] = None) -> Tuple[float, float, bool]:
    """
    Garante bruto = admin + usuário numa venda PIX.

    Convenção: admin ausente (NULL) significa "não preenchido" e é derivado como
    bruto - usuário. Um zero gravado vale como zero quando o par fecha com o bruto.
    Quando o par gravado não fecha, o bruto prevalece e o admin é recalculado.

    Returns:
        (admin, usuario, derivado)
    """
    if user is None and admin is None:
        if admin_percentage is None:
            return 0.0, gross, True
        a, u = split_pix_amount(gross, admin_percentage)
        return a, u, True
    if user is None:
        admin = min(admin, gross)
        return admin, round(gross - admin, 2), True
    user = min(user, gross)
    if admin is None:
        return round(gross - user, 2), user, True
    if abs((admin + user) - gross) <= TOLERANCIA_CENTAVOS:
        return admin, user, False
    return round(gross - user, 2), user, True
