# conciliacao/agregador.py
"""
Agregador de rollups: somas por período (hoje, semana, mês, mês anterior),
crescimento mês a mês e rankings top-N por usuário e por mikrotik.

Todos os períodos são calculados a partir de um "agora" recebido do chamador,
no fuso operacional (America/Manaus por padrão), e são semiabertos [início, fim).
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from dateutil import tz

from .registros import ReportWindow, ResolutionConfidence, Role, SaleRecord, Source

FUSO_PADRAO = "America/Manaus"
TOP_N_PADRAO = 5

PERIODOS = ("today", "week", "month", "previous_month")


def operational_zone(tz_name: str = FUSO_PADRAO):
    zone = tz.gettz(tz_name)
    if zone is None:
        raise ValueError(f"Fuso horário desconhecido: {tz_name}")
    return zone


def period_bounds(now: datetime, tz_name: str = FUSO_PADRAO,
                  until: Optional[datetime] = None) -> Dict[str, Tuple[datetime, datetime]]:
    """
    Limites de cada período no fuso operacional.

    today: início do dia até agora; week: domingo até agora;
    month: dia 1 até agora; previous_month: mês anterior completo.
    until substitui "agora" como fim exclusivo de today, week e month.
    """
    if now.tzinfo is None:
        raise ValueError("period_bounds exige 'now' com fuso horário")
    local = now.astimezone(operational_zone(tz_name))
    day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    # weekday(): segunda=0 ... domingo=6
    week_start = day_start - timedelta(days=(local.weekday() + 1) % 7)
    month_start = day_start.replace(day=1)
    previous_month_start = (month_start - timedelta(days=1)).replace(day=1)
    end = until or now
    return {
        "today": (day_start, end),
        "week": (week_start, end),
        "month": (month_start, end),
        "previous_month": (previous_month_start, month_start),
    }


def growth_percentage(current: float, previous: float) -> float:
    """(atual - anterior) / anterior * 100; zero quando não há base de comparação."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100.0, 2)


def _sum(values: Iterable[float]) -> float:
    return round(sum(values, 0.0), 2)


class RollupAggregator:
    """
    Args:
        role: papel de quem consulta; define o enquadramento das somas
            (admin soma o bruto, usuário soma a própria comissão)
        now: instante de referência dos períodos
        until: fim exclusivo de today, week e month (padrão: now)
        tz_name: fuso operacional
        top_n: tamanho dos rankings
    """

    def __init__(self, role, now: datetime, tz_name: str = FUSO_PADRAO, top_n: int = TOP_N_PADRAO,
                 until: Optional[datetime] = None):
        self.role = Role.parse(role)
        self.now = now
        self.tz_name = tz_name
        self.top_n = top_n
        self.bounds = period_bounds(now, tz_name, until)

    # ---------------- somas ----------------
    def bucket(self, records: Iterable[SaleRecord], start: datetime, end: datetime) -> Dict:
        selected = [r for r in records if start <= r.timestamp < end]

        by_source = {}
        for source in Source:
            by_source[source.value] = _sum(r.framed_amount(self.role) for r in selected if r.source == source)

        by_user: Dict[str, float] = {}
        for r in selected:
            if r.user_id:
                by_user[r.user_id] = by_user.get(r.user_id, 0.0) + r.framed_amount(self.role)

        return {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "total": _sum(r.framed_amount(self.role) for r in selected),
            "count": len(selected),
            "by_source": by_source,
            "by_user": {k: round(v, 2) for k, v in sorted(by_user.items())},
        }

    # ---------------- rankings ----------------
    def top_by(self, records: Iterable[SaleRecord], key: Callable[[SaleRecord], Optional[str]]) -> List[Dict]:
        """
        Agrupa por chave e ordena pelo volume bruto (mesmo para usuário: ranking é volume,
        não valor a receber). Empate: venda mais antiga primeiro, depois a chave.
        """
        groups: Dict[str, Dict] = {}
        for r in records:
            k = key(r)
            if not k:
                continue
            g = groups.setdefault(k, {"id": k, "volume": 0.0, "count": 0,
                                      "first_sale": r.timestamp, "low_confidence": False})
            g["volume"] += r.gross_amount
            g["count"] += 1
            if r.timestamp < g["first_sale"]:
                g["first_sale"] = r.timestamp
            if r.resolution_confidence == ResolutionConfidence.LOW:
                g["low_confidence"] = True

        ranked = sorted(groups.values(), key=lambda g: (-round(g["volume"], 2), g["first_sale"], g["id"]))
        return [
            {
                "id": g["id"],
                "volume": round(g["volume"], 2),
                "count": g["count"],
                "first_sale": g["first_sale"].isoformat(),
                "low_confidence": g["low_confidence"],
            }
            for g in ranked[:self.top_n]
        ]

    # ---------------- agregado ----------------
    def aggregate(self, records: Iterable[SaleRecord], window: ReportWindow) -> Dict:
        records = list(records)
        in_window = [r for r in records if window.contains(r.timestamp)]

        result = {"total": self.bucket(in_window, window.start, window.end)}
        for name in PERIODOS:
            start, end = self.bounds[name]
            result[name] = self.bucket(records, start, end)

        month, previous = result["month"], result["previous_month"]
        growth = {"total": growth_percentage(month["total"], previous["total"])}
        for source in Source:
            growth[source.value] = growth_percentage(month["by_source"][source.value],
                                                     previous["by_source"][source.value])
        result["growth"] = growth

        result["top_users"] = self.top_by(in_window, lambda r: r.user_id)
        result["top_devices"] = self.top_by(in_window, lambda r: r.device_id)
        return result
