# conciliacao/rollup.py
"""
Orquestração do rollup: Normalizador -> Resolvedor -> Agregador.

    result = compute_rollup(client, "user", device_ids, window, devices=devices, now=agora)
    result.month["by_user"][user_id]
    result.top_users[0]["volume"]
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from data_utils.data_integrity import CommissionIntegrityValidator, DataIntegrityError
from data_utils.monitoring import ReconciliationMonitor, INTEGRIDADE
from data_utils.safe_pagination import SafePaginationError

from .agregador import FUSO_PADRAO, TOP_N_PADRAO, RollupAggregator, period_bounds
from .atribuicao import AttributionResolver, build_owner_map
from .normalizador import DEFAULT_SOURCES, IngestionNormalizer
from .registros import ReportWindow, Role, SaleRecord, Source
from .sequencia import RequestSequencer

logger = logging.getLogger(__name__)


@dataclass
class RollupResult:
    role: Role
    window: ReportWindow
    total: Dict
    today: Dict
    week: Dict
    month: Dict
    previous_month: Dict
    growth: Dict
    top_users: List[Dict]
    top_devices: List[Dict]
    failed_sources: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    records: List[SaleRecord] = field(default_factory=list)
    sequence: Optional[int] = None

    @property
    def partial(self) -> bool:
        return bool(self.failed_sources)

    @property
    def unavailable(self) -> bool:
        return len(self.failed_sources) == len(DEFAULT_SOURCES)

    def user_total(self, user_id: str, period: str = "month") -> float:
        return getattr(self, period)["by_user"].get(user_id, 0.0)

    def to_dict(self, include_records: bool = False) -> Dict:
        d = {
            "role": self.role.value,
            "window": self.window.to_dict(),
            "total": self.total,
            "today": self.today,
            "week": self.week,
            "month": self.month,
            "previous_month": self.previous_month,
            "growth": self.growth,
            "top_users": self.top_users,
            "top_devices": self.top_devices,
            "partial": self.partial,
            "unavailable": self.unavailable,
            "failed_sources": list(self.failed_sources),
            "warnings": list(self.warnings),
            "sequence": self.sequence,
        }
        if include_records:
            d["records"] = [r.to_dict() for r in self.records]
        return d

    def to_json(self, include_records: bool = False) -> str:
        return json.dumps(self.to_dict(include_records), sort_keys=True, ensure_ascii=False)


def _cross_check_pix(client, sources, device_ids, window: ReportWindow, normalized, monitor):
    """Alerta quando o total PIX normalizado diverge da soma direta na tabela."""
    pix = next((s for s in sources if s.source == Source.PIX), None)
    if pix is None or not device_ids or Source.PIX in normalized.failed_sources:
        return
    try:
        check = CommissionIntegrityValidator(client).cross_check_pix_total(
            device_ids, window, normalized.records, table_name=pix.table)
    except (DataIntegrityError, SafePaginationError) as e:
        logger.warning("ROLLUP: conferência cruzada PIX não executada: %s", e)
        return
    if not check["methods_match"]:
        monitor.add_alert("ERROR", INTEGRIDADE, "Total PIX normalizado diverge da soma na tabela de vendas", check)


def compute_rollup(
    client,
    role,
    device_ids: Iterable[str],
    window: ReportWindow,
    devices=None,
    now: Optional[datetime] = None,
    tz_name: str = FUSO_PADRAO,
    top_n: int = TOP_N_PADRAO,
    time_tolerance_ms: int = 1000,
    sources=DEFAULT_SOURCES,
    monitor: Optional[ReconciliationMonitor] = None,
    sequence: Optional[int] = None,
    cross_check: bool = False,
) -> RollupResult:
    """
    Calcula o rollup de vendas.

    Args:
        client: cliente Supabase injetado
        role: "admin" ou "user"
        device_ids: mikrotiks acessíveis a quem consulta
        window: janela [início, fim) do total e dos rankings
        devices: mikrotiks com dono (Device, dict ou {id: dono}) para a atribuição
        now: referência de hoje/semana/mês; sem ele, ou depois da janela,
            vale o último instante da janela
        sequence: número de sequência da requisição, devolvido no resultado
        cross_check: confere o bruto PIX normalizado com a soma direta na tabela
    """
    role = Role.parse(role)
    now, until = window.anchor(now)
    monitor = monitor or ReconciliationMonitor()
    device_ids = list(device_ids)
    devices = devices if devices is not None else {}

    # busca também o mês anterior, base do crescimento
    bounds = period_bounds(now, tz_name, until)
    fetch_window = ReportWindow(
        min(window.start, bounds["previous_month"][0]),
        max(window.end, until),
    )

    percentages = {}
    if not isinstance(devices, dict):
        for device in devices:
            pct = getattr(device, "commission_percentage", None)
            if pct is not None:
                percentages[str(device.id)] = pct

    normalizer = IngestionNormalizer(client, monitor=monitor, sources=sources, device_percentages=percentages)
    normalized = normalizer.fetch(device_ids, fetch_window, role)
    if cross_check:
        _cross_check_pix(client, sources, device_ids, fetch_window, normalized, monitor)

    resolver = AttributionResolver(build_owner_map(devices), time_tolerance_ms=time_tolerance_ms, monitor=monitor)
    records = resolver.resolve(normalized.records)

    integrity = CommissionIntegrityValidator().validate(records)
    if integrity["overall_status"] != "PASS":
        monitor.add_alert("ERROR", INTEGRIDADE, "Divisão de comissão inconsistente em algumas vendas", integrity)

    aggregated = RollupAggregator(role, now, tz_name=tz_name, top_n=top_n, until=until).aggregate(records, window)

    result = RollupResult(
        role=role,
        window=window,
        total=aggregated["total"],
        today=aggregated["today"],
        week=aggregated["week"],
        month=aggregated["month"],
        previous_month=aggregated["previous_month"],
        growth=aggregated["growth"],
        top_users=aggregated["top_users"],
        top_devices=aggregated["top_devices"],
        failed_sources=[s.value for s in normalized.failed_sources],
        warnings=monitor.warnings(),
        records=[r for r in records if window.contains(r.timestamp)],
        sequence=sequence,
    )

    saude = monitor.generate_health_report()
    logger.info("ROLLUP: role=%s mikrotiks=%d registros=%d parcial=%s saude=%s",
                role.value, len(device_ids), len(result.records), result.partial, saude["overall_status"])
    if saude["overall_status"] != "HEALTHY":
        for recomendacao in saude["recommendations"]:
            logger.info("ROLLUP: %s", recomendacao)
    return result


class RollupService:
    """
    compute_rollup com proteção de sequência: uma requisição superada por outra
    mais nova do mesmo escopo tem o resultado descartado.
    """

    def __init__(self, client, sequencer: Optional[RequestSequencer] = None, **options):
        self.client = client
        self.sequencer = sequencer or RequestSequencer()
        self.options = options

    def compute(self, role, device_ids, window: ReportWindow, devices=None,
                now: Optional[datetime] = None, seq: Optional[int] = None) -> RollupResult:
        """Rollup avulso (exportações): não emite nem descarta sequência."""
        return compute_rollup(self.client, role, device_ids, window, devices=devices, now=now,
                              sequence=seq, **self.options)

    def request(self, scope, role, device_ids, window: ReportWindow, devices=None,
                now: Optional[datetime] = None, seq: Optional[int] = None) -> Tuple[int, Optional[RollupResult]]:
        """
        Returns:
            (sequência, resultado): resultado é None quando a resposta ficou obsoleta
        """
        if seq is None:
            seq = self.sequencer.issue(scope)
        else:
            self.sequencer.observe(scope, seq)
        result = self.compute(role, device_ids, window, devices=devices, now=now, seq=seq)
        accepted = self.sequencer.accept(scope, seq, result)
        if accepted is None:
            logger.info("ROLLUP: resposta da sequência %s descartada (mais recente: %s)",
                        seq, self.sequencer.latest(scope))
        return seq, accepted
