#!/usr/bin/env python3
"""
Backfill de atribuição das vendas PIX antigas.

Vendas gravadas antes da coluna user_id ficar obrigatória são resolvidas uma
única vez (dono do mikrotik; senão valor + horário de uma venda já atribuída)
e gravadas com atribuicao_origem = 'backfilled'.

Uso:
  python backfill_atribuicao.py            - simulação (nada é gravado)
  python backfill_atribuicao.py --aplicar  - grava user_id nas vendas
"""

import logging
import sys
from datetime import datetime, timedelta

from dateutil import tz

from conciliacao import AttributionResolver, IngestionNormalizer, ReportWindow, ResolutionConfidence
from conciliacao.normalizador import source_tables
from data_utils.monitoring import ReconciliationMonitor
from data_utils.safe_pagination import safe_paginated_query
from models import Device

logger = logging.getLogger(__name__)

# Início do histórico considerado
INICIO_HISTORICO = datetime(2020, 1, 1, tzinfo=tz.UTC)


def run_backfill(client, apply: bool = False, window: ReportWindow = None,
                 pix_table: str = "vendas_pix", time_tolerance_ms: int = 1000):
    """
    Resolve e (opcionalmente) grava o user_id das vendas PIX sem atribuição.

    Returns:
        dict com contagens: candidatas, por_dono, por_heuristica, sem_usuario, atualizadas
    """
    window = window or ReportWindow(INICIO_HISTORICO, datetime.now(tz.UTC) + timedelta(days=1))

    rows = safe_paginated_query(client, "mikrotiks", "id, user_id, nome, porcentagem, ativo")
    devices = [Device.from_row(r) for r in rows]

    monitor = ReconciliationMonitor()
    pix_source = source_tables(pix_table=pix_table)[0]
    normalizer = IngestionNormalizer(client, monitor=monitor, sources=(pix_source,),
                                     device_percentages={d.id: d.commission_percentage for d in devices})
    normalized = normalizer.fetch([d.id for d in devices], window)
    if normalized.failed_sources:
        raise RuntimeError(f"Tabela {pix_table} indisponível - backfill abortado")

    candidates = {r.id for r in normalized.records if not r.user_id}
    resolved = AttributionResolver(devices, time_tolerance_ms=time_tolerance_ms,
                                   monitor=monitor).resolve(normalized.records)

    report = {"candidatas": len(candidates), "por_dono": 0, "por_heuristica": 0,
              "sem_usuario": 0, "atualizadas": 0, "aplicado": apply}

    for record in resolved:
        if record.id not in candidates:
            continue
        if record.resolution_confidence == ResolutionConfidence.DIRECT:
            report["por_dono"] += 1
        elif record.resolution_confidence == ResolutionConfidence.LOW:
            report["por_heuristica"] += 1
        else:
            report["sem_usuario"] += 1
            continue

        if apply:
            # só grava onde user_id continua vazio
            (client.table(pix_table)
             .update({"user_id": record.user_id, "atribuicao_origem": "backfilled"})
             .eq("id", record.id)
             .is_("user_id", "null")
             .execute())
            report["atualizadas"] += 1

    logger.info("BACKFILL: %s", report)
    return report


def main():
    from config import Config
    from supabase_client import create_admin_client

    logging.basicConfig(level=logging.INFO)
    apply = "--aplicar" in sys.argv[1:]

    settings = {k: getattr(Config, k) for k in dir(Config) if k.isupper()}
    client = create_admin_client(settings)
    if client is None:
        print("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY não configurados")
        return False

    report = run_backfill(client, apply=apply, pix_table=settings["TABELA_VENDAS_PIX"],
                          time_tolerance_ms=settings["JANELA_HEURISTICA_MS"])

    print("\nRESUMO DO BACKFILL:")
    for key, value in report.items():
        print(f"   {key}: {value}")
    if not apply:
        print("\nSimulação - rode com --aplicar para gravar")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
