# conciliacao/normalizador.py
"""
Normalizador de ingestão: lê as três fontes de venda (PIX, voucher físico,
voucher captive) em paralelo e converte cada linha num SaleRecord.

Falha numa fonte não derruba as outras: a fonte vira lista vazia, o erro
é registrado e o resultado sai marcado como parcial.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from data_utils.monitoring import ReconciliationMonitor, FONTE_INDISPONIVEL, VALOR_ANOMALO
from data_utils.safe_pagination import safe_paginated_query

from .registros import (
    ReportWindow,
    ResolutionConfidence,
    Role,
    SaleRecord,
    Source,
    coerce_amount,
    parse_timestamp,
    reconcile_pix_split,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceTable:
    """Onde e como ler uma fonte de venda."""
    source: Source
    table: str
    columns: str
    filters: Dict = field(default_factory=dict)


# tipos de voucher com fonte própria
TIPOS_VOUCHER = ("fisico", "captive")

DEFAULT_SOURCES = (
    SourceTable(
        Source.PIX,
        "vendas_pix",
        "id, valor_total, valor_admin, valor_usuario, mikrotik_id, user_id, "
        "atribuicao_origem, mac_address, plano_nome, created_at",
        {"status": "completed"},
    ),
    SourceTable(
        Source.PHYSICAL_VOUCHER,
        "voucher",
        "id, valor_venda, nome_plano, mikrotik_id, mac_address, created_at",
        {"tipo_voucher": "fisico"},
    ),
    SourceTable(
        Source.CAPTIVE_VOUCHER,
        "voucher",
        "id, valor_venda, nome_plano, mikrotik_id, mac_address, created_at",
        {"tipo_voucher": "captive"},
    ),
)


def source_tables(pix_table: str = "vendas_pix", voucher_table: str = "voucher") -> tuple:
    """Fontes padrão com os nomes de tabela vindos da configuração."""
    pix, fisico, captive = DEFAULT_SOURCES
    return (
        SourceTable(pix.source, pix_table, pix.columns, pix.filters),
        SourceTable(fisico.source, voucher_table, fisico.columns, fisico.filters),
        SourceTable(captive.source, voucher_table, captive.columns, captive.filters),
    )


@dataclass
class NormalizationResult:
    records: List[SaleRecord]
    failed_sources: List[Source]
    role: Role

    @property
    def partial(self) -> bool:
        return bool(self.failed_sources)

    @property
    def unavailable(self) -> bool:
        return len(self.failed_sources) == len(Source)


class IngestionNormalizer:
    """
    Lê e normaliza as vendas.

    Args:
        client: cliente Supabase (ou FallbackClient) injetado pelo chamador
        monitor: coletor de alertas; um novo é criado se omitido
        sources: fontes a ler (padrão: DEFAULT_SOURCES)
        device_percentages: porcentagem da plataforma por mikrotik, usada só
            quando a venda PIX não traz nenhuma das comissões
        page_size: tamanho da página na leitura paginada
    """

    def __init__(self, client, monitor: Optional[ReconciliationMonitor] = None,
                 sources: Iterable[SourceTable] = DEFAULT_SOURCES,
                 device_percentages: Optional[Mapping[str, float]] = None,
                 page_size: int = 1000):
        self.client = client
        self.monitor = monitor or ReconciliationMonitor()
        self.sources = tuple(sources)
        self.device_percentages = dict(device_percentages or {})
        self.page_size = page_size

    # ---------------- leitura ----------------
    def fetch(self, device_ids: Iterable[str], window: ReportWindow, role=Role.USER) -> NormalizationResult:
        role = Role.parse(role)
        ids = sorted({str(d) for d in device_ids if d})

        if not ids:
            logger.info("NORMALIZADOR: nenhum mikrotik acessível, nada a buscar")
            return NormalizationResult([], [], role)

        with ThreadPoolExecutor(max_workers=len(self.sources), thread_name_prefix="fonte") as pool:
            futures = [(fonte, pool.submit(self._fetch_source, fonte, ids, window)) for fonte in self.sources]
            # join: todas as fontes terminam antes de seguir
            outcomes = [(fonte, fut.result()) for fonte, fut in futures]

        self._check_unclassified_vouchers(ids, window)

        records: List[SaleRecord] = []
        failed: List[Source] = []
        for fonte, rows in outcomes:
            if rows is None:
                failed.append(fonte.source)
                continue
            for row in rows:
                record = self._normalize(fonte.source, row, window)
                if record is not None:
                    records.append(record)

        # uma linha de origem vira no máximo um registro
        unique: Dict[tuple, SaleRecord] = {}
        for record in records:
            unique.setdefault((record.source, record.id), record)

        ordered = sorted(unique.values(), key=lambda r: (r.timestamp, r.source.value, r.id))
        logger.info("NORMALIZADOR: %d registros normalizados (%d fontes com falha)", len(ordered), len(failed))
        return NormalizationResult(ordered, failed, role)

    @staticmethod
    def _scope_filters(device_ids: List[str], window: ReportWindow) -> Dict:
        return {
            "mikrotik_id": {"operator": "in", "value": device_ids},
            "created_at": [
                {"operator": "gte", "value": window.start.isoformat()},
                {"operator": "lt", "value": window.end.isoformat()},
            ],
        }

    def _fetch_source(self, fonte: SourceTable, device_ids: List[str], window: ReportWindow) -> Optional[List[Dict]]:
        """Lê uma fonte; devolve None se a fonte estiver indisponível."""
        filters = dict(fonte.filters)
        filters.update(self._scope_filters(device_ids, window))
        try:
            rows = safe_paginated_query(
                supabase=self.client,
                table_name=fonte.table,
                select_fields=fonte.columns,
                filters=filters,
                page_size=self.page_size,
            )
        except Exception as e:
            logger.error("NORMALIZADOR: fonte %s indisponível: %s", fonte.source.value, e)
            self.monitor.add_alert(
                "ERROR",
                FONTE_INDISPONIVEL,
                f"Fonte {fonte.source.label} indisponível - alguns dados podem estar incompletos",
                {"source": fonte.source.value, "table": fonte.table, "error": str(e)},
            )
            return None
        return rows

    def _check_unclassified_vouchers(self, device_ids: List[str], window: ReportWindow):
        """
        Vouchers com tipo_voucher nulo ou fora de TIPOS_VOUCHER não entram em
        nenhuma fonte; ficam fora das somas e geram um alerta.
        """
        tables = sorted({f.table for f in self.sources if "tipo_voucher" in f.filters})
        for table in tables:
            scope = self._scope_filters(device_ids, window)
            try:
                rows = []
                for condition in ({"operator": "is", "value": "null"},
                                  {"operator": "not_in", "value": list(TIPOS_VOUCHER)}):
                    rows += safe_paginated_query(self.client, table, "id, tipo_voucher",
                                                 filters=dict(scope, tipo_voucher=condition),
                                                 page_size=self.page_size)
            except Exception as e:
                logger.warning("NORMALIZADOR: verificação de tipos em %s falhou: %s", table, e)
                continue
            if not rows:
                continue
            ids = sorted(str(r.get("id")) for r in rows)
            self.monitor.add_alert(
                "WARNING",
                VALOR_ANOMALO,
                f"{len(ids)} voucher(s) sem tipo reconhecido fora das somas",
                {"table": table, "ids": ids[:20],
                 "tipos": sorted({str(r.get("tipo_voucher")) for r in rows})},
            )

    # ---------------- normalização ----------------
    def _amount(self, row: Dict, campo: str, source: Source, nullable: bool = False) -> Optional[float]:
        value, anomalia = coerce_amount(row.get(campo))
        if anomalia is None or (anomalia == "ausente" and nullable):
            return value
        self.monitor.add_alert(
            "WARNING",
            VALOR_ANOMALO,
            f"Valor {anomalia} em {campo} ({source.label}) tratado como zero",
            {"id": row.get("id"), "campo": campo, "valor": repr(row.get(campo))},
        )
        return 0.0 if value is None else value

    def _normalize(self, source: Source, row: Dict, window: ReportWindow) -> Optional[SaleRecord]:
        device_id = row.get("mikrotik_id")
        moment = parse_timestamp(row.get("created_at"))
        if not device_id or moment is None:
            self.monitor.add_alert(
                "WARNING",
                VALOR_ANOMALO,
                f"Venda {source.label} sem mikrotik ou data ignorada",
                {"id": row.get("id"), "mikrotik_id": device_id, "created_at": row.get("created_at")},
            )
            return None
        if not window.contains(moment):
            return None

        if source == Source.PIX:
            return self._normalize_pix(row, str(device_id), moment)

        gross = self._amount(row, "valor_venda", source)
        return SaleRecord(
            id=str(row.get("id")),
            source=source,
            gross_amount=gross,
            admin_commission=0.0,
            # vouchers não têm divisão: o valor cheio é só volume informativo
            user_commission=gross,
            device_id=str(device_id),
            user_id=None,
            timestamp=moment,
            mac_address=str(row.get("mac_address") or ""),
            plan_label=str(row.get("nome_plano") or source.label),
        )

    def _normalize_pix(self, row: Dict, device_id: str, moment) -> SaleRecord:
        gross = self._amount(row, "valor_total", Source.PIX)
        admin = self._amount(row, "valor_admin", Source.PIX, nullable=True)
        user = self._amount(row, "valor_usuario", Source.PIX, nullable=True)

        admin, user, derived = reconcile_pix_split(gross, admin, user, self.device_percentages.get(device_id))
        if derived and row.get("valor_admin") is not None and row.get("valor_usuario") is not None:
            self.monitor.add_alert(
                "WARNING",
                VALOR_ANOMALO,
                "Comissões PIX não fecham com o valor bruto - admin recalculado",
                {"id": row.get("id"), "valor_total": gross, "valor_usuario": user},
            )

        stored_user = row.get("user_id")
        if stored_user:
            origem = str(row.get("atribuicao_origem") or "").lower()
            confidence = ResolutionConfidence.BACKFILLED if origem == "backfilled" else ResolutionConfidence.DIRECT
        else:
            confidence = ResolutionConfidence.UNRESOLVED

        return SaleRecord(
            id=str(row.get("id")),
            source=Source.PIX,
            gross_amount=gross,
            admin_commission=admin,
            user_commission=user,
            device_id=device_id,
            user_id=str(stored_user) if stored_user else None,
            timestamp=moment,
            mac_address=str(row.get("mac_address") or ""),
            plan_label=str(row.get("plano_nome") or "Plano PIX"),
            resolution_confidence=confidence,
            commission_derived=derived,
        )
