# conciliacao/__init__.py
"""
Conciliação de vendas e rollup de comissões.

Normalizador (três fontes de venda) -> Resolvedor (usuário dono) -> Agregador
(somas por período, crescimento e rankings).
"""

from .registros import (
    SaleRecord,
    Source,
    Role,
    ResolutionConfidence,
    ReportWindow,
    coerce_amount,
    split_pix_amount,
)
from .normalizador import IngestionNormalizer, NormalizationResult, SourceTable, source_tables
from .atribuicao import AttributionResolver, payable
from .agregador import RollupAggregator, growth_percentage, period_bounds
from .rollup import RollupResult, RollupService, compute_rollup
from .sequencia import RequestSequencer
from .exportacao import export_sales_csv, export_sales_xlsx, parse_sales_csv

__all__ = [
    "SaleRecord",
    "Source",
    "Role",
    "ResolutionConfidence",
    "ReportWindow",
    "coerce_amount",
    "split_pix_amount",
    "IngestionNormalizer",
    "NormalizationResult",
    "SourceTable",
    "source_tables",
    "AttributionResolver",
    "payable",
    "RollupAggregator",
    "growth_percentage",
    "period_bounds",
    "RollupResult",
    "RollupService",
    "compute_rollup",
    "RequestSequencer",
    "export_sales_csv",
    "export_sales_xlsx",
    "parse_sales_csv",
]
