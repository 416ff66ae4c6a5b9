# data_utils/__init__.py
"""
🛠️ UTILITÁRIOS DE INTEGRIDADE, PAGINAÇÃO E MONITORAMENTO
Ferramentas de apoio à conciliação de vendas.
"""

__version__ = "1.0.0"

from .safe_pagination import safe_paginated_query, safe_sum_field, SafePaginationError
from .data_integrity import CommissionIntegrityValidator, DataIntegrityError
from .monitoring import ReconciliationMonitor, MonitoringAlert

__all__ = [
    'safe_paginated_query',
    'safe_sum_field',
    'SafePaginationError',
    'CommissionIntegrityValidator',
    'DataIntegrityError',
    'ReconciliationMonitor',
    'MonitoringAlert'
]
