# data_utils/monitoring.py
"""
📊 MONITORAMENTO DA CONCILIAÇÃO
Coleta alertas não bloqueantes durante um rollup (fonte indisponível,
valores anômalos, atribuição heurística) e resume a saúde do processamento.
Um monitor vive o tempo de uma requisição; nada é persistido.
"""

from collections import Counter
from typing import Dict, List, Optional, Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging
import threading

logger = logging.getLogger(__name__)

# Componentes conhecidos
FONTE_INDISPONIVEL = "FONTE_INDISPONIVEL"
VALOR_ANOMALO = "VALOR_ANOMALO"
ATRIBUICAO = "ATRIBUICAO"
INTEGRIDADE = "INTEGRIDADE"

# severidade -> (nível de log, peso)
SEVERIDADES = {
    "INFO": (logging.INFO, 0),
    "WARNING": (logging.WARNING, 1),
    "ERROR": (logging.ERROR, 2),
    "CRITICAL": (logging.CRITICAL, 3),
}

_STATUS_POR_PESO = {0: "HEALTHY", 1: "WARNING", 2: "DEGRADED", 3: "CRITICAL"}

_RECOMENDACOES = {
    FONTE_INDISPONIVEL: "⚠️ Fonte de vendas indisponível - dados parciais, tentar novamente",
    VALOR_ANOMALO: "🔍 Valores monetários inválidos nas vendas - revisar origem dos dados",
    ATRIBUICAO: "🧭 Vendas atribuídas por heurística - executar backfill_atribuicao.py",
    INTEGRIDADE: "🧮 Divisão de comissão inconsistente - conferir valor_admin/valor_usuario",
}


@dataclass
class MonitoringAlert:
    """Alerta de monitoramento"""
    timestamp: datetime
    severity: str
    component: str
    message: str
    details: Dict = field(default_factory=dict)

    @property
    def visible(self) -> bool:
        return SEVERIDADES.get(self.severity, SEVERIDADES["INFO"])[1] >= 1


def log_alert(alert: MonitoringAlert):
    level = SEVERIDADES.get(alert.severity, SEVERIDADES["INFO"])[0]
    if alert.details:
        logger.log(level, "[%s] %s | %s", alert.component, alert.message, alert.details)
    else:
        logger.log(level, "[%s] %s", alert.component, alert.message)


class ReconciliationMonitor:
    """Coletor de alertas de um rollup"""

    def __init__(self, alert_callback: Optional[Callable] = None):
        self.alert_callback = alert_callback or log_alert
        self.alerts: List[MonitoringAlert] = []
        # as fontes são lidas em threads paralelas
        self._lock = threading.Lock()

    def add_alert(self, severity: str, component: str, message: str, details: Dict = None) -> MonitoringAlert:
        alert = MonitoringAlert(datetime.now(), severity, component, message, details or {})
        with self._lock:
            self.alerts.append(alert)
        self.alert_callback(alert)
        return alert

    def get_alerts(self, severity: Optional[str] = None, component: Optional[str] = None) -> List[MonitoringAlert]:
        """Alertas na ordem em que ocorreram, opcionalmente filtrados."""
        with self._lock:
            alerts = list(self.alerts)
        return [
            a for a in alerts
            if (severity is None or a.severity == severity)
            and (component is None or a.component == component)
        ]

    def warnings(self) -> List[str]:
        """Mensagens exibidas ao usuário: WARNING para cima, ordenadas e sem repetição."""
        return sorted({a.message for a in self.get_alerts() if a.visible})

    def generate_health_report(self) -> Dict:
        """
        Resume os alertas coletados.

        Returns:
            overall_status (HEALTHY, WARNING, DEGRADED ou CRITICAL), contagens
            por severidade e componente, e recomendações
        """
        alerts = self.get_alerts()
        pior = max((SEVERIDADES.get(a.severity, SEVERIDADES["INFO"])[1] for a in alerts), default=0)
        componentes = Counter(a.component for a in alerts if a.visible)

        recomendacoes = [_RECOMENDACOES[c] for c in sorted(componentes) if c in _RECOMENDACOES]

        return {
            "overall_status": _STATUS_POR_PESO[pior],
            "total_alerts": len(alerts),
            "severity_breakdown": dict(Counter(a.severity for a in alerts)),
            "component_breakdown": dict(componentes),
            "recommendations": recomendacoes or ["✅ Conciliação sem ocorrências"],
        }
