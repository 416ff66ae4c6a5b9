# conciliacao/atribuicao.py
"""
Resolvedor de atribuição: liga cada venda ao usuário dono.

1. user_id gravado na venda (direto ou backfill) é mantido;
2. senão, o dono do mikrotik (mapa montado uma vez por requisição);
3. senão, heurística legada: mesma comissão admin, mesmo valor bruto e
   horário a até 1 s de uma venda já resolvida. Duas vendas diferentes com o
   mesmo valor no mesmo segundo colidem, por isso o resultado sai com
   confiança LOW e nunca entra em cálculo de saldo.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Union

from data_utils.monitoring import ReconciliationMonitor, ATRIBUICAO

from .registros import ResolutionConfidence, SaleRecord, Source

logger = logging.getLogger(__name__)

_CONFIAVEIS = (ResolutionConfidence.DIRECT, ResolutionConfidence.BACKFILLED)


def build_owner_map(devices: Union[Mapping[str, str], Iterable]) -> Dict[str, str]:
    """
    mikrotik_id -> user_id do dono.
    Aceita um dict pronto, objetos Device (id/owner_id) ou linhas cruas (id/user_id).
    """
    if isinstance(devices, Mapping):
        return {str(k): str(v) for k, v in devices.items() if v}

    owners = {}
    for device in devices or []:
        if isinstance(device, Mapping):
            device_id, owner = device.get("id"), device.get("user_id") or device.get("owner_id")
        else:
            device_id, owner = getattr(device, "id", None), getattr(device, "owner_id", None)
        if device_id and owner:
            owners[str(device_id)] = str(owner)
    return owners


class AttributionResolver:
    def __init__(self, devices, time_tolerance_ms: int = 1000,
                 monitor: Optional[ReconciliationMonitor] = None):
        self.owners = build_owner_map(devices)
        self.time_tolerance_ms = time_tolerance_ms
        self.monitor = monitor or ReconciliationMonitor()

    def resolve(self, records: Iterable[SaleRecord]) -> List[SaleRecord]:
        """Devolve novos registros atribuídos, na mesma ordem; a entrada não é alterada."""
        resolved: List[Optional[SaleRecord]] = []
        pending: List[int] = []

        for record in records:
            if record.user_id and record.resolution_confidence in _CONFIAVEIS:
                owner = self.owners.get(record.device_id)
                if owner and owner != record.user_id:
                    logger.info("ATRIBUICAO: venda %s gravada para %s, mikrotik pertence a %s",
                                record.id, record.user_id, owner)
                resolved.append(record)
                continue

            owner = self.owners.get(record.device_id)
            if owner:
                resolved.append(record.with_attribution(owner, ResolutionConfidence.DIRECT))
            else:
                resolved.append(record)
                pending.append(len(resolved) - 1)

        if pending:
            anchors = [r for r in resolved if r.user_id and r.resolution_confidence in _CONFIAVEIS]
            heuristic = 0
            for index in pending:
                match = self._heuristic_match(resolved[index], anchors)
                if match is not None:
                    resolved[index] = resolved[index].with_attribution(match.user_id, ResolutionConfidence.LOW)
                    heuristic += 1
                else:
                    resolved[index] = resolved[index].with_attribution(None, ResolutionConfidence.UNRESOLVED)

            if heuristic:
                self.monitor.add_alert(
                    "WARNING",
                    ATRIBUICAO,
                    f"{heuristic} venda(s) atribuída(s) por aproximação de valor e horário (baixa confiança)",
                    {"heuristicas": heuristic, "pendentes": len(pending)},
                )
            unresolved = len(pending) - heuristic
            if unresolved:
                logger.info("ATRIBUICAO: %d venda(s) sem usuário resolvido", unresolved)

        return resolved

    def _heuristic_match(self, record: SaleRecord, anchors: List[SaleRecord]) -> Optional[SaleRecord]:
        tolerance = self.time_tolerance_ms / 1000.0
        candidates = []
        for anchor in anchors:
            if anchor.id == record.id and anchor.source == record.source:
                continue
            if anchor.admin_commission != record.admin_commission or anchor.gross_amount != record.gross_amount:
                continue
            delta = abs((anchor.timestamp - record.timestamp).total_seconds())
            if delta <= tolerance:
                candidates.append((delta, anchor.timestamp, anchor.id, anchor))

        if not candidates:
            return None

        candidates.sort(key=lambda c: c[:3])
        users = {c[3].user_id for c in candidates}
        if len(users) > 1:
            logger.warning("ATRIBUICAO: venda %s casa com %d usuários diferentes; usando o mais próximo no tempo",
                           record.id, len(users))
        return candidates[0][3]


def payable(records: Iterable[SaleRecord]) -> List[SaleRecord]:
    """Vendas que podem afetar saldo: só PIX com atribuição direta."""
    return [
        r for r in records
        if r.source == Source.PIX and r.user_id and r.resolution_confidence == ResolutionConfidence.DIRECT
    ]
