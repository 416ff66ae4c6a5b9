# data_utils/data_integrity.py
"""
🔍 VALIDAÇÃO DE INTEGRIDADE DAS COMISSÕES
Confere a divisão bruto = admin + usuário das vendas PIX normalizadas e
compara o total normalizado com a soma direta na tabela de origem.
"""

from typing import Dict, Iterable, List, Optional
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

class DataIntegrityError(Exception):
    """Erro de integridade de dados"""
    pass

class CommissionIntegrityValidator:
    """Validador de integridade das comissões"""

    def __init__(self, supabase=None, tolerance: float = 0.01):
        self.supabase = supabase
        self.tolerance = tolerance

    def validate(self, records: Iterable) -> Dict[str, any]:
        """
        Valida a divisão de comissão de cada venda normalizada.

        Args:
            records: SaleRecords já normalizados (e opcionalmente atribuídos)

        Returns:
            Dict com resultado da validação
        """
        records = list(records)
        pix = [r for r in records if r.is_pix]

        split_violations = [
            r.id for r in pix
            if abs((r.admin_commission + r.user_commission) - r.gross_amount) > self.tolerance
        ]
        voucher_violations = [
            r.id for r in records
            if not r.is_pix and (r.admin_commission != 0 or r.user_commission != r.gross_amount)
        ]
        derived = sum(1 for r in pix if r.commission_derived)
        low_confidence = sum(1 for r in records if r.resolution_confidence.value == "low")
        unresolved = sum(1 for r in records if not r.user_id)

        ok = not split_violations and not voucher_violations
        result = {
            "validation_timestamp": datetime.now().isoformat(),
            "records": len(records),
            "pix_records": len(pix),
            "split_violations": split_violations,
            "voucher_violations": voucher_violations,
            "derived_commissions": derived,
            "low_confidence": low_confidence,
            "unresolved": unresolved,
            "overall_status": "PASS" if ok else "FAIL",
            "tolerance_used": self.tolerance
        }

        if ok:
            logger.info(f"✅ Integridade OK: {len(pix)} vendas PIX, {derived} comissões derivadas")
        else:
            logger.error(f"❌ Integridade FALHOU: {len(split_violations)} PIX e {len(voucher_violations)} vouchers inconsistentes")

        return result

    def cross_check_pix_total(
        self,
        device_ids: List[str],
        window,
        records: Iterable,
        table_name: str = "vendas_pix",
        expected_total: Optional[float] = None
    ) -> Dict[str, any]:
        """
        Compara o bruto PIX normalizado com a soma paginada direta na tabela.

        Args:
            device_ids: mikrotiks considerados
            window: ReportWindow usada na normalização
            records: registros normalizados
            table_name: tabela das vendas PIX
            expected_total: total esperado (opcional)
        """
        if self.supabase is None:
            raise DataIntegrityError("Cliente Supabase não informado para conferência cruzada")

        from data_utils.safe_pagination import safe_sum_field

        normalized_total = round(sum(r.gross_amount for r in records if r.is_pix), 2)
        table_total = safe_sum_field(
            supabase=self.supabase,
            table_name=table_name,
            sum_field="valor_total",
            filters={
                "status": "completed",
                "mikrotik_id": {"operator": "in", "value": list(device_ids)},
                "created_at": [
                    {"operator": "gte", "value": window.start.isoformat()},
                    {"operator": "lt", "value": window.end.isoformat()},
                ],
            }
        )

        method_diff = abs(normalized_total - table_total)
        methods_match = method_diff <= self.tolerance

        expected_match = True
        expected_diff = 0.0
        if expected_total is not None:
            expected_diff = abs(normalized_total - expected_total)
            expected_match = expected_diff <= self.tolerance

        result = {
            "validation_timestamp": datetime.now().isoformat(),
            "normalized_total": normalized_total,
            "table_total": table_total,
            "method_difference": round(method_diff, 2),
            "methods_match": methods_match,
            "expected_total": expected_total,
            "expected_difference": round(expected_diff, 2),
            "expected_match": expected_match,
            "overall_status": "PASS" if methods_match and expected_match else "FAIL",
            "tolerance_used": self.tolerance
        }

        if result["overall_status"] == "PASS":
            logger.info(f"✅ Conferência PIX OK: R$ {normalized_total:,.2f}")
        else:
            logger.error(f"❌ Conferência PIX FALHOU:")
            logger.error(f"   Normalizado: R$ {normalized_total:,.2f}")
            logger.error(f"   Tabela: R$ {table_total:,.2f}")
            if expected_total is not None:
                logger.error(f"   Esperado: R$ {expected_total:,.2f}")

        return result
