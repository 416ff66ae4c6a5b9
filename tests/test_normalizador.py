# tests/test_normalizador.py
"""
Testes do normalizador de ingestão (três fontes, falha parcial, coerção).
"""

import unittest
from unittest.mock import Mock
import sys
import os
from datetime import datetime

from dateutil import tz

# Adicionar diretório raiz ao path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fallback_data import FallbackClient
from conciliacao.normalizador import IngestionNormalizer, source_tables
from conciliacao.registros import ReportWindow, ResolutionConfidence, Source
from data_utils.monitoring import ReconciliationMonitor, FONTE_INDISPONIVEL, VALOR_ANOMALO

MANAUS = tz.gettz("America/Manaus")
WINDOW = ReportWindow(datetime(2025, 3, 1, tzinfo=MANAUS), datetime(2025, 4, 1, tzinfo=MANAUS))


def pix(id, total, admin, usuario, created_at, mikrotik="D", user_id=None, **extra):
    row = {"id": id, "valor_total": total, "valor_admin": admin, "valor_usuario": usuario,
           "mikrotik_id": mikrotik, "user_id": user_id, "status": "completed",
           "created_at": created_at, "plano_nome": "1 hora", "mac_address": "AA:BB"}
    row.update(extra)
    return row


def voucher(id, valor, tipo, created_at, mikrotik="D"):
    return {"id": id, "valor_venda": valor, "tipo_voucher": tipo, "mikrotik_id": mikrotik,
            "created_at": created_at, "nome_plano": "Diário", "mac_address": ""}


def falha_voucher_fisico(query):
    """Simula indisponibilidade só da consulta de vouchers físicos."""
    if ("eq", "tipo_voucher", "fisico", False) in query.filters:
        return RuntimeError("timeout na consulta de vouchers físicos")
    return None


class TestIngestionNormalizer(unittest.TestCase):

    def setUp(self):
        self.tables = {
            "vendas_pix": [
                pix("p1", 100, 20, 80, "2025-03-10T10:00:00-04:00", user_id="U"),
                pix("p2", 50, None, 40, "2025-03-11T10:00:00-04:00"),
                pix("p3", 30, 5, 5, "2025-03-12T10:00:00-04:00"),
                pix("p4", 10, 1, 9, "2025-03-12T11:00:00-04:00", status="pending"),
                pix("p5", 10, 1, 9, "2025-04-01T00:00:00-04:00"),
                pix("p6", 10, 1, 9, "2025-03-12T11:00:00-04:00", mikrotik="OUTRO"),
                pix("p7", 20, 2, 18, "2025-03-13T09:00:00-04:00", user_id="U", atribuicao_origem="backfilled"),
            ],
            "voucher": [
                voucher("v1", "15,00", "fisico", "2025-03-05T08:00:00-04:00"),
                voucher("v2", 5, "captive", "2025-03-06T08:00:00-04:00"),
                voucher("v3", -5, "captive", "2025-03-07T08:00:00-04:00"),
            ],
        }

    def _normalizer(self, client, **kwargs):
        self.monitor = ReconciliationMonitor()
        return IngestionNormalizer(client, monitor=self.monitor, **kwargs)

    def test_le_as_tres_fontes(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch({"D"}, WINDOW, "admin")

        ids = [(r.source, r.id) for r in result.records]
        self.assertIn((Source.PIX, "p1"), ids)
        self.assertIn((Source.PHYSICAL_VOUCHER, "v1"), ids)
        self.assertIn((Source.CAPTIVE_VOUCHER, "v2"), ids)
        self.assertFalse(result.partial)

    def test_filtros_de_status_janela_e_mikrotik(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        ids = {r.id for r in result.records}
        self.assertNotIn("p4", ids)  # pendente
        self.assertNotIn("p5", ids)  # fim da janela é exclusivo
        self.assertNotIn("p6", ids)  # mikrotik fora do conjunto

    def test_invariante_bruto_igual_admin_mais_usuario(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        for r in result.records:
            if r.is_pix:
                self.assertAlmostEqual(r.gross_amount, r.admin_commission + r.user_commission, delta=0.01)

        by_id = {r.id: r for r in result.records}
        self.assertEqual(by_id["p2"].admin_commission, 10.0)
        self.assertTrue(by_id["p2"].commission_derived)
        self.assertEqual(by_id["p3"].admin_commission, 25.0)
        self.assertFalse(by_id["p1"].commission_derived)

    def test_vouchers_sem_divisao(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        by_id = {r.id: r for r in result.records}
        self.assertEqual(by_id["v1"].gross_amount, 15.0)
        self.assertEqual(by_id["v1"].admin_commission, 0.0)
        self.assertEqual(by_id["v1"].user_commission, 15.0)
        self.assertIsNone(by_id["v1"].user_id)

    def test_valor_negativo_vira_zero_com_alerta(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        by_id = {r.id: r for r in result.records}
        self.assertEqual(by_id["v3"].gross_amount, 0.0)
        self.assertTrue(self.monitor.get_alerts(component=VALOR_ANOMALO))

    def test_confianca_da_atribuicao_gravada(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        by_id = {r.id: r for r in result.records}
        self.assertEqual(by_id["p1"].resolution_confidence, ResolutionConfidence.DIRECT)
        self.assertEqual(by_id["p7"].resolution_confidence, ResolutionConfidence.BACKFILLED)
        self.assertEqual(by_id["p2"].resolution_confidence, ResolutionConfidence.UNRESOLVED)

    def test_ordem_deterministica(self):
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        keys = [(r.timestamp, r.source.value, r.id) for r in result.records]
        self.assertEqual(keys, sorted(keys))

    def test_falha_em_uma_fonte_nao_derruba_as_outras(self):
        client = FallbackClient(self.tables, failures={"voucher": falha_voucher_fisico})
        result = self._normalizer(client).fetch(["D"], WINDOW)

        self.assertEqual(result.failed_sources, [Source.PHYSICAL_VOUCHER])
        self.assertTrue(result.partial)
        self.assertFalse(result.unavailable)
        sources = {r.source for r in result.records}
        self.assertEqual(sources, {Source.PIX, Source.CAPTIVE_VOUCHER})
        alerts = self.monitor.get_alerts(component=FONTE_INDISPONIVEL)
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].details["source"], "physical_voucher")

    def test_todas_as_fontes_indisponiveis(self):
        client = FallbackClient(self.tables, failures={
            "vendas_pix": RuntimeError("down"),
            "voucher": RuntimeError("down"),
        })
        result = self._normalizer(client).fetch(["D"], WINDOW)
        self.assertTrue(result.unavailable)
        self.assertEqual(result.records, [])

    def test_vouchers_sem_tipo_reconhecido_geram_alerta(self):
        self.tables["voucher"] += [
            voucher("v8", 7, None, "2025-03-08T08:00:00-04:00"),
            voucher("v9", 4, "promo", "2025-03-09T08:00:00-04:00"),
            voucher("v10", 9, "promo", "2025-03-09T08:00:00-04:00", mikrotik="OUTRO"),
        ]
        result = self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)

        ids = {r.id for r in result.records}
        self.assertFalse(ids & {"v8", "v9", "v10"})
        alerts = [a for a in self.monitor.get_alerts(component=VALOR_ANOMALO) if "sem tipo" in a.message]
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0].severity, "WARNING")
        self.assertEqual(alerts[0].details["ids"], ["v8", "v9"])
        self.assertEqual(alerts[0].details["tipos"], ["None", "promo"])
        self.assertFalse(result.partial)

    def test_vouchers_classificados_nao_geram_alerta_de_tipo(self):
        self._normalizer(FallbackClient(self.tables)).fetch(["D"], WINDOW)
        self.assertFalse([a for a in self.monitor.get_alerts() if "sem tipo" in a.message])

    def test_paginacao_truncada_marca_fonte_como_falha(self):
        tables = {
            "vendas_pix": [pix(f"p{i:03d}", 10, 2, 8, "2025-03-10T10:00:00-04:00") for i in range(150)],
            "voucher": [voucher("v1", 5, "captive", "2025-03-06T08:00:00-04:00")],
        }
        result = self._normalizer(FallbackClient(tables), page_size=1).fetch(["D"], WINDOW)

        self.assertEqual(result.failed_sources, [Source.PIX])
        self.assertTrue(result.partial)
        self.assertFalse([r for r in result.records if r.is_pix])
        self.assertEqual([r.id for r in result.records], ["v1"])
        alerts = self.monitor.get_alerts(component=FONTE_INDISPONIVEL)
        self.assertEqual(alerts[0].details["source"], "pix")
        self.assertIn("Limite de 100", alerts[0].details["error"])

    def test_sem_mikrotiks_nao_consulta(self):
        client = Mock()
        result = self._normalizer(client).fetch([], WINDOW)
        self.assertEqual(result.records, [])
        client.table.assert_not_called()

    def test_porcentagem_do_mikrotik_quando_nao_ha_comissoes(self):
        tables = {"vendas_pix": [pix("p9", 100, None, None, "2025-03-10T10:00:00-04:00")], "voucher": []}
        normalizer = self._normalizer(FallbackClient(tables), device_percentages={"D": 12})
        record = normalizer.fetch(["D"], WINDOW).records[0]
        self.assertEqual((record.admin_commission, record.user_commission), (12.0, 88.0))

    def test_nomes_de_tabela_configuraveis(self):
        tables = {
            "pix_v2": [pix("p1", 10, 1, 9, "2025-03-10T10:00:00-04:00")],
            "vouchers_v2": [voucher("v1", 3, "captive", "2025-03-10T10:00:00-04:00")],
        }
        normalizer = self._normalizer(FallbackClient(tables), sources=source_tables("pix_v2", "vouchers_v2"))
        self.assertEqual(len(normalizer.fetch(["D"], WINDOW).records), 2)


if __name__ == '__main__':
    unittest.main()
