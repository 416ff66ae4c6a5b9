# tests/test_backfill.py
"""
Testes do backfill de atribuição das vendas PIX antigas.
"""

import unittest
import sys
import os
from datetime import datetime

from dateutil import tz

# Adicionar diretório raiz ao path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fallback_data import FallbackClient
from backfill_atribuicao import run_backfill
from conciliacao import IngestionNormalizer, ReportWindow, ResolutionConfidence
from conciliacao.normalizador import source_tables

UTC = tz.UTC
WINDOW = ReportWindow(datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 12, 31, tzinfo=UTC))


def tables():
    return {
        "mikrotiks": [
            {"id": "D", "user_id": "U", "nome": "Loja Centro", "porcentagem": 10},
            {"id": "X", "user_id": None, "nome": "Sem dono", "porcentagem": 10},
        ],
        "vendas_pix": [
            # sem user_id, mikrotik com dono
            {"id": "p1", "valor_total": 10, "valor_admin": 1, "valor_usuario": 9, "mikrotik_id": "D",
             "user_id": None, "status": "completed", "created_at": "2025-03-10T12:00:00.000Z"},
            # já atribuída: âncora da heurística
            {"id": "p2", "valor_total": 20, "valor_admin": 2, "valor_usuario": 18, "mikrotik_id": "D",
             "user_id": "U", "status": "completed", "created_at": "2025-03-11T12:00:00.000Z"},
            # sem dono, mesmo valor e 300 ms depois de p2
            {"id": "p3", "valor_total": 20, "valor_admin": 2, "valor_usuario": 18, "mikrotik_id": "X",
             "user_id": None, "status": "completed", "created_at": "2025-03-11T12:00:00.300Z"},
            # sem dono e sem par
            {"id": "p4", "valor_total": 7, "valor_admin": 1, "valor_usuario": 6, "mikrotik_id": "X",
             "user_id": None, "status": "completed", "created_at": "2025-03-12T12:00:00.000Z"},
        ],
    }


class TestBackfill(unittest.TestCase):

    def test_simulacao_nao_grava(self):
        client = FallbackClient(tables())
        report = run_backfill(client, apply=False, window=WINDOW)

        self.assertEqual(report["candidatas"], 3)
        self.assertEqual(report["por_dono"], 1)
        self.assertEqual(report["por_heuristica"], 1)
        self.assertEqual(report["sem_usuario"], 1)
        self.assertEqual(report["atualizadas"], 0)
        self.assertNotIn(("vendas_pix", "update"), client.calls)

    def test_aplicar_grava_origem_backfilled(self):
        client = FallbackClient(tables())
        report = run_backfill(client, apply=True, window=WINDOW)

        self.assertEqual(report["atualizadas"], 2)
        rows = {r["id"]: r for r in client.tables["vendas_pix"]}
        self.assertEqual(rows["p1"]["user_id"], "U")
        self.assertEqual(rows["p1"]["atribuicao_origem"], "backfilled")
        self.assertEqual(rows["p3"]["user_id"], "U")
        self.assertIsNone(rows["p4"]["user_id"])
        self.assertNotIn("atribuicao_origem", rows["p2"])

    def test_depois_do_backfill_confianca_e_backfilled(self):
        client = FallbackClient(tables())
        run_backfill(client, apply=True, window=WINDOW)

        pix_only = source_tables()[:1]
        records = IngestionNormalizer(client, sources=pix_only).fetch(["D", "X"], WINDOW).records
        by_id = {r.id: r for r in records}
        self.assertEqual(by_id["p1"].resolution_confidence, ResolutionConfidence.BACKFILLED)
        self.assertEqual(by_id["p2"].resolution_confidence, ResolutionConfidence.DIRECT)

    def test_backfill_idempotente(self):
        client = FallbackClient(tables())
        run_backfill(client, apply=True, window=WINDOW)
        second = run_backfill(client, apply=True, window=WINDOW)
        self.assertEqual(second["candidatas"], 1)
        self.assertEqual(second["atualizadas"], 0)

    def test_tabela_indisponivel_aborta(self):
        client = FallbackClient(tables(), failures={"vendas_pix": RuntimeError("down")})
        with self.assertRaises(RuntimeError):
            run_backfill(client, apply=True, window=WINDOW)


if __name__ == '__main__':
    unittest.main()
