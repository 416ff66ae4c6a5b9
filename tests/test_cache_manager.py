# tests/test_cache_manager.py
"""
Testes do cache por usuário (Flask-Caching, SimpleCache).
"""

import unittest
from unittest.mock import patch
import sys
import os

from flask import session

# Adicionar diretório raiz ao path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from config import Config
from fallback_data import FallbackClient
from cache_manager import cache, cached_by_user, invalidate_user_cache, make_cache_key


class ConfigCache(Config):
    TESTING = True
    SECRET_KEY = "test"
    SUPABASE_URL = None
    CACHE_TYPE = "SimpleCache"
    CACHE_TIMEOUTS = {"diretorio_contas": 5}


class TestCacheManager(unittest.TestCase):

    def setUp(self):
        self.app = create_app(ConfigCache, supabase_client=FallbackClient({}))
        self.calls = []

        @cached_by_user('diretorio_contas')
        def carregar(arg):
            self.calls.append(arg)
            return {"arg": arg}

        self.carregar = carregar

    def test_chave_por_usuario(self):
        with self.app.test_request_context():
            self.assertIsNone(make_cache_key('diretorio_contas'))
            session["user"] = {"id": "U", "email": "u@exemplo.com"}
            key_u = make_cache_key('diretorio_contas', 1)
            session["user"] = {"id": "V", "email": "v@exemplo.com"}
            key_v = make_cache_key('diretorio_contas', 1)

        self.assertTrue(key_u.startswith("mikropix:diretorio_contas:U:"))
        self.assertNotEqual(key_u, key_v)

    def test_segunda_chamada_vem_do_cache(self):
        with self.app.test_request_context():
            session["user"] = {"id": "U", "email": "u@exemplo.com"}
            self.assertEqual(self.carregar(1), {"arg": 1})
            self.assertEqual(self.carregar(1), {"arg": 1})
            self.carregar(2)

        self.assertEqual(self.calls, [1, 2])

    def test_invalidacao(self):
        with self.app.test_request_context():
            session["user"] = {"id": "U", "email": "u@exemplo.com"}
            self.carregar(1)
            self.assertTrue(invalidate_user_cache('diretorio_contas', 1))
            self.carregar(1)

        self.assertEqual(self.calls, [1, 1])

    def test_sem_usuario_nao_cacheia(self):
        with self.app.test_request_context():
            self.carregar(1)
            self.carregar(1)
            self.assertFalse(invalidate_user_cache('diretorio_contas', 1))

        self.assertEqual(self.calls, [1, 1])

    def test_ttl_configuravel(self):
        with self.app.test_request_context():
            session["user"] = {"id": "U", "email": "u@exemplo.com"}
            with patch.object(cache, "get", return_value=None), patch.object(cache, "set") as mock_set:
                self.carregar(1)

        self.assertEqual(mock_set.call_args.kwargs["timeout"], 5)

    def test_falha_do_cache_nao_derruba(self):
        with self.app.test_request_context():
            session["user"] = {"id": "U", "email": "u@exemplo.com"}
            with patch.object(cache, "get", side_effect=ConnectionError("redis fora")), \
                    patch.object(cache, "set", side_effect=ConnectionError("redis fora")):
                self.assertEqual(self.carregar(1), {"arg": 1})


if __name__ == '__main__':
    unittest.main()
