# conciliacao/sequencia.py
"""
Proteção contra respostas atrasadas: cada requisição de rollup recebe um
número de sequência crescente por escopo (usuário); só a resposta da última
sequência emitida é aceita.
"""

import threading
from typing import Dict, Hashable, Optional, TypeVar

T = TypeVar("T")


class RequestSequencer:
    def __init__(self):
        self._latest: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def issue(self, scope: Hashable = None) -> int:
        """Emite a próxima sequência do escopo."""
        with self._lock:
            seq = self._latest.get(scope, 0) + 1
            self._latest[scope] = seq
            return seq

    def observe(self, scope: Hashable, seq: int) -> int:
        """
        Registra uma sequência gerada pelo cliente (ex.: parâmetro ?seq=).
        Sequências antigas não fazem a última voltar. Retorna a última conhecida.
        """
        with self._lock:
            latest = max(self._latest.get(scope, 0), int(seq))
            self._latest[scope] = latest
            return latest

    def latest(self, scope: Hashable = None) -> int:
        with self._lock:
            return self._latest.get(scope, 0)

    def is_current(self, scope: Hashable, seq: int) -> bool:
        return seq == self.latest(scope)

    def accept(self, scope: Hashable, seq: int, result: T) -> Optional[T]:
        """Devolve o resultado se a sequência ainda é a mais recente; senão None (descartado)."""
        return result if self.is_current(scope, seq) else None
