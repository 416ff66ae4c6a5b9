"""
Cliente em memória com a mesma interface encadeável do supabase-py.
Usado quando o Supabase não está configurado (desenvolvimento local) e nos testes.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)


def _comparable(value: Any) -> Any:
    """Datas ISO viram datetime para comparar; números e demais valores seguem como estão."""
    if isinstance(value, str) and len(value) >= 10 and value[4:5] == "-":
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            return value
        if parsed.tzinfo is None:
            from dateutil import tz
            parsed = parsed.replace(tzinfo=tz.UTC)
        return parsed
    return value


class FallbackResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FallbackTable:
    """Simula o query builder do PostgREST sobre uma lista de dicts."""

    def __init__(self, table_name: str, rows: List[Dict], client: "FallbackClient"):
        self.table_name = table_name
        self.rows = rows
        self.client = client
        self.filters = []
        self.selected_columns = "*"
        self.order_by = []
        self.range_bounds = None
        self.limit_count = None
        self._negate_next = False
        self._action = "select"
        self._payload = None

    # ---- seleção / mutação ----
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.selected_columns = columns
        return self

    def insert(self, payload):
        self._action = "insert"
        self._payload = payload
        return self

    def update(self, payload: Dict):
        self._action = "update"
        self._payload = payload
        return self

    def delete(self):
        self._action = "delete"
        return self

    # ---- filtros ----
    @property
    def not_(self):
        self._negate_next = True
        return self

    def _add(self, op: str, column: str, value: Any):
        self.filters.append((op, column, value, self._negate_next))
        self._negate_next = False
        return self

    def eq(self, column: str, value: Any):
        return self._add("eq", column, value)

    def neq(self, column: str, value: Any):
        return self._add("neq", column, value)

    def in_(self, column: str, values):
        return self._add("in", column, list(values))

    def gte(self, column: str, value: Any):
        return self._add("gte", column, value)

    def gt(self, column: str, value: Any):
        return self._add("gt", column, value)

    def lt(self, column: str, value: Any):
        return self._add("lt", column, value)

    def lte(self, column: str, value: Any):
        return self._add("lte", column, value)

    def is_(self, column: str, value: Any):
        return self._add("is", column, value)

    def ilike(self, column: str, pattern: str):
        return self._add("ilike", column, pattern)

    def order(self, column: str, desc: bool = False):
        self.order_by.append((column, desc))
        return self

    def range(self, start: int, end: int):
        self.range_bounds = (start, end)
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    # ---- execução ----
    def _matches(self, row: Dict) -> bool:
        for op, column, value, negate in self.filters:
            current = row.get(column)
            if current is None and op in ("eq", "neq", "in"):
                # NULL não satisfaz a comparação nem a negação dela, como no Postgres
                return False
            if op == "eq":
                ok = current == value
            elif op == "neq":
                ok = current != value
            elif op == "in":
                ok = current in value
            elif op == "is":
                ok = current is None if value in (None, "null") else current is value
            elif op == "ilike":
                needle = str(value).replace("%", "").lower()
                ok = needle in str(current or "").lower()
            else:
                if current is None:
                    ok = False
                else:
                    left, right = _comparable(current), _comparable(value)
                    if op == "gte":
                        ok = left >= right
                    elif op == "gt":
                        ok = left > right
                    elif op == "lt":
                        ok = left < right
                    else:
                        ok = left <= right
            if negate:
                ok = not ok
            if not ok:
                return False
        return True

    def _project(self, row: Dict) -> Dict:
        # "*" ou "*, relacao(...)": linha inteira (relações já vêm embutidas nos dados)
        if self.selected_columns.strip().startswith("*"):
            return copy.deepcopy(row)
        columns = [c.strip() for c in self.selected_columns.split(",") if c.strip()]
        return {c: copy.deepcopy(row.get(c)) for c in columns}

    def execute(self):
        self.client.calls.append((self.table_name, self._action))
        failure = self.client.failures.get(self.table_name)
        if callable(failure):
            # falha condicional: recebe a query e devolve a exceção (ou None)
            failure = failure(self)
        if failure is not None:
            raise failure

        if self._action == "insert":
            payload = self._payload if isinstance(self._payload, list) else [self._payload]
            inserted = [dict(p) for p in payload]
            self.rows.extend(inserted)
            return FallbackResult(copy.deepcopy(inserted))

        matched = [row for row in self.rows if self._matches(row)]

        if self._action == "update":
            for row in matched:
                row.update(self._payload)
            return FallbackResult(copy.deepcopy(matched))

        if self._action == "delete":
            self.rows[:] = [row for row in self.rows if row not in matched]
            return FallbackResult(copy.deepcopy(matched))

        # Ordenação estável: aplica do último critério para o primeiro
        for column, desc in reversed(self.order_by):
            matched.sort(
                key=lambda r: (r.get(column) is None, _comparable(r.get(column)) if r.get(column) is not None else 0),
                reverse=desc,
            )

        if self.range_bounds:
            start, end = self.range_bounds
            matched = matched[start:end + 1]
        if self.limit_count is not None:
            matched = matched[:self.limit_count]

        data = [self._project(r) for r in matched]
        logger.debug("FALLBACK: Query em %s retornou %d registros", self.table_name, len(data))
        return FallbackResult(data, count=len(data))


class FallbackClient:
    """
    Cliente Supabase em memória.

    Args:
        tables: dados iniciais {nome_tabela: [linhas]}
        failures: {nome_tabela: exceção ou callable(query) -> exceção} para simular indisponibilidade
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict]]] = None, failures: Optional[Dict[str, Exception]] = None):
        self.tables = {name: [dict(r) for r in rows] for name, rows in (tables or {}).items()}
        self.failures = dict(failures or {})
        self.calls = []

    def table(self, name: str) -> FallbackTable:
        return FallbackTable(name, self.tables.setdefault(name, []), self)
