# data_utils/safe_pagination.py
"""
🛡️ PAGINAÇÃO SEGURA
O PostgREST devolve no máximo 1000 linhas por requisição. As leituras de
vendas percorrem a tabela em faixas (range) ordenadas por um campo único,
para não repetir nem perder linhas entre páginas.
"""

from typing import Iterator, List, Dict, Any, Optional
import logging

logger = logging.getLogger(__name__)


class SafePaginationError(Exception):
    """Falha ao ler uma tabela paginada"""
    pass


# operador -> como aplicar no query builder do supabase-py
_OPERATORS = {
    "eq": lambda q, c, v: q.eq(c, v),
    "neq": lambda q, c, v: q.neq(c, v),
    "gt": lambda q, c, v: q.gt(c, v),
    "gte": lambda q, c, v: q.gte(c, v),
    "lt": lambda q, c, v: q.lt(c, v),
    "lte": lambda q, c, v: q.lte(c, v),
    "in": lambda q, c, v: q.in_(c, list(v)),
    "not_in": lambda q, c, v: q.not_.in_(c, list(v)),
    "is": lambda q, c, v: q.is_(c, v),
    "not_is": lambda q, c, v: q.not_.is_(c, v),
    "not_ilike": lambda q, c, v: q.not_.ilike(c, v),
}


def _conditions(value: Any) -> List[Any]:
    # {"operator": ..} isolado ou lista deles para o mesmo campo
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value
    return [value]


def _build_query(supabase, table_name: str, select_fields: str,
                 filters: Optional[Dict[str, Any]], user_id: Optional[str]):
    query = supabase.table(table_name).select(select_fields)
    if user_id:
        query = query.eq("user_id", user_id)

    for column, value in (filters or {}).items():
        for cond in _conditions(value):
            if isinstance(cond, dict) and "operator" in cond:
                apply = _OPERATORS.get(cond["operator"])
                if apply is None:
                    raise SafePaginationError(f"Operador não suportado: {cond['operator']}")
                query = apply(query, column, cond["value"])
            else:
                query = query.eq(column, cond)
    return query


def iter_pages(
    supabase,
    table_name: str,
    select_fields: str,
    filters: Dict[str, Any] = None,
    order_by: str = "id",
    desc: bool = False,
    page_size: int = 1000,
    max_pages: int = 100,
    user_id: Optional[str] = None,
) -> Iterator[List[Dict[str, Any]]]:
    """
    Gera as páginas de uma consulta até a primeira página incompleta.

    Raises:
        SafePaginationError: falha do backend, operador desconhecido, ou
            ainda há linhas depois de max_pages páginas (resultado truncado)
    """
    if order_by == "created_at":
        logger.warning("PAGINACAO: created_at não é único e pode repetir linhas entre páginas; prefira 'id'")

    def fetch(page: int, size: int) -> List[Dict[str, Any]]:
        start = page * page_size
        try:
            query = _build_query(supabase, table_name, select_fields, filters, user_id)
            return query.order(order_by, desc=desc).range(start, start + size - 1).execute().data or []
        except SafePaginationError:
            raise
        except Exception as e:
            msg = f"Erro na paginação de {table_name} (página {page + 1}): {e}"
            logger.error("PAGINACAO: %s", msg)
            raise SafePaginationError(msg) from e

    for page in range(max_pages):
        rows = fetch(page, page_size)
        if not rows:
            return
        yield rows
        if len(rows) < page_size:
            return

    # a última página veio cheia: só é truncamento se houver mais linhas
    if fetch(max_pages, 1):
        msg = f"Limite de {max_pages} páginas atingido em {table_name}; resultado incompleto"
        logger.error("PAGINACAO: %s", msg)
        raise SafePaginationError(msg)


def safe_paginated_query(supabase, table_name: str, select_fields: str, **kwargs) -> List[Dict[str, Any]]:
    """
    Lê todos os registros de uma consulta.

    Args:
        supabase: cliente Supabase (ou o cliente em memória)
        table_name: tabela
        select_fields: colunas no formato do PostgREST
        **kwargs: filters, order_by, desc, page_size, max_pages e user_id de iter_pages.
            filters aceita {campo: valor} para igualdade ou
            {campo: {"operator": op, "value": v}}; uma lista de dicts aplica
            vários operadores ao mesmo campo

    Raises:
        SafePaginationError: operador desconhecido, falha do backend ou resultado truncado
    """
    rows: List[Dict[str, Any]] = []
    pages = 0
    for page in iter_pages(supabase, table_name, select_fields, **kwargs):
        rows.extend(page)
        pages += 1
    logger.debug("PAGINACAO: %s - %d registros em %d página(s)", table_name, len(rows), pages)
    return rows


def safe_sum_field(supabase, table_name: str, sum_field: str,
                   filters: Dict[str, Any] = None, user_id: Optional[str] = None) -> float:
    """Soma uma coluna numérica de todas as linhas; valores inválidos são ignorados."""
    total = 0.0
    rows = safe_paginated_query(supabase, table_name, f"id, {sum_field}", filters=filters, user_id=user_id)
    for row in rows:
        value = row.get(sum_field)
        if value is None:
            continue
        try:
            total += float(value)
        except (TypeError, ValueError):
            logger.warning("PAGINACAO: valor inválido em %s.%s: %r", table_name, sum_field, value)
    return round(total, 2)
