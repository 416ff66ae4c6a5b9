"""
Cache por usuário dos diretórios do painel (mikrotiks acessíveis, nomes de
contas, assinatura ativa). Usa Flask-Caching com TTL curto. Vendas nunca são
cacheadas: o rollup é recalculado a cada requisição.
"""
import hashlib
from functools import wraps
from flask import current_app, session
from flask_caching import Cache

cache = Cache()

# TTL padrão por prefixo (segundos); CACHE_TIMEOUTS na config sobrescreve
CACHE_TIMEOUTS = {
    'mikrotiks_acessiveis': 60,     # muda ao cadastrar mikrotik
    'diretorio_contas': 5 * 60,     # nomes para exibição
    'assinatura': 60,               # status do plano
}


def get_user_id():
    """ID do usuário da sessão, ou None fora de uma requisição."""
    try:
        return (session.get("user") or {}).get("id")
    except RuntimeError:
        return None


def _ttl(prefix: str) -> int:
    overrides = current_app.config.get("CACHE_TIMEOUTS") or {}
    return overrides.get(prefix, CACHE_TIMEOUTS.get(prefix, 60))


def make_cache_key(prefix: str, *args, **kwargs):
    """
    Chave do cache: prefixo, usuário e um hash dos argumentos.

    Returns:
        str ou None quando não há usuário na sessão
    """
    uid = get_user_id()
    if not uid:
        return None

    partes = [prefix, str(uid), *map(str, args)]
    partes += [f"{k}:{kwargs[k]}" for k in sorted(kwargs)]
    digest = hashlib.md5("|".join(partes).encode()).hexdigest()
    return f"mikropix:{prefix}:{uid}:{digest}"


def cached_by_user(cache_key_prefix: str, timeout: int = None):
    """
    Decorator de cache por usuário.

    Usage:
        @cached_by_user('mikrotiks_acessiveis')
        def carregar_mikrotiks(role):
            ...

    Falhas do backend de cache não derrubam a view: a função é executada
    normalmente e o erro fica no log.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            key = make_cache_key(cache_key_prefix, *args, **kwargs)
            if key is None:
                return func(*args, **kwargs)

            try:
                hit = cache.get(key)
            except Exception as e:
                current_app.logger.warning("CACHE: leitura falhou (%s): %s", key, e)
                hit = None
            if hit is not None:
                current_app.logger.debug("CACHE: hit %s", key)
                return hit

            result = func(*args, **kwargs)
            try:
                cache.set(key, result, timeout=timeout or _ttl(cache_key_prefix))
            except Exception as e:
                current_app.logger.warning("CACHE: gravação falhou (%s): %s", key, e)
            return result
        return wrapper
    return decorator


def invalidate_user_cache(cache_key_prefix: str, *args, **kwargs) -> bool:
    """Remove a entrada do usuário da sessão para o prefixo e argumentos dados."""
    key = make_cache_key(cache_key_prefix, *args, **kwargs)
    if key is None:
        return False
    try:
        cache.delete(key)
    except Exception as e:
        current_app.logger.warning("CACHE: invalidação falhou (%s): %s", key, e)
        return False
    current_app.logger.debug("CACHE: invalidado %s", key)
    return True


def init_cache(app):
    """Configura o Flask-Caching: SimpleCache, RedisCache ou NullCache."""
    cache_type = app.config.get('CACHE_TYPE', 'SimpleCache')
    cache_config = {'CACHE_TYPE': cache_type, 'CACHE_DEFAULT_TIMEOUT': 60}

    if cache_type == 'RedisCache':
        cache_config['CACHE_REDIS_URL'] = app.config.get('REDIS_URL') or 'redis://localhost:6379/0'
        cache_config['CACHE_KEY_PREFIX'] = 'mikropix_cache:'

    cache.init_app(app, config=cache_config)
    app.logger.info("CACHE: inicializado (%s)", cache_type)
