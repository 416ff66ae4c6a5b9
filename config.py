# config.py
import os
from dotenv import load_dotenv, find_dotenv

# 1) tenta .env.local na raiz do projeto
load_dotenv(find_dotenv(".env.local", usecwd=True))
# 2) fallback para .env, se existir
load_dotenv()

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    PORT = int(os.getenv("PORT", "3001"))

    # Supabase Configuration
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")

    # Backend MikroPix (PIX, saques, WireGuard)
    MIKROPIX_API_URL = os.getenv("MIKROPIX_API_URL", "https://api.mikropix.online")
    MIKROPIX_API_TIMEOUT = float(os.getenv("MIKROPIX_API_TIMEOUT", "15"))

    # Conciliação de vendas
    FUSO_OPERACIONAL = os.getenv("FUSO_OPERACIONAL", "America/Manaus")
    TOP_N = int(os.getenv("TOP_N", "5"))
    JANELA_HEURISTICA_MS = int(os.getenv("JANELA_HEURISTICA_MS", "1000"))
    TABELA_VENDAS_PIX = os.getenv("TABELA_VENDAS_PIX", "vendas_pix")
    TABELA_VOUCHERS = os.getenv("TABELA_VOUCHERS", "voucher")
    # confere o bruto PIX normalizado com a soma direta na tabela a cada rollup
    CONFERENCIA_CRUZADA_PIX = os.getenv("CONFERENCIA_CRUZADA_PIX", "false").lower() in ("1", "true", "sim")

    # Saque automático: saldo mínimo
    SAQUE_AUTOMATICO_MINIMO = float(os.getenv("SAQUE_AUTOMATICO_MINIMO", "50"))

    CACHE_TYPE = os.getenv("CACHE_TYPE", "SimpleCache")
    REDIS_URL = os.getenv("REDIS_URL")
