"""
Script para aplicar as migrations do motor de campanhas.

Uso:
    python migrations/apply.py

Requer: SUPABASE_URL e SUPABASE_SERVICE_KEY no ambiente ou no .env
"""
import sys
from pathlib import Path

from crm.core.exceptions import ConfigurationError
from crm.services.supabase import get_supabase_client

# Diretorio das migrations
MIGRATIONS_DIR = Path(__file__).parent

# Ordem das migrations
MIGRATIONS = [
    "001_marketing_core.sql",
]


def apply_migrations(client) -> list:
    """
    Aplica todas as migrations em ordem.

    Returns:
        Lista de migrations que falharam
    """
    failed = []
    for migration_file in MIGRATIONS:
        path = MIGRATIONS_DIR / migration_file
        if not path.exists():
            print(f"[SKIP] {migration_file} nao encontrado")
            continue

        print(f"[APPLY] {migration_file}...")
        sql = path.read_text(encoding="utf-8")

        try:
            # Executar via RPC (raw SQL)
            client.rpc("exec_sql", {"sql": sql}).execute()
            print(f"[OK] {migration_file}")
        except Exception as e:
            print(f"[ERROR] {migration_file}: {e}")
            failed.append(migration_file)

    return failed


def main():
    print("=== Migrations do motor de campanhas ===")

    try:
        client = get_supabase_client()
    except ConfigurationError as e:
        print(f"Erro: {e}")
        sys.exit(1)

    failed = apply_migrations(client)

    if failed:
        print()
        print("Execute os SQLs manualmente no Supabase SQL Editor:")
        for m in failed:
            print(f"  - migrations/{m}")
        sys.exit(1)


if __name__ == "__main__":
    main()
