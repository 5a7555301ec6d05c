#!/usr/bin/env python
# ============================================================================
# SCHEMA DEPLOYMENT SCRIPT
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# PURPOSE: Deploy the orchestrator schema to PostgreSQL
# USAGE:
#   python scripts/deploy_schema.py --dry-run    # Preview SQL
#   python scripts/deploy_schema.py              # Execute deployment
#   python scripts/deploy_schema.py --status     # Check current status
# ============================================================================

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from psycopg import AsyncConnection, sql
from psycopg.rows import dict_row

from repositories.database import SCHEMA, get_connection_string, mask_conninfo
from repositories.schema import build_statements


async def show_status(conninfo: str) -> int:
    """Print tables and row counts. Returns a process exit code."""
    async with await AsyncConnection.connect(conninfo, row_factory=dict_row) as conn:
        result = await conn.execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
            ORDER BY table_name
            """,
            (SCHEMA,),
        )
        tables = [row["table_name"] for row in await result.fetchall()]

        print(f"Schema exists: {bool(tables)}")
        if not tables:
            return 1

        print(f"\nTables ({len(tables)}):")
        for table in tables:
            count_result = await conn.execute(
                sql.SQL("SELECT COUNT(*) AS count FROM {}").format(sql.Identifier(SCHEMA, table))
            )
            row = await count_result.fetchone()
            print(f"  - {SCHEMA}.{table}: {row['count']} rows")
    return 0


async def deploy(conninfo: str, dry_run: bool) -> int:
    """Execute (or print) the DDL. Returns a process exit code."""
    statements = build_statements()
    async with await AsyncConnection.connect(conninfo, autocommit=True) as conn:
        for index, statement in enumerate(statements, start=1):
            text = " ".join(statement.as_string(conn).split())
            if dry_run:
                print(f"[{index}/{len(statements)}] {text}")
                continue
            try:
                await conn.execute(statement)
                print(f"OK   [{index}/{len(statements)}] {text[:90]}")
            except Exception as e:
                print(f"FAIL [{index}/{len(statements)}] {text[:90]}")
                print(f"   Error: {e}")
                return 1
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Deploy the orchestrator schema to PostgreSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/deploy_schema.py --dry-run     # Preview DDL without executing
  python scripts/deploy_schema.py               # Deploy schema
  python scripts/deploy_schema.py --status      # Check current installation

Environment Variables:
  DATABASE_URL            Full PostgreSQL connection string
  POSTGRES_HOST           Database host (default: localhost)
  POSTGRES_DB             Database name (default: postgres)
  POSTGRES_USER           Database user (default: postgres)
  POSTGRES_PASSWORD       Database password
  POSTGRES_PORT           Database port (default: 5432)
  POSTGRES_SSLMODE        SSL mode (default: prefer)
  ORCHESTRATOR_DB_SCHEMA  Schema name (default: orchestrator)
        """
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print DDL without executing"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Check current installation status"
    )
    parser.add_argument(
        "--connection",
        type=str,
        help="PostgreSQL connection string (overrides environment)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    conninfo = args.connection or get_connection_string()

    print("=" * 70)
    print("RESOURCE ORCHESTRATOR - Schema Deployment")
    print("=" * 70)
    print(f"Target: {mask_conninfo(conninfo)}")
    print(f"Schema: {SCHEMA}")
    print("=" * 70)

    if args.status:
        print("\n[STATUS CHECK]\n")
        code = asyncio.run(show_status(conninfo))
        print("\n" + "=" * 70)
        sys.exit(code)

    print(f"\nMode: {'DRY RUN' if args.dry_run else 'EXECUTE'}\n")
    code = asyncio.run(deploy(conninfo, args.dry_run))

    print("\n" + "=" * 70)
    if code == 0:
        print("Deployment completed successfully!" if not args.dry_run else "Dry run complete.")
    else:
        print("Deployment failed!")
    print("=" * 70)
    sys.exit(code)


if __name__ == "__main__":
    main()
