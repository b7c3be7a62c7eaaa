"""
Report credential pool status, optionally refreshing quotas from the provider.
Usage: python scripts/check_credentials.py [--refresh]
"""
import argparse
import asyncio

from beatgen.core.config import settings
from beatgen.core.typing import as_utc
from beatgen.db import create_db_and_tables, engine
from beatgen.services.credential_pool import CredentialPool
from beatgen.services.provider_client import ProviderClient, refresh_pool_quotas


async def check_credentials(refresh: bool):
    create_db_and_tables(engine)
    pool = CredentialPool(engine)

    if refresh:
        client = ProviderClient(settings.PROVIDER_API_BASE, timeout=settings.PROVIDER_TIMEOUT_SECONDS)
        summary = await refresh_pool_quotas(pool, client, settings.retry_config())
        print(
            f"Refreshed: {summary['refreshed']}, rejected: {summary['rejected']}, "
            f"exhausted: {summary['exhausted']}, failed: {summary['failed']}\n"
        )

    credentials = pool.list_all()
    if not credentials:
        print("No credentials found in database")
        print("Run scripts/import_credentials.py to import keys from PROVIDER_API_KEYS")
        return

    print(f"Total credentials: {len(credentials)}\n")
    for credential in credentials:
        last_used = as_utc(credential.last_used_at).isoformat() if credential.last_used_at else "Never"
        print(f"[{credential.id}] {credential.mask()}")
        print(f"   Status: {credential.status.value}")
        print(f"   Quota remaining: {credential.quota_remaining}")
        print(f"   Last used: {last_used}")

    stats = pool.statistics()
    print("\nStatistics:")
    print(f"   Active: {stats['active']}")
    print(f"   Exhausted: {stats['exhausted']}")
    print(f"   Error: {stats['error']}")
    print(f"   Total quota remaining: {stats['total_quota_remaining']}")

    if pool.has_active():
        print("\nActive credentials available: yes")
    else:
        print("\nActive credentials available: NO - refresh quotas or add new keys")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Show credential pool status")
    parser.add_argument("--refresh", action="store_true", help="Refresh quotas from the provider first")
    args = parser.parse_args()
    asyncio.run(check_credentials(args.refresh))
