"""
Import provider credentials from PROVIDER_API_KEYS into the credential pool.
Usage: PROVIDER_API_KEYS=key1,key2 python scripts/import_credentials.py [--quota 500]
"""
import argparse

from beatgen.core.config import settings
from beatgen.db import create_db_and_tables, engine
from beatgen.models.credential import Credential
from beatgen.services.credential_pool import CredentialPool


def import_credentials(quota: int):
    secrets = settings.provider_api_keys()
    if not secrets:
        print("No provider keys found in PROVIDER_API_KEYS")
        return

    print(f"Found {len(secrets)} provider keys")
    create_db_and_tables(engine)

    pool = CredentialPool(engine)
    added, skipped = pool.import_secrets(secrets, default_quota=quota)

    print("\nImport summary:")
    print(f"   Added: {added}")
    print(f"   Skipped (already exists): {skipped}")

    print("\nCurrent credentials:")
    for credential in pool.list_all():
        print(
            f"   [{credential.id}] {Credential.mask_secret(credential.secret)} "
            f"status={credential.status.value} quota={credential.quota_remaining}"
        )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Import provider credentials from the environment")
    parser.add_argument("--quota", type=int, default=settings.DEFAULT_CREDENTIAL_QUOTA, help="Initial quota per key")
    args = parser.parse_args()
    import_credentials(args.quota)
