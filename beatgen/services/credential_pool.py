"""
Credential Pool Service

Owns the lifecycle of provider credentials: add, select, quota updates,
status transitions, refresh and delete. Credentials live in the database so
the pool survives restarts; the only in-memory state is an advisory rotation
counter used to break ties between equally-stale credentials.

Usage:
    from beatgen.services.credential_pool import CredentialPool

    pool = CredentialPool(engine)
    pool.add("sk-live-...", initial_quota=500)

    if pool.has_active():
        credential = pool.select_next()
        if credential:
            # ... call the provider ...
            pool.update_quota(credential.id, remaining)

select_next() returns None when nothing is selectable; it never raises for an
empty pool. Storage errors propagate unchanged and nothing here retries.
Quota writes are last-write-wins per credential id.
"""

from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from beatgen.core.errors import CredentialNotFoundError, DuplicateCredentialError
from beatgen.core.logging_config import get_logger
from beatgen.core.typing import col, utc_now
from beatgen.models.credential import Credential, CredentialStatus


class CredentialPool:
    def __init__(self, engine: Engine, logger=None):
        self.engine = engine
        self.logger = logger if logger is not None else get_logger(__name__)
        # Advisory tie-breaker; authoritative order is last_used_at
        self._rotation = 0

    def _get_or_raise(self, session: Session, credential_id: int) -> Credential:
        credential = session.get(Credential, credential_id)
        if credential is None:
            raise CredentialNotFoundError(credential_id)
        return credential

    def _save(self, session: Session, credential: Credential) -> Credential:
        session.add(credential)
        session.commit()
        session.refresh(credential)
        return credential

    def add(self, secret: str, initial_quota: int = 0) -> Credential:
        """
        Add a new credential to the pool.

        Args:
            secret: Provider secret, must be unique in the pool
            initial_quota: Remaining uses granted by the provider

        Raises:
            DuplicateCredentialError: the secret is already pooled
        """
        with Session(self.engine) as session:
            existing = session.exec(select(Credential).where(col(Credential.secret) == secret)).first()
            if existing:
                raise DuplicateCredentialError(f"Credential already exists: {Credential.mask_secret(secret)}")

            quota = max(initial_quota, 0)
            credential = Credential(
                secret=secret,
                status=CredentialStatus.ACTIVE if quota > 0 else CredentialStatus.EXHAUSTED,
                quota_remaining=quota,
            )
            try:
                credential = self._save(session, credential)
            except IntegrityError as e:
                session.rollback()
                raise DuplicateCredentialError(f"Credential already exists: {Credential.mask_secret(secret)}") from e

        self.logger.info(
            "Credential added",
            credential_id=credential.id,
            secret=credential.mask(),
            quota_remaining=credential.quota_remaining,
        )
        return credential

    def select_next(self) -> Optional[Credential]:
        """
        Select the least recently used active credential with quota left.

        Candidates are ordered by last_used_at ascending (never-used first);
        the chosen credential's last_used_at is stamped with the current time.

        Returns:
            The selected Credential, or None if none is selectable
        """
        with Session(self.engine) as session:
            stmt = (
                select(Credential)
                .where(
                    col(Credential.status) == CredentialStatus.ACTIVE,
                    col(Credential.quota_remaining) > 0,
                )
                .order_by(
                    col(Credential.last_used_at).asc().nulls_first(),
                    col(Credential.id).asc(),
                )
            )
            candidates = list(session.exec(stmt).all())

            if not candidates:
                self.logger.warning("No active credentials available")
                return None

            oldest = candidates[0].last_used_at
            tied = [c for c in candidates if c.last_used_at == oldest]
            credential = tied[self._rotation % len(tied)]
            self._rotation += 1

            credential.last_used_at = utc_now()
            credential = self._save(session, credential)

        self.logger.info(
            "Credential selected",
            credential_id=credential.id,
            quota_remaining=credential.quota_remaining,
        )
        return credential

    def update_quota(self, credential_id: int, new_remaining: int) -> Credential:
        """
        Overwrite a credential's remaining quota.

        A value <= 0 is stored as 0 and flips the credential to exhausted in
        the same commit, so readers never see an active credential with no
        quota or a negative quota.
        """
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)

            if new_remaining <= 0:
                credential.quota_remaining = 0
                credential.status = CredentialStatus.EXHAUSTED
            else:
                credential.quota_remaining = new_remaining

            credential = self._save(session, credential)

        self.logger.info("Credential quota updated", credential_id=credential_id, quota_remaining=credential.quota_remaining)
        if new_remaining <= 0:
            self.logger.warning("Credential exhausted", credential_id=credential_id)
        return credential

    def mark_exhausted(self, credential_id: int) -> Credential:
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)
            credential.status = CredentialStatus.EXHAUSTED
            credential.quota_remaining = 0
            credential = self._save(session, credential)

        self.logger.warning("Credential marked as exhausted", credential_id=credential_id)
        return credential

    def mark_error(self, credential_id: int) -> Credential:
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)
            credential.status = CredentialStatus.ERROR
            credential = self._save(session, credential)

        self.logger.warning("Credential marked as error", credential_id=credential_id)
        return credential

    def mark_used(self, credential_id: int) -> Credential:
        """Stamp last_used_at without changing quota or status."""
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)
            credential.last_used_at = utc_now()
            credential = self._save(session, credential)

        self.logger.debug("Credential marked as used", credential_id=credential_id)
        return credential

    def refresh(self, credential_id: int, new_quota: int) -> Credential:
        """Reset quota after a provider top-up; reactivates iff new_quota > 0."""
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)
            credential.quota_remaining = max(new_quota, 0)
            credential.status = CredentialStatus.ACTIVE if new_quota > 0 else CredentialStatus.EXHAUSTED
            credential = self._save(session, credential)

        self.logger.info(
            "Credential quota refreshed",
            credential_id=credential_id,
            quota_remaining=credential.quota_remaining,
            status=credential.status.value,
        )
        return credential

    def has_active(self) -> bool:
        """True iff at least one credential is active with quota left."""
        with Session(self.engine) as session:
            stmt = (
                select(func.count())
                .select_from(Credential)
                .where(
                    col(Credential.status) == CredentialStatus.ACTIVE,
                    col(Credential.quota_remaining) > 0,
                )
            )
            return session.exec(stmt).one() > 0

    def delete(self, credential_id: int) -> None:
        with Session(self.engine) as session:
            credential = self._get_or_raise(session, credential_id)
            session.delete(credential)
            session.commit()

        self.logger.info("Credential deleted", credential_id=credential_id)

    def get(self, credential_id: int) -> Optional[Credential]:
        with Session(self.engine) as session:
            return session.get(Credential, credential_id)

    def list_all(self) -> list[Credential]:
        """All credentials, newest first, including exhausted and errored ones."""
        with Session(self.engine) as session:
            stmt = select(Credential).order_by(col(Credential.created_at).desc(), col(Credential.id).desc())
            return list(session.exec(stmt).all())

    def statistics(self) -> dict[str, int]:
        """
        Get pool statistics.

        Returns:
            Dict with {"total", "active", "exhausted", "error", "total_quota_remaining"}
        """
        stats: dict[str, int] = {
            "total": 0,
            "active": 0,
            "exhausted": 0,
            "error": 0,
            "total_quota_remaining": 0,
        }

        with Session(self.engine) as session:
            stmt = select(
                col(Credential.status),
                func.count(),
                func.coalesce(func.sum(Credential.quota_remaining), 0),
            ).group_by(col(Credential.status))
            for status, count, quota in session.exec(stmt).all():
                stats[CredentialStatus(status).value] = count
                stats["total"] += count
                stats["total_quota_remaining"] += quota

        return stats

    def import_secrets(self, secrets: Iterable[str], default_quota: int) -> tuple[int, int]:
        """
        Add every secret not already pooled.

        Returns:
            (added, skipped) counts
        """
        with Session(self.engine) as session:
            existing = set(session.exec(select(Credential.secret)).all())

        added = 0
        skipped = 0
        for secret in secrets:
            secret = secret.strip()
            if not secret:
                continue
            if secret in existing:
                skipped += 1
                continue
            self.add(secret, default_quota)
            existing.add(secret)
            added += 1

        self.logger.info("Credentials imported", added=added, skipped=skipped)
        return added, skipped
