import logging
from datetime import timedelta

from tortoise import timezone
from tortoise.exceptions import IntegrityError

from erp_sync.models.lock import AdvisoryLock

log = logging.getLogger("locks")


async def acquire_lock(name: str, holder: str, ttl_seconds: int) -> bool:
    """
    Tries to take the named lock for `ttl_seconds`. Returns False when another
    holder owns an unexpired lock. Expired locks are taken over.
    """
    now = timezone.now()
    await AdvisoryLock.filter(name=name, expires_at__lte=now).delete()
    try:
        await AdvisoryLock.create(name=name, holder=holder, expires_at=now + timedelta(seconds=ttl_seconds))
    except IntegrityError:
        return False
    return True


async def release_lock(name: str, holder: str) -> bool:
    """Releases the lock if this holder still owns it."""
    deleted = await AdvisoryLock.filter(name=name, holder=holder).delete()
    if not deleted:
        log.warning(f"Lock '{name}' was no longer held by {holder} on release")
    return bool(deleted)
