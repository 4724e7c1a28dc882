import logging
from decimal import Decimal
from sqlalchemy.exc import IntegrityError
from libris.configs import DEFAULT_POLICY
from libris.core.db import atomic
from libris.core.models import FinePolicy

logger = logging.getLogger(__name__)


class PolicyStore:
    """Access to the single active fine policy."""

    @classmethod
    def get_active(cls, db):
        return db.query(FinePolicy).filter(FinePolicy.is_active.is_(True)).one_or_none()

    @classmethod
    def ensure_default(cls, db):
        """Creates the default policy when none is active.

        Runs at startup, and lazily from `get_current`, so callers must
        invoke it before staging other changes on the session. The policy
        is flushed, committing is left to the caller. A concurrent creator
        loses on the partial unique index and re-reads the winner.
        """
        if policy := cls.get_active(db):
            return policy
        policy = FinePolicy(
            late_fee_per_day=Decimal(DEFAULT_POLICY['late_fee_per_day']),
            damage_fee_rate=Decimal(DEFAULT_POLICY['damage_fee_rate']),
            lost_book_fee_rate=Decimal(DEFAULT_POLICY['lost_book_fee_rate']),
            currency=DEFAULT_POLICY['currency'].upper(),
            is_active=True,
        )
        try:
            db.add(policy)
            db.flush()
        except IntegrityError:
            db.rollback()
            return cls.get_active(db)
        logger.info("Created default fine policy")
        return policy

    @classmethod
    def get_current(cls, db):
        return cls.get_active(db) or cls.ensure_default(db)

    @classmethod
    def set_active(cls, db, late_fee_per_day, damage_fee_rate,
                   lost_book_fee_rate=None, currency=None):
        """Replaces the active policy, keeping the old one as history."""
        with atomic(db):
            current = cls.get_active(db)
            if current is not None:
                current.is_active = False
                db.flush()
            policy = FinePolicy(
                late_fee_per_day=Decimal(str(late_fee_per_day)),
                damage_fee_rate=Decimal(str(damage_fee_rate)),
                lost_book_fee_rate=Decimal(str(
                    lost_book_fee_rate if lost_book_fee_rate is not None
                    else (current.lost_book_fee_rate if current else DEFAULT_POLICY['lost_book_fee_rate']))),
                currency=(currency or (current.currency if current else DEFAULT_POLICY['currency'])).upper(),
                is_active=True,
            )
            db.add(policy)
        logger.info(f"Fine policy {policy.id} is now active")
        return policy
