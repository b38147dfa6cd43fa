"""
Pytest configuration and shared fixtures.

Points refledger at a throwaway SQLite file before any application module
is imported, and rebuilds the schema around every test.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="refledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/refledger.db"
os.environ["ENV"] = "test"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from sqlalchemy import func, select

from refledger.auth.local import auth_service
from refledger.auth.models import UserAccount
from refledger.ledger.models import LedgerEntry
from refledger.referral.models import Referral
from refledger.storage.db import db

PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fresh_db():
    """Empty schema for every test"""
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def register():
    """Factory that registers a user, optionally with a referral code"""
    def _register(email, referral_code=None):
        return auth_service.create_user(email, PASSWORD, referral_code=referral_code)
    return _register


@pytest.fixture
def referral_pair(register):
    """Referrer R and user U who signed up with R's code"""
    referrer = register("r@example.com")
    referred = register("u@example.com", referral_code=referrer.referral_code)
    return referrer, referred


@pytest.fixture
def referral_chain(register):
    """G refers R, R refers U"""
    grand = register("g@example.com")
    referrer = register("r@example.com", referral_code=grand.referral_code)
    referred = register("u@example.com", referral_code=referrer.referral_code)
    return grand, referrer, referred


def credits_of(user_id):
    """Current balance read straight from the store"""
    with db.session() as session:
        return session.scalar(select(UserAccount.credits).where(UserAccount.id == user_id))


def referral_of(referred_user_id):
    with db.session() as session:
        return session.query(Referral).filter(
            Referral.referred_user_id == referred_user_id
        ).first()


def ledger_entries(user_id=None):
    with db.session() as session:
        query = session.query(LedgerEntry)
        if user_id is not None:
            query = query.filter(LedgerEntry.user_id == user_id)
        return query.order_by(LedgerEntry.id).all()


def count_rows(model):
    with db.session() as session:
        return session.scalar(select(func.count()).select_from(model))
