import pytest
from decimal import Decimal
from sqlalchemy.exc import IntegrityError
from libris.core.models import FinePolicy
from libris.core.policy import PolicyStore
from helpers import auth_headers


def test_default_policy_is_created_once(db_session):
    assert PolicyStore.get_active(db_session) is None
    policy = PolicyStore.ensure_default(db_session)
    db_session.commit()
    assert policy.late_fee_per_day == Decimal("5000")
    assert policy.damage_fee_rate == Decimal("0.3")
    assert policy.lost_book_fee_rate == Decimal("1.0")
    assert policy.currency == "VND"
    assert PolicyStore.get_current(db_session).id == policy.id
    assert db_session.query(FinePolicy).count() == 1


def test_set_active_keeps_history(db_session):
    first = PolicyStore.ensure_default(db_session)
    db_session.commit()
    second = PolicyStore.set_active(db_session, 2000, 0.5, currency="usd")
    assert second.id != first.id
    assert second.currency == "USD"
    # Unspecified values carry over from the previous policy
    assert second.lost_book_fee_rate == Decimal("1.0")
    db_session.refresh(first)
    assert first.is_active is False
    assert PolicyStore.get_active(db_session).id == second.id
    assert db_session.query(FinePolicy).count() == 2


def test_only_one_active_policy(db_session):
    PolicyStore.ensure_default(db_session)
    db_session.commit()
    db_session.add(FinePolicy(late_fee_per_day=1, damage_fee_rate=Decimal("0.1"),
                              lost_book_fee_rate=1, currency="VND", is_active=True))
    with pytest.raises(IntegrityError):
        db_session.flush()
    db_session.rollback()


def test_policy_endpoints(client, reader, admin):
    response = client.get("/v1/api/fine-policy", headers=auth_headers(reader))
    assert response.status_code == 200
    assert response.json()["data"]["lateFeePerDay"] == 5000

    response = client.put("/v1/api/fine-policy", headers=auth_headers(admin),
                          json={"lateFeePerDay": 7000, "damageFeeRate": 0.4, "currency": "eur"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["lateFeePerDay"] == 7000
    assert data["currency"] == "EUR"
    assert data["isActive"] is True


def test_policy_update_is_validated(client, admin):
    response = client.put("/v1/api/fine-policy", headers=auth_headers(admin),
                          json={"lateFeePerDay": 7000, "damageFeeRate": 1.5})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_400"
