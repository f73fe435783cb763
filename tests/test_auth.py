from datetime import datetime, timedelta, timezone

import jwt
import pytest

from storefront.common.auth import Caller, decode_token, issue_token
from storefront.common.config import settings
from storefront.common.errors import Unauthorized


def test_round_trip_claims():
    caller = decode_token(issue_token(12, role="admin", email="admin@dacsan.vn"))
    assert caller == Caller(id=12, role="admin", email="admin@dacsan.vn")
    assert caller.is_admin


def test_legacy_id_claim_and_default_role():
    token = jwt.encode({"id": "34"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    caller = decode_token(token)
    assert caller.id == 34
    assert caller.role == "customer"
    assert not caller.is_admin


def test_expired_token():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode({"userId": 1, "exp": past}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(Unauthorized):
        decode_token(token)


def test_token_without_user():
    token = jwt.encode({"role": "admin"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(Unauthorized):
        decode_token(token)


def test_garbage_token():
    with pytest.raises(Unauthorized):
        decode_token("not.a.jwt")

