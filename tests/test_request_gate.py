"""Tests for caller resolution, ownership checks and rate limiting."""

import uuid
from datetime import timedelta

import pytest

from app.core.exceptions import AuthenticationError, NotFoundError, RateLimitedError
from app.services.auth import create_access_token
from app.services.rate_limit_service import TokenBucketRateLimiter
from app.services.request_gate import Caller, authorize_business, authorize_customer, resolve_caller


def test_user_token_resolves_to_user_caller():
    user_id = uuid.uuid4()
    caller = resolve_caller(create_access_token({"sub": str(user_id)}))
    assert caller == Caller(id=user_id, kind="user")


def test_business_token_resolves_to_business_caller():
    business_id = uuid.uuid4()
    caller = resolve_caller(create_access_token({"type": "business", "businessId": str(business_id)}))
    assert caller.kind == "business"
    assert caller.business_id == business_id


@pytest.mark.parametrize(
    "token",
    [
        None,
        "",
        "garbage",
        create_access_token({"sub": "not-a-uuid"}),
        create_access_token({"sub": str(uuid.uuid4())}, expires_delta=timedelta(seconds=-1)),
    ],
)
def test_bad_credentials_raise_authentication_error(token):
    with pytest.raises(AuthenticationError):
        resolve_caller(token)


@pytest.mark.asyncio
async def test_owner_can_load_appointment(db, make_appointment, customer):
    appointment = await make_appointment()

    state = await authorize_customer(db, Caller(id=customer.id), appointment.id, appointment.conversation_id)

    assert state.id == appointment.id
    assert state.customer_name == "Jane Doe"


@pytest.mark.asyncio
async def test_non_owner_gets_not_found(db, make_appointment):
    appointment = await make_appointment()

    with pytest.raises(NotFoundError):
        await authorize_customer(db, Caller(id=uuid.uuid4()), appointment.id)


@pytest.mark.asyncio
async def test_business_sees_only_its_appointments(db, make_appointment, business):
    appointment = await make_appointment()
    owner = Caller(id=business.id, kind="business", business_id=business.id)
    other_id = uuid.uuid4()
    other = Caller(id=other_id, kind="business", business_id=other_id)

    assert (await authorize_business(db, owner, appointment.id)).id == appointment.id
    with pytest.raises(NotFoundError):
        await authorize_business(db, other, appointment.id)


@pytest.mark.asyncio
async def test_rate_limit_applies_before_lookup(db, make_appointment, customer):
    appointment = await make_appointment()
    limiter = TokenBucketRateLimiter(capacity=1, refill_per_second=0.0)
    caller = Caller(id=customer.id)

    await authorize_customer(db, caller, appointment.id, rate_limiter=limiter)
    with pytest.raises(RateLimitedError):
        await authorize_customer(db, caller, appointment.id, rate_limiter=limiter)
