"""Unit tests for idempotency key claiming."""

import pytest
from services.bestowals_service.errors import IdempotencyConflictError
from services.bestowals_service.services.idempotency import (
    begin_idempotent_request,
    complete_idempotent_request,
    release_idempotency_key,
)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_first_claim_owns_the_key(db_session):
    assert await begin_idempotent_request(db_session, key="k1", user_id="u1") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_in_progress_key_conflicts_after_wait(db_session):
    await begin_idempotent_request(db_session, key="k1", user_id="u1")

    with pytest.raises(IdempotencyConflictError) as exc_info:
        await begin_idempotent_request(db_session, key="k1", user_id="u1")

    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
@pytest.mark.unit
async def test_completed_key_replays_stored_body_verbatim(db_session):
    """Key order and spacing survive, so a replay is byte-identical."""
    body = '{"success":true,"bestowalId":"abc","distribution":{"x":"1.00"}}'
    await begin_idempotent_request(db_session, key="k1", user_id="u1")
    await complete_idempotent_request(
        db_session, key="k1", user_id="u1", response_body=body
    )
    await db_session.commit()

    replay = await begin_idempotent_request(db_session, key="k1", user_id="u1")

    assert replay == body


@pytest.mark.asyncio
@pytest.mark.unit
async def test_released_key_can_be_claimed_again(db_session):
    await begin_idempotent_request(db_session, key="k1", user_id="u1")
    await release_idempotency_key(db_session, key="k1", user_id="u1")

    assert await begin_idempotent_request(db_session, key="k1", user_id="u1") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_release_leaves_completed_keys(db_session):
    await begin_idempotent_request(db_session, key="k1", user_id="u1")
    await complete_idempotent_request(
        db_session, key="k1", user_id="u1", response_body='{"success":true}'
    )
    await db_session.commit()

    await release_idempotency_key(db_session, key="k1", user_id="u1")

    replay = await begin_idempotent_request(db_session, key="k1", user_id="u1")

    assert replay == '{"success":true}'


@pytest.mark.asyncio
@pytest.mark.unit
async def test_keys_are_scoped_per_user(db_session):
    await begin_idempotent_request(db_session, key="shared", user_id="u1")

    assert (
        await begin_idempotent_request(db_session, key="shared", user_id="u2")
        is None
    )
