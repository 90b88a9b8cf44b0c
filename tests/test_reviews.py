"""
tests/test_reviews.py
Review submission rules and the rating aggregates they keep current.
"""

import asyncio
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import rating_cache_key
from services.review import aggregator
from shared.models.models import Adventure, BookingStatus, Guide, Porter, Review, User, UserRole
from tests.conftest import auth_headers, make_booking


def _payload(booking, review_type, target_id, rating=5, **extra) -> dict:
    payload = {
        "booking_id": str(booking.id),
        "review_type": review_type,
        "target_id": str(target_id),
        "title": "Great trek",
        "comment": "Knew every trail and kept the group safe.",
        "would_recommend": True,
        **extra,
    }
    if rating is not None:
        payload["rating"] = rating
    return payload


async def _completed(db: AsyncSession, customer: User, adventure: Adventure, **kwargs):
    booking = make_booking(customer, adventure, status=BookingStatus.COMPLETED, **kwargs)
    db.add(booking)
    await db.commit()
    return booking


async def _submit(client, reviewer, booking, review_type, target_id, rating=5, **extra):
    return await client.post(
        "/reviews",
        headers=auth_headers(reviewer),
        json=_payload(booking, review_type, target_id, rating, **extra),
    )


# ── Submission ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_review_updates_guide_rating(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    response = await _submit(client, user, booking, "GUIDE", guide.id, 5)

    assert response.status_code == 201
    data = response.json()
    assert data["review"]["rating"] == 5.0
    assert data["review"]["helpfulness_percentage"] == 0
    assert data["target_rating"] == {
        "review_type": "GUIDE",
        "target_id": str(guide.id),
        "rating_avg": 5.0,
        "rating_count": 1,
        "breakdown": None,
    }

    await db.refresh(guide)
    assert float(guide.rating_avg) == 5.0
    assert guide.rating_count == 1


@pytest.mark.asyncio
async def test_average_over_several_reviewers(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    admin_user: User,
    adventure: Adventure,
    guide: Guide,
):
    for reviewer, rating in ((user, 5), (other_user, 4), (admin_user, 5)):
        booking = await _completed(db, reviewer, adventure, guide=guide)
        response = await _submit(client, reviewer, booking, "GUIDE", guide.id, rating)
        assert response.status_code == 201

    assert response.json()["target_rating"]["rating_avg"] == 4.7
    assert response.json()["target_rating"]["rating_count"] == 3


@pytest.mark.asyncio
async def test_adventure_review(client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure):
    booking = await _completed(db, user, adventure)
    response = await _submit(
        client, user, booking, "ADVENTURE", adventure.id, None,
        breakdown={"organization": 5, "value_for_money": 4},
    )
    assert response.status_code == 201
    assert response.json()["review"]["rating"] == 4.5
    assert response.json()["target_rating"]["rating_avg"] == 4.5


@pytest.mark.asyncio
async def test_porter_breakdown_drives_rating_and_criteria(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, porter: Porter
):
    booking = await _completed(db, user, adventure, porter=porter)
    breakdown = {"reliability": 5, "strength": 4, "attitude": 5, "punctuality": 4, "safety": 5}
    response = await _submit(client, user, booking, "PORTER", porter.id, 1, breakdown=breakdown)

    assert response.status_code == 201
    data = response.json()
    assert data["review"]["rating"] == 4.6
    assert data["target_rating"]["rating_avg"] == 4.6
    assert data["target_rating"]["breakdown"]["strength"] == 4.0
    assert data["target_rating"]["breakdown"]["reliability"] == 5.0


@pytest.mark.asyncio
async def test_gear_provider_review(client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure):
    booking = await _completed(db, user, adventure)
    gear_provider_id = uuid.uuid4()
    response = await _submit(client, user, booking, "GEAR_PROVIDER", gear_provider_id, 4)
    assert response.status_code == 201
    assert response.json()["target_rating"]["rating_count"] == 1

    response = await client.get(f"/reviews/GEAR_PROVIDER/{gear_provider_id}/rating")
    assert response.json()["rating_avg"] == 4.0


@pytest.mark.asyncio
async def test_duplicate_review_rejected(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    first = await _submit(client, user, booking, "GUIDE", guide.id, 5)
    second = await _submit(client, user, booking, "GUIDE", guide.id, 1)

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["code"] == "duplicate_review"

    await db.refresh(guide)
    assert guide.rating_count == 1
    assert float(guide.rating_avg) == 5.0


@pytest.mark.asyncio
async def test_same_booking_can_review_each_target_once(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    assert (await _submit(client, user, booking, "GUIDE", guide.id)).status_code == 201
    assert (await _submit(client, user, booking, "ADVENTURE", adventure.id)).status_code == 201


@pytest.mark.asyncio
async def test_review_requires_completed_booking(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = make_booking(user, adventure, guide=guide, status=BookingStatus.IN_PROGRESS)
    db.add(booking)
    await db.commit()

    response = await _submit(client, user, booking, "GUIDE", guide.id)
    assert response.status_code == 400
    assert response.json()["code"] == "booking_not_completed"


@pytest.mark.asyncio
async def test_cannot_review_someone_elses_booking(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    response = await _submit(client, other_user, booking, "GUIDE", guide.id)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_target_must_belong_to_booking(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    response = await _submit(client, user, booking, "GUIDE", uuid.uuid4())
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_unknown_breakdown_criterion_rejected(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    response = await _submit(client, user, booking, "GUIDE", guide.id, None, breakdown={"strength": 5})
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"rating": None},
    {"rating": 6},
    {"rating": 0},
    {"comment": "Too short"},
    {"breakdown": {"safety": 9}},
])
async def test_malformed_review_rejected(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide, overrides
):
    booking = await _completed(db, user, adventure, guide=guide)
    payload = _payload(booking, "GUIDE", guide.id, 5)
    payload.update(overrides)
    payload = {k: v for k, v in payload.items() if v is not None}
    response = await client.post("/reviews", headers=auth_headers(user), json=payload)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_missing_booking_is_not_found(client: AsyncClient, user: User, guide: Guide):
    response = await client.post("/reviews", headers=auth_headers(user), json={
        "booking_id": str(uuid.uuid4()),
        "review_type": "GUIDE",
        "target_id": str(guide.id),
        "rating": 4,
        "title": "Hmm",
        "comment": "No such booking exists here.",
    })
    assert response.status_code == 404


# ── Update / delete / moderation ──────────────────────────────

@pytest.mark.asyncio
async def test_update_rating_recomputes(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    review_id = (await _submit(client, user, booking, "GUIDE", guide.id, 5)).json()["review"]["id"]

    response = await client.put(f"/reviews/{review_id}", headers=auth_headers(other_user), json={"rating": 1})
    assert response.status_code == 403

    response = await client.put(
        f"/reviews/{review_id}", headers=auth_headers(user), json={"rating": 3, "title": "Decent trek"}
    )
    assert response.status_code == 200
    data = response.json()
    assert data["review"]["title"] == "Decent trek"
    assert data["target_rating"]["rating_avg"] == 3.0
    assert data["target_rating"]["rating_count"] == 1


@pytest.mark.asyncio
async def test_delete_review_resets_rating(
    client: AsyncClient, db: AsyncSession, user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    review_id = (await _submit(client, user, booking, "GUIDE", guide.id, 4)).json()["review"]["id"]

    response = await client.delete(f"/reviews/{review_id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["rating_avg"] == 0.0
    assert response.json()["rating_count"] == 0

    await db.refresh(guide)
    assert guide.rating_count == 0

    # Deleting frees the slot for a fresh review
    assert (await _submit(client, user, booking, "GUIDE", guide.id, 2)).status_code == 201


@pytest.mark.asyncio
async def test_hidden_review_drops_out_of_rating(
    client: AsyncClient,
    db: AsyncSession,
    user: User,
    other_user: User,
    admin_user: User,
    adventure: Adventure,
    guide: Guide,
):
    first = await _completed(db, user, adventure, guide=guide)
    second = await _completed(db, other_user, adventure, guide=guide)
    await _submit(client, user, first, "GUIDE", guide.id, 5)
    review_id = (await _submit(client, other_user, second, "GUIDE", guide.id, 1)).json()["review"]["id"]

    response = await client.put(
        f"/reviews/{review_id}/visibility", headers=auth_headers(other_user), json={"visible": False}
    )
    assert response.status_code == 403

    response = await client.put(
        f"/reviews/{review_id}/visibility", headers=auth_headers(admin_user), json={"visible": False}
    )
    assert response.status_code == 200
    assert response.json()["target_rating"]["rating_avg"] == 5.0
    assert response.json()["target_rating"]["rating_count"] == 1

    listed = await client.get(f"/reviews/GUIDE/{guide.id}")
    assert len(listed.json()) == 1
    assert review_id not in [r["id"] for r in listed.json()]


@pytest.mark.asyncio
async def test_helpful_votes(
    client: AsyncClient, db: AsyncSession, user: User, other_user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    review_id = (await _submit(client, user, booking, "GUIDE", guide.id)).json()["review"]["id"]
    headers = auth_headers(other_user)

    await client.put(f"/reviews/{review_id}/helpful", headers=headers, json={"helpful": True})
    await client.put(f"/reviews/{review_id}/helpful", headers=headers, json={"helpful": True})
    response = await client.put(f"/reviews/{review_id}/helpful", headers=headers, json={"helpful": False})

    data = response.json()
    assert (data["helpful_votes"], data["not_helpful_votes"]) == (2, 1)
    assert data["helpfulness_percentage"] == 67


# ── Rating reads ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_rating_is_cached_and_invalidated(
    client: AsyncClient, db: AsyncSession, fake_redis, user: User, other_user: User, adventure: Adventure, guide: Guide
):
    key = rating_cache_key("GUIDE", str(guide.id))

    response = await client.get(f"/reviews/GUIDE/{guide.id}/rating")
    assert response.status_code == 200
    assert response.json()["rating_count"] == 0
    assert key in fake_redis.store

    booking = await _completed(db, user, adventure, guide=guide)
    await _submit(client, user, booking, "GUIDE", guide.id, 4)
    assert key not in fake_redis.store

    response = await client.get(f"/reviews/GUIDE/{guide.id}/rating")
    assert response.json()["rating_avg"] == 4.0
    assert response.json()["rating_count"] == 1


@pytest.mark.asyncio
async def test_rating_for_unknown_guide_is_not_found(client: AsyncClient):
    response = await client.get(f"/reviews/GUIDE/{uuid.uuid4()}/rating")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_get_single_review(
    client: AsyncClient, db: AsyncSession, user: User, admin_user: User, adventure: Adventure, guide: Guide
):
    booking = await _completed(db, user, adventure, guide=guide)
    review_id = (await _submit(client, user, booking, "GUIDE", guide.id, 4)).json()["review"]["id"]

    response = await client.get(f"/reviews/{review_id}")
    assert response.status_code == 200
    assert response.json()["id"] == review_id
    assert response.json()["rating"] == 4.0

    await client.put(
        f"/reviews/{review_id}/visibility", headers=auth_headers(admin_user), json={"visible": False}
    )
    response = await client.get(f"/reviews/{review_id}")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"

    assert (await client.get(f"/reviews/{uuid.uuid4()}")).status_code == 404


# ── Concurrent writers ────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_reviews_for_one_guide_all_count(
    client: AsyncClient, db: AsyncSession, adventure: Adventure, guide: Guide
):
    reviewers = []
    for i in range(6):
        reviewer = User(
            id=uuid.uuid4(), email=f"trekker{i}@example.com", full_name=f"Trekker {i}", role=UserRole.TOURIST
        )
        db.add(reviewer)
        reviewers.append(reviewer)
    await db.commit()
    bookings = [await _completed(db, reviewer, adventure, guide=guide) for reviewer in reviewers]

    responses = await asyncio.gather(*(
        _submit(client, reviewer, booking, "GUIDE", guide.id, rating)
        for reviewer, booking, rating in zip(reviewers, bookings, (5, 4, 3, 5, 4, 3))
    ))

    assert [r.status_code for r in responses] == [201] * 6
    await db.refresh(guide)
    assert float(guide.rating_avg) == 4.0
    assert guide.rating_count == 6


@pytest.mark.asyncio
async def test_row_lock_failure_is_retryable_conflict(
    client: AsyncClient, db: AsyncSession, monkeypatch, user: User, adventure: Adventure, guide: Guide
):
    def lock_timeout(target):
        raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("canceling statement due to lock timeout"))

    monkeypatch.setattr(aggregator, "_lock_target", lock_timeout)
    booking = await _completed(db, user, adventure, guide=guide)

    response = await _submit(client, user, booking, "GUIDE", guide.id, 5)

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "concurrency_conflict"
    assert body["retryable"] is True
    assert body["context"] == {"review_type": "GUIDE", "target_id": str(guide.id)}

    # Nothing from the failed submission was kept
    assert (await db.execute(select(Review))).scalars().all() == []
