from __future__ import annotations

import datetime
from decimal import Decimal
from uuid import uuid4

import jwt
import pytest
from prometheus_client import REGISTRY

from enrollment_service.api.dependencies import (
    catalog_repo,
    enrollment_repo,
    get_enrollment_service,
)
from enrollment_service.main import app
from enrollment_service.models.discount import Discount
from enrollment_service.repos.enrollment_repo import InMemoryEnrollmentRepo
from enrollment_service.services import token_service
from enrollment_service.services.cache import cache_service
from enrollment_service.services.enrollment_service import EnrollmentService
from enrollment_service.services.errors import StorageError
from tests.conftest import auth, make_course, mint_token

COURSE = "intro-to-python"


def _checkout(client, token: str, **payload):
    return client.post(
        "/v1/enrollments/checkout",
        json={"course_id": COURSE, **payload},
        headers=auth(token),
    )


def _attempt_url(enrollment_id: str, section_id: str, content_id: str) -> str:
    return (
        f"/v1/enrollments/{enrollment_id}/sections/{section_id}"
        f"/contents/{content_id}/attempts"
    )


@pytest.fixture
def enrollment(client, token) -> dict:
    resp = _checkout(client, token)
    assert resp.status_code == 201
    return resp.json()


# ---- auth ----


def test_checkout_requires_token(client) -> None:
    resp = client.post("/v1/enrollments/checkout", json={"course_id": COURSE})
    assert resp.status_code == 401


def test_invalid_token_rejected(client) -> None:
    resp = _checkout(client, "not-a-jwt")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid token"


# ---- checkout ----


def test_checkout_applies_page_and_requested_discounts(client, token) -> None:
    resp = _checkout(client, token, discount_ids=["welcome-20"], live_run_id="run-1")

    assert resp.status_code == 201
    body = resp.json()
    assert Decimal(body["base_price"]) == Decimal("100")
    # fixed 20 first, then the 10% page discount: (100 - 20) * 0.9
    assert Decimal(body["final_price"]) == Decimal("72")
    assert body["discounts_applied"] == ["welcome-20", "launch-10"]
    assert body["live_run_id"] == "run-1"
    assert body["status"] == "in_progress"
    assert body["progress"] == 0
    assert [s["section_id"] for s in body["sections"]] == ["basics", "final"]


def test_checkout_unknown_course_404(client, token) -> None:
    resp = client.post(
        "/v1/enrollments/checkout",
        json={"course_id": "no-such-course"},
        headers=auth(token),
    )
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"]["message"]


def test_double_checkout_409(client, token, enrollment) -> None:
    resp = _checkout(client, token)
    assert resp.status_code == 409
    assert resp.json()["detail"]["enrollment_id"] == enrollment["id"]


def test_checkout_missing_course_id_422(client, token) -> None:
    resp = client.post("/v1/enrollments/checkout", json={}, headers=auth(token))
    assert resp.status_code == 422


# ---- reads ----


def test_get_enrollment(client, token, enrollment) -> None:
    resp = client.get(f"/v1/enrollments/{enrollment['id']}", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["id"] == enrollment["id"]


def test_get_unknown_enrollment_404(client, token) -> None:
    resp = client.get(f"/v1/enrollments/{uuid4()}", headers=auth(token))
    assert resp.status_code == 404


def test_get_other_learners_enrollment_403(
    client, enrollment, other_learner_token
) -> None:
    resp = client.get(
        f"/v1/enrollments/{enrollment['id']}", headers=auth(other_learner_token)
    )
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Not your enrollment"


def test_instructor_can_read_any_enrollment(
    client, enrollment, instructor_token
) -> None:
    resp = client.get(
        f"/v1/enrollments/{enrollment['id']}", headers=auth(instructor_token)
    )
    assert resp.status_code == 200


def test_get_by_course(client, token, enrollment) -> None:
    resp = client.get(f"/v1/enrollments/by-course/{COURSE}", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["id"] == enrollment["id"]

    resp = client.get("/v1/enrollments/by-course/other", headers=auth(token))
    assert resp.status_code == 404


# ---- attempts, review, completion ----


def test_full_flow_to_completion(client, token, instructor_token, enrollment) -> None:
    eid = enrollment["id"]

    resp = client.post(
        _attempt_url(eid, "basics", "welcome"), json={}, headers=auth(token)
    )
    assert resp.status_code == 200
    assert [a["attempt_number"] for a in resp.json()] == [1]

    resp = client.post(
        _attempt_url(eid, "final", "project"),
        json={
            "answers": [{"question_id": "q1", "answer": "print('hi')"}],
            "files": ["uploads/project.zip"],
        },
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert resp.json()[0]["submitted_files"] == ["uploads/project.zip"]
    assert resp.json()[0]["is_reviewed"] is False

    current = client.get(f"/v1/enrollments/{eid}", headers=auth(token)).json()
    assert current["progress"] == 50

    resp = client.post(
        _attempt_url(eid, "final", "project") + "/0/review",
        json={"score": 88, "passed": True, "feedback": "Nice work"},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["progress"] == 100
    assert body["status"] == "completed"
    assert body["completed_at"] is not None
    attempt = body["sections"][1]["contents"][0]["attempts"][0]
    assert attempt["reviewed_by"] == "instructor-1"
    assert attempt["is_reviewed"] is True
    assert attempt["feedback"] == "Nice work"

    resp = client.post(f"/v1/enrollments/{eid}/complete", headers=auth(token))
    assert resp.status_code == 200
    assert resp.json()["completed"] is True
    assert resp.json()["enrollment"]["completed_at"] == body["completed_at"]


def test_attempt_on_unknown_content_404(client, token, enrollment) -> None:
    resp = client.post(
        _attempt_url(enrollment["id"], "basics", "missing"),
        json={},
        headers=auth(token),
    )
    assert resp.status_code == 404
    detail = resp.json()["detail"]
    assert detail["section_id"] == "basics"
    assert detail["content_id"] == "missing"


def test_attempt_on_others_enrollment_403(
    client, enrollment, other_learner_token
) -> None:
    resp = client.post(
        _attempt_url(enrollment["id"], "basics", "welcome"),
        json={},
        headers=auth(other_learner_token),
    )
    assert resp.status_code == 403


def test_review_requires_instructor(client, token, enrollment) -> None:
    client.post(
        _attempt_url(enrollment["id"], "final", "project"), json={}, headers=auth(token)
    )
    resp = client.post(
        _attempt_url(enrollment["id"], "final", "project") + "/0/review",
        json={"score": 100, "passed": True},
        headers=auth(token),
    )
    assert resp.status_code == 403


def test_review_session_409(client, token, instructor_token, enrollment) -> None:
    client.post(
        _attempt_url(enrollment["id"], "basics", "welcome"),
        json={},
        headers=auth(token),
    )
    resp = client.post(
        _attempt_url(enrollment["id"], "basics", "welcome") + "/0/review",
        json={"score": 100, "passed": True},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 409


def test_review_missing_attempt_404(client, instructor_token, enrollment) -> None:
    resp = client.post(
        _attempt_url(enrollment["id"], "final", "project") + "/0/review",
        json={"score": 50, "passed": False},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 404


@pytest.mark.parametrize("score", [-1, 101])
def test_review_score_out_of_range_422(
    client, token, instructor_token, enrollment, score
) -> None:
    client.post(
        _attempt_url(enrollment["id"], "final", "project"), json={}, headers=auth(token)
    )
    resp = client.post(
        _attempt_url(enrollment["id"], "final", "project") + "/0/review",
        json={"score": score, "passed": True},
        headers=auth(instructor_token),
    )
    assert resp.status_code == 422


def test_complete_reports_pending_items(client, token, enrollment) -> None:
    client.post(
        _attempt_url(enrollment["id"], "final", "project"), json={}, headers=auth(token)
    )
    resp = client.post(
        f"/v1/enrollments/{enrollment['id']}/complete", headers=auth(token)
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["completed"] is False
    assert body["message"] == "Course not fully completed yet"
    assert body["enrollment"]["status"] == "in_progress"
    assert [(p["content_id"], p["status"]) for p in body["pending"]] == [
        ("welcome", "not attempted"),
        ("project", "awaiting review"),
    ]


def test_assessment_files(client, token, enrollment) -> None:
    url = _attempt_url(enrollment["id"], "final", "project")
    client.post(url, json={"files": ["a.pdf"]}, headers=auth(token))
    client.post(url, json={"files": ["b.pdf", "c.pdf"]}, headers=auth(token))

    resp = client.get(
        f"/v1/enrollments/{enrollment['id']}/sections/final/contents/project/files",
        headers=auth(token),
    )
    assert resp.status_code == 200
    assert resp.json() == ["a.pdf", "b.pdf", "c.pdf"]


# ---- listing & cache ----


def test_list_enrollments_includes_display_price(client, token, enrollment) -> None:
    resp = client.get("/v1/enrollments", headers=auth(token))

    assert resp.status_code == 200
    (item,) = resp.json()
    assert item["enrollment"]["id"] == enrollment["id"]
    assert item["course"]["title"] == "Introduction to Python"
    assert Decimal(item["course"]["final_price"]) == Decimal("90")


def test_list_enrollments_only_own(client, enrollment, other_learner_token) -> None:
    resp = client.get("/v1/enrollments", headers=auth(other_learner_token))
    assert resp.status_code == 200
    assert resp.json() == []


def test_listing_is_cached_until_invalidated(client, token) -> None:
    catalog_repo.add_course(make_course("second-course"))
    _checkout(client, token)

    first = client.get("/v1/enrollments", headers=auth(token)).json()
    assert len(first) == 1
    assert any(k.startswith("enrollments:learner-1:") for k in cache_service._store)

    hits = REGISTRY.get_sample_value("cache_operations_total", {"operation": "hit"})
    cached = client.get("/v1/enrollments", headers=auth(token)).json()
    assert cached == first
    after = REGISTRY.get_sample_value("cache_operations_total", {"operation": "hit"})
    assert after - (hits or 0.0) == 1

    # A new checkout drops the learner's cached listings.
    client.post(
        "/v1/enrollments/checkout",
        json={"course_id": "second-course"},
        headers=auth(token),
    )
    fresh = client.get("/v1/enrollments", headers=auth(token)).json()
    assert len(fresh) == 2


def test_cached_listing_shows_current_catalog_price(client, token) -> None:
    _checkout(client, token)
    first = client.get("/v1/enrollments", headers=auth(token)).json()
    assert Decimal(first[0]["course"]["final_price"]) == Decimal("90")

    catalog_repo.add_discount(
        Discount(id="flash", code="FLASH", type="fixed", value=Decimal(50))
    )
    catalog_repo.add_course(make_course(COURSE, page_discount_ids=("flash",)))

    (item,) = client.get("/v1/enrollments", headers=auth(token)).json()
    assert Decimal(item["course"]["final_price"]) == Decimal("50")
    # the checkout snapshot is untouched
    assert Decimal(item["enrollment"]["final_price"]) == Decimal("90")


def test_cached_listing_drops_expired_page_discount(client, token) -> None:
    now = [1_000]
    app.dependency_overrides[get_enrollment_service] = lambda: EnrollmentService(
        enrollment_repo, catalog_repo, clock=lambda: now[0]
    )
    catalog_repo.add_discount(
        Discount(
            id="spring-sale",
            code="SPRING",
            type="percentage",
            value=Decimal(10),
            ends_at=2_000,
        )
    )
    catalog_repo.add_course(make_course(COURSE, page_discount_ids=("spring-sale",)))
    try:
        _checkout(client, token)
        (before,) = client.get("/v1/enrollments", headers=auth(token)).json()
        now[0] = 3_000
        (after,) = client.get("/v1/enrollments", headers=auth(token)).json()
    finally:
        app.dependency_overrides.clear()

    assert Decimal(before["course"]["final_price"]) == Decimal("90")
    assert Decimal(after["course"]["final_price"]) == Decimal("100")
    assert Decimal(after["enrollment"]["final_price"]) == Decimal("90")


def test_list_enrollments_filtered_by_course(client, token, enrollment) -> None:
    resp = client.get(
        "/v1/enrollments", params={"course_id": "other"}, headers=auth(token)
    )
    assert resp.status_code == 200
    assert resp.json() == []


def test_expired_token_rejected(client) -> None:
    now = datetime.datetime.now(datetime.UTC)
    claims = {
        "sub": "learner-1",
        "roles": ["learner"],
        "iss": token_service.ISSUER,
        "aud": token_service.AUDIENCE,
        "iat": now - datetime.timedelta(hours=2),
        "exp": now - datetime.timedelta(hours=1),
        "jti": str(uuid4()),
    }
    token = jwt.encode(claims, token_service._private_key, algorithm="ES256")
    resp = client.get("/v1/enrollments", headers=auth(token))
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_admin_token_is_not_instructor(client, token, enrollment) -> None:
    admin = mint_token(username="admin-1", roles=["admin"])
    client.post(
        _attempt_url(enrollment["id"], "final", "project"), json={}, headers=auth(token)
    )
    resp = client.post(
        _attempt_url(enrollment["id"], "final", "project") + "/0/review",
        json={"score": 70, "passed": True},
        headers=auth(admin),
    )
    assert resp.status_code == 403


class _BrokenRepo(InMemoryEnrollmentRepo):
    async def add(self, enrollment) -> None:
        raise StorageError("database unavailable", enrollment_id=enrollment.id)


def test_storage_failure_maps_to_503(client, token) -> None:
    app.dependency_overrides[get_enrollment_service] = lambda: EnrollmentService(
        _BrokenRepo(), catalog_repo
    )
    try:
        resp = _checkout(client, token)
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503
    assert resp.json()["detail"]["message"] == "database unavailable"
