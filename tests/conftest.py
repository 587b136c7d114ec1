from __future__ import annotations

import sys
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import enrollment_service` works.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from enrollment_service.api.dependencies import (  # noqa: E402
    catalog_repo,
    enrollment_repo,
)
from enrollment_service.main import app  # noqa: E402
from enrollment_service.models.course import (  # noqa: E402
    Course,
    CurriculumContent,
    CurriculumSection,
)
from enrollment_service.repos.catalog_repo import seed_sample_catalog  # noqa: E402
from enrollment_service.services import token_service  # noqa: E402
from enrollment_service.services.cache import cache_service  # noqa: E402


@pytest.fixture(autouse=True)
def reset_catalog() -> None:
    """Restore the seeded sample catalog between tests."""
    catalog_repo.clear()
    seed_sample_catalog(catalog_repo)


@pytest.fixture(autouse=True)
def reset_enrollments() -> None:
    enrollment_repo._by_id.clear()
    enrollment_repo._by_user_course.clear()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(username: str = "learner-1", roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=username, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def token() -> str:
    return mint_token()


@pytest.fixture
def other_learner_token() -> str:
    return mint_token(username="learner-2")


@pytest.fixture
def instructor_token() -> str:
    return mint_token(username="instructor-1", roles=["instructor"])


# ---------------------------------------------------------------------------
# Domain builders
# ---------------------------------------------------------------------------


def make_course(
    course_id: str = "course-1",
    *,
    price: str = "100.00",
    sections: dict[str, list[tuple[str, str]]] | None = None,
    discount_ids: tuple[str, ...] = (),
    page_discount_ids: tuple[str, ...] = (),
) -> Course:
    """Build a course; ``sections`` maps section id → [(content id, type)]."""
    if sections is None:
        sections = {"A": [("a1", "session")], "B": [("b1", "assessment")]}
    return Course(
        id=course_id,
        title=course_id.replace("-", " ").title(),
        price=Decimal(price),
        curriculum=tuple(
            CurriculumSection(
                id=sid,
                contents=tuple(CurriculumContent(id=cid, type=t) for cid, t in items),
            )
            for sid, items in sections.items()
        ),
        discount_ids=discount_ids,
        page_discount_ids=page_discount_ids,
    )
