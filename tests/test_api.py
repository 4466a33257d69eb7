import asyncio

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_feedback_service, get_interaction_tracker, get_recommendation_service
from app.main import app
from app.services.domain import FeedbackType
from app.services.feedback_service import FeedbackService

from conftest import ACTION, DRAMA, make_anime

USER = {"X-User-Id": "u1"}


@pytest.fixture
def tracked():
    return []


@pytest.fixture
def client(store, cache, collaborative, service, tracked):
    store.add_anime(*(make_anime(f"a{i}", genres=[ACTION, DRAMA][: i % 2 + 1]) for i in range(6)))
    store.add_user("u1", favorite_genres=["g-action"])

    def tracker(*args):
        tracked.append(args)
        return asyncio.sleep(0)

    app.dependency_overrides[get_recommendation_service] = lambda: service
    app.dependency_overrides[get_feedback_service] = lambda: FeedbackService(store, cache, collaborative)
    app.dependency_overrides[get_interaction_tracker] = lambda: tracker
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_personalized_lists_require_user_header(client):
    assert client.get("/api/v1/recommendations/for-you").status_code == 401
    assert client.get("/api/v1/recommendations/hidden-gems").status_code == 401


def test_malformed_user_header_is_rejected(client):
    response = client.get("/api/v1/recommendations/for-you", headers={"X-User-Id": "x" * 37})
    assert response.status_code == 400


def test_for_you_returns_recommendations(client):
    response = client.get("/api/v1/recommendations/for-you", params={"limit": 5}, headers=USER)

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == len(body["recommendations"]) == 5
    first = body["recommendations"][0]
    assert first["anime"]["id"].startswith("a")
    assert first["reason"]
    assert 0.0 <= first["confidence"] <= 1.0


@pytest.mark.parametrize(
    ("path", "limit"),
    [
        ("/api/v1/recommendations/for-you", 0),
        ("/api/v1/recommendations/for-you", 51),
        ("/api/v1/recommendations/continue-watching", 11),
        ("/api/v1/recommendations/hidden-gems", 21),
    ],
)
def test_limits_are_validated(client, path, limit):
    response = client.get(path, params={"limit": limit}, headers=USER)
    assert response.status_code == 422


def test_public_lists_need_no_user(client):
    trending = client.get("/api/v1/recommendations/trending")
    similar = client.get("/api/v1/recommendations/similar/missing")

    assert trending.status_code == 200
    assert trending.json()["total"] == 6
    assert similar.json() == {"recommendations": [], "total": 0}


def test_feedback_is_recorded(client, store):
    response = client.post(
        "/api/v1/recommendations/feedback",
        json={"anime_id": "a1", "feedback_type": "dismiss", "reason": "not for me"},
        headers=USER,
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert store.feedback[("u1", "a1")] == (FeedbackType.DISMISS, "not for me")

    listed = client.get("/api/v1/recommendations/for-you", params={"limit": 50}, headers=USER).json()
    assert "a1" not in [item["anime"]["id"] for item in listed["recommendations"]]


def test_unknown_feedback_type_is_rejected(client):
    response = client.post(
        "/api/v1/recommendations/feedback",
        json={"anime_id": "a1", "feedback_type": "love"},
        headers=USER,
    )
    assert response.status_code == 422


def test_interactions_are_accepted(client, tracked):
    response = client.post(
        "/api/v1/recommendations/interactions",
        json={"anime_id": "a2", "action_type": "click", "metadata": {"source": "for-you"}},
        headers=USER,
    )

    assert response.status_code == 202
    assert tracked == [("u1", "a2", "click", {"source": "for-you"}, None)]
