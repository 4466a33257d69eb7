from app.core.cache import CacheService
from app.services.domain import FeedbackType, WatchStatus
from app.services.providers import CollaborativePrediction, EmbeddingMatch
from app.services.recommendation_service import RecommendationService

from conftest import (
    ACTION,
    COMEDY,
    CURRENT_YEAR,
    DRAMA,
    MYSTERY,
    ROMANCE,
    FakeCollaborative,
    FakeEmbedding,
    entry,
    make_anime,
)


def make_service(store, cache, config, collaborative=None, embedding=None, **options):
    return RecommendationService(
        store=store,
        cache=cache,
        collaborative=collaborative or FakeCollaborative(),
        embedding=embedding or FakeEmbedding(),
        config=config,
        current_year=CURRENT_YEAR,
        **options,
    )


def ids(recs):
    return [r.anime_id for r in recs]


# ============ For You ============

async def test_genre_match_outranks_higher_rated_off_genre_anime(store, service):
    store.add_anime(
        make_anime("A1", genres=[ACTION], title="Attack Run"),
        make_anime("A2", genres=[ACTION], rating=8.5),
        make_anime("A3", genres=[ROMANCE], rating=9.0),
    )
    store.add_user("u1", favorite_genres=["g-action"], watch_list=[entry("A1", WatchStatus.COMPLETED, score=9)])

    result = ids(await service.get_for_you_recommendations("u1", 20))

    assert "A1" not in result
    assert result.index("A2") < result.index("A3")


async def test_unknown_user_gets_empty_lists(service):
    assert await service.get_for_you_recommendations("ghost", 20) == []
    assert await service.get_hidden_gems("ghost", 8) == []
    assert await service.get_discovery_recommendations("ghost", 10) == []
    assert await service.get_fans_like_you("ghost", 12) == []
    assert await service.get_continue_watching("ghost", 6) == []


async def test_for_you_never_returns_seen_or_dismissed(store, service):
    store.add_anime(*(make_anime(f"a{i}", genres=[ACTION, COMEDY][: i % 2 + 1]) for i in range(12)))
    store.add_user("u1", watch_list=[
        entry("a0", WatchStatus.COMPLETED, score=9),
        entry("a1", WatchStatus.PLAN_TO_WATCH),
        entry("a2", WatchStatus.DROPPED, score=2),
    ])
    await store.upsert_feedback("u1", "a3", FeedbackType.DISMISS)
    await store.upsert_feedback("u1", "a4", FeedbackType.HIDE)

    result = await service.get_for_you_recommendations("u1", 50)

    assert set(ids(result)).isdisjoint({"a0", "a1", "a2", "a3", "a4"})
    assert set(ids(result)) == {f"a{i}" for i in range(5, 12)}
    assert all(0.0 <= r.confidence <= 1.0 for r in result)


async def test_list_additions_are_excluded_while_profile_is_cached(store, cache, config):
    store.add_anime(*(make_anime(f"a{i}", genres=[ACTION]) for i in range(6)))
    store.add_user("u1", watch_list=[entry("a0", WatchStatus.COMPLETED, score=9)])
    service = make_service(store, cache, config, profile_cache_ttl=300)

    first = ids(await service.get_for_you_recommendations("u1", 20))
    store.add_user("u1", watch_list=[
        entry("a0", WatchStatus.COMPLETED, score=9),
        entry("a1", WatchStatus.PLAN_TO_WATCH),
    ])
    second = ids(await service.get_for_you_recommendations("u1", 20))
    gems = ids(await service.get_hidden_gems("u1", 20))

    assert "a1" in first
    assert store.history_loads == 1
    assert "a1" not in second
    assert "a1" not in gems


async def test_for_you_is_deterministic(store, service):
    store.add_anime(*(make_anime(f"a{i}", genres=[[ACTION], [DRAMA], [ACTION, MYSTERY]][i % 3], rating=7 + i / 10) for i in range(15)))
    store.add_user("u1", watch_list=[entry("a0", score=9), entry("a1", WatchStatus.WATCHING)])

    first = await service.get_for_you_recommendations("u1", 10)
    second = await service.get_for_you_recommendations("u1", 10)

    assert [(r.anime_id, r.score, r.reason) for r in first] == [(r.anime_id, r.score, r.reason) for r in second]


async def test_for_you_survives_failing_providers(store, cache, config):
    store.add_anime(make_anime("s1", genres=[ACTION]), make_anime("c1", genres=[ACTION]))
    store.add_user("u1", watch_list=[entry("s1", score=9)])
    service = make_service(
        store, cache, config,
        collaborative=FakeCollaborative([]),
        embedding=FakeEmbedding(error=RuntimeError("index not built")),
    )

    result = await service.get_for_you_recommendations("u1", 10)

    assert ids(result) == ["c1"]


async def test_for_you_with_empty_catalogue(store, service):
    store.add_user("u1", favorite_genres=["g-action"])
    assert await service.get_for_you_recommendations("u1", 10) == []


# ============ Content-based lists ============

async def test_because_you_watched(store, service):
    store.add_anime(
        make_anime("src", genres=[ACTION, COMEDY], title="Source Show"),
        make_anime("close", genres=[ACTION, COMEDY]),
        make_anime("far", genres=[DRAMA], rating=9.5),
        make_anime("seen", genres=[ACTION, COMEDY]),
    )
    store.add_user("u1", watch_list=[entry("src", score=9), entry("seen", score=7)])

    result = await service.get_because_you_watched_recommendations("u1", "src", 5)

    assert ids(result) == ["close", "far"]
    assert all(r.reason == "Because you watched Source Show" for r in result)
    assert await service.get_because_you_watched_recommendations("u1", "missing", 5) == []


async def test_hidden_gems_respect_popularity_ceiling(store, service):
    store.add_anime(
        make_anime("famous", genres=[ACTION], rating=10.0, views=5000),
        make_anime("gem", genres=[ACTION], rating=9.0, views=4999),
        make_anime("meh", genres=[ACTION], rating=7.9, views=100),
        make_anime("off", genres=[DRAMA], rating=9.5, views=50),
    )
    store.add_user("u1", favorite_genres=["g-action"])

    result = await service.get_hidden_gems("u1", 8)

    # Genre match counts as much as rating
    assert ids(result) == ["gem", "off"]
    assert all(r.reason == "Hidden gem you might love" for r in result)


async def test_discovery_picks_unexplored_genres(store, service):
    store.add_anime(
        make_anime("a1", genres=[ACTION], rating=9.0),
        make_anime("m1", genres=[ACTION, MYSTERY], rating=8.5),
        make_anime("d1", genres=[DRAMA], rating=8.0),
        make_anime("d2", genres=[DRAMA], rating=7.0),
    )
    store.add_user("u1", favorite_genres=["g-action"])

    result = await service.get_discovery_recommendations("u1", 10)

    assert ids(result) == ["m1", "d1"]
    assert [r.reason for r in result] == ["Discover Mystery", "Discover Drama"]


# ============ Popularity lists ============

async def test_trending_is_cached(store, cache, service):
    store.add_anime(make_anime("low", views=10), make_anime("high", views=9000))

    first = await service.get_trending_anime(12)
    store.add_anime(make_anime("newcomer", views=99999))
    second = await service.get_trending_anime(12)

    assert ids(first) == ["high", "low"]
    assert ids(second) == ids(first)
    assert CacheService.trending_key() in cache.data
    assert all(r.reason == "Trending now" for r in first)


async def test_trending_in_favorite_genres(store, service):
    store.add_anime(
        make_anime("a1", genres=[ACTION], views=500),
        make_anime("a2", genres=[ACTION], views=800),
        make_anime("seen", genres=[ACTION], views=9000),
        make_anime("d1", genres=[DRAMA], views=9999),
    )
    store.add_user("u1", favorite_genres=["g-action"], watch_list=[entry("seen", score=8)])

    result = await service.get_trending_in_favorite_genres("u1", 12)

    assert ids(result) == ["a2", "a1"]
    assert result[0].reason == "Trending in Action"


async def test_new_releases_newest_first(store, service):
    store.add_anime(make_anime("old"), make_anime("mid"), make_anime("new"))

    assert ids(await service.get_new_releases(2)) == ["new", "mid"]


# ============ History lists ============

async def test_continue_watching_only_stale_entries(store, service):
    store.add_anime(*(make_anime(i) for i in ("w1", "w2", "fresh", "done")))
    store.add_user("u1", watch_list=[
        entry("w1", WatchStatus.WATCHING, days_ago=10),
        entry("w2", WatchStatus.WATCHING, days_ago=20),
        entry("fresh", WatchStatus.WATCHING, days_ago=1),
        entry("done", WatchStatus.COMPLETED, days_ago=30),
    ])

    result = await service.get_continue_watching("u1", 6)

    assert ids(result) == ["w1", "w2"]
    assert all(r.reason == "Continue watching" for r in result)


async def test_fans_like_you(store, cache, config):
    store.add_anime(make_anime("p1"), make_anime("p2"), make_anime("seen"))
    store.add_user("u1", watch_list=[entry("seen", score=9)])
    collaborative = FakeCollaborative([
        CollaborativePrediction("seen", 9.5, 3),
        CollaborativePrediction("p1", 9.0, 6),
        CollaborativePrediction("p2", 8.0, 2),
    ])
    service = make_service(store, cache, config, collaborative=collaborative)

    result = await service.get_fans_like_you("u1", 12)

    assert ids(result) == ["p1", "p2"]
    assert [r.reason for r in result] == [
        "Highly recommended by fans like you",
        "Fans with similar taste loved this",
    ]


async def test_fans_like_you_is_empty_when_provider_fails(store, cache, config):
    store.add_user("u1")
    service = make_service(store, cache, config, collaborative=FakeCollaborative(error=RuntimeError()))

    assert await service.get_fans_like_you("u1", 12) == []


# ============ Anime-to-anime ============

async def test_similar_anime_uses_embeddings(store, cache, config):
    store.add_anime(make_anime("x", genres=[ACTION]), make_anime("y", genres=[DRAMA]))
    embedding = FakeEmbedding({"x": [EmbeddingMatch("y", 0.72)]})
    service = make_service(store, cache, config, embedding=embedding)

    [result] = await service.get_similar_anime("x", 12)

    assert result.anime_id == "y"
    assert result.reason == "Semantically similar"
    assert result.embedding_score == 0.72


async def test_similar_anime_falls_back_to_genre_overlap(store, service):
    store.add_anime(
        make_anime("x", genres=[ACTION, COMEDY]),
        make_anime("half", genres=[ACTION, DRAMA], rating=9.9),
        make_anime("same", genres=[ACTION, COMEDY], rating=6.0),
        make_anime("none", genres=[DRAMA]),
    )

    result = await service.get_similar_anime("x", 12)

    assert ids(result) == ["same", "half"]
    assert all(r.reason == "Similar genres" for r in result)
    assert await service.get_similar_anime("missing", 12) == []
