import pytest

from app.config import DiversityConfig
from app.services.diversity_composer import DiversityComposer, balance_by_genre, pick_discovery
from app.services.domain import DiscoveryMode, RecommendationScore, UserProfile, WatchStatus

from conftest import ACTION, COMEDY, DRAMA, FANTASY, HORROR, MYSTERY, entry, make_anime

GENRE_POOL = [ACTION, COMEDY, DRAMA, FANTASY, HORROR, MYSTERY]


def profile_with(watched: int, genre_count: int = 1, favorites=(), status=WatchStatus.COMPLETED) -> UserProfile:
    genres = GENRE_POOL[:genre_count]
    anime = {f"w{i}": make_anime(f"w{i}", genres=[genres[i % genre_count]]) for i in range(watched)}
    return UserProfile(
        user_id="u1",
        favorite_genres=tuple(favorites),
        favorite_tags=(),
        discovery_mode=DiscoveryMode.BALANCED,
        rated_anime=(),
        watch_list=tuple(entry(anime_id, status) for anime_id in anime),
        history_anime=anime,
    )


def ranked(*specs) -> list[RecommendationScore]:
    """(anime_id, genre) pairs, highest score first."""
    total = len(specs)
    return [
        RecommendationScore(anime=make_anime(anime_id, genres=[genre]), score=float(total - i), reason="r")
        for i, (anime_id, genre) in enumerate(specs)
    ]


def composer():
    return DiversityComposer(DiversityConfig())


@pytest.mark.parametrize(
    ("watched", "genre_count", "mode", "ratio"),
    [
        (5, 1, DiscoveryMode.BALANCED, 0.7),
        (10, 1, DiscoveryMode.FOCUSED, 0.9),
        (30, 1, DiscoveryMode.FOCUSED, 0.9),
        (50, 6, DiscoveryMode.FOCUSED, 0.9),
        (60, 2, DiscoveryMode.FOCUSED, 0.95),
        (60, 4, DiscoveryMode.BALANCED, 0.7),
        (60, 5, DiscoveryMode.EXPLORATORY, 0.5),
    ],
)
def test_effective_mode_from_watch_history(watched, genre_count, mode, ratio):
    decision = composer().resolve_mode(profile_with(watched, genre_count))
    assert decision.mode == mode
    assert decision.main_ratio == ratio
    assert decision.watched_count == watched


def test_plan_to_watch_does_not_count_as_watched():
    decision = composer().resolve_mode(profile_with(30, status=WatchStatus.PLAN_TO_WATCH))
    assert decision.watched_count == 0
    assert decision.mode == DiscoveryMode.BALANCED


def test_focused_split_adds_a_new_genre():
    recs = ranked(*[(f"a{i}", ACTION) for i in range(10)], ("d1", DRAMA), ("a10", ACTION))

    result = composer().compose(recs, profile_with(30), limit=10)

    assert [r.anime_id for r in result] == [f"a{i}" for i in range(9)] + ["d1"]


def test_balanced_main_slice_round_robins_favorite_genres():
    recs = ranked(
        *[(f"a{i}", ACTION) for i in range(1, 7)],
        ("c1", COMEDY), ("c2", COMEDY),
        ("d1", DRAMA), ("d2", DRAMA),
        ("f1", FANTASY),
    )
    profile = profile_with(5, favorites=["g-action", "g-comedy", "g-drama"])

    result = composer().compose(recs, profile, limit=10)

    # 7 main picks capped at 3 per genre, then fantasy as discovery, then backfill
    assert [r.anime_id for r in result] == ["a1", "c1", "d1", "a2", "c2", "d2", "a3", "f1", "a4", "a5"]


def test_focused_users_are_not_genre_balanced():
    recs = ranked(*[(f"a{i}", ACTION) for i in range(6)], ("c1", COMEDY), ("d1", DRAMA))
    profile = profile_with(30, favorites=["g-action", "g-comedy", "g-drama"])

    result = composer().compose(recs, profile, limit=5)

    assert [r.anime_id for r in result] == ["a0", "a1", "a2", "a3", "c1"]


def test_result_never_exceeds_limit_or_repeats():
    recs = ranked(*[(f"x{i}", GENRE_POOL[i % 6]) for i in range(40)])
    profile = profile_with(60, 6, favorites=["g-action", "g-comedy", "g-drama"])

    result = composer().compose(recs, profile, limit=20)

    ids = [r.anime_id for r in result]
    assert len(ids) == 20
    assert len(set(ids)) == 20


def test_empty_inputs():
    assert composer().compose([], profile_with(5), limit=10) == []
    assert composer().compose(ranked(("a", ACTION)), profile_with(5), limit=0) == []


def test_discovery_without_backfill_can_come_up_short():
    main = ranked(("a1", ACTION))
    remainder = ranked(("a2", ACTION), ("c1", COMEDY))

    assert [r.anime_id for r in pick_discovery(main, remainder, 2)] == ["c1"]
    assert [r.anime_id for r in pick_discovery(main, remainder, 2, backfill=True)] == ["c1", "a2"]


def test_balance_backfills_when_genres_run_dry():
    recs = ranked(("a1", ACTION), ("h1", HORROR), ("h2", HORROR))

    picked = balance_by_genre(recs, ["g-action", "g-comedy", "g-drama"], 3)

    assert [r.anime_id for r in picked] == ["a1", "h1", "h2"]
