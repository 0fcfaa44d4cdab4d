from src.pipeline.sampling import ReviewSampler
from tests.fakes import make_review


def _dataset() -> list:
    # 350 reviews, one per day. Five-star reviews sit outside the newest 100,
    # half of the one-star reviews sit inside it.
    reviews = []
    for day in range(350):
        if 200 <= day < 240:
            rating = 5
        elif 95 <= day < 105:
            rating = 1
        else:
            rating = 3
        reviews.append(make_review(f"user{day}", rating, f"visit number {day}", days_ago=day))
    return list(reversed(reviews))


def test_small_sets_are_analyzed_in_full() -> None:
    reviews = [make_review(f"user{i}", 4, f"text {i}") for i in range(5)]

    sampled = ReviewSampler().sample(reviews)

    assert sampled.sampling_used is False
    assert len(sampled.reviews) == 5
    assert sampled.breakdown.recent == 5
    assert set(sampled.categories.values()) == {"recent"}


def test_threshold_is_inclusive() -> None:
    reviews = [make_review(f"user{i}", 4, f"text {i}") for i in range(300)]

    assert ReviewSampler().should_sample(reviews) is False
    assert ReviewSampler().should_sample([*reviews, make_review("extra", 2, "late")]) is True


def test_large_sets_take_recent_then_rating_extremes_without_overlap() -> None:
    reviews = _dataset()

    sampled = ReviewSampler().sample(reviews)

    assert sampled.sampling_used is True
    assert sampled.total_original == 350
    assert (sampled.breakdown.recent, sampled.breakdown.fivestar, sampled.breakdown.onestar) == (100, 40, 5)
    recent = sampled.reviews[:100]
    assert [review.author for review in recent[:3]] == ["user0", "user1", "user2"]
    assert all(review.date >= recent[-1].date for review in recent)
    assert len({review.id for review in sampled.reviews}) == len(sampled.reviews)
    assert all(sampled.categories[review.id] == "onestar" for review in sampled.reviews[140:])
    assert {review.author for review in sampled.reviews[140:]} == {f"user{day}" for day in range(100, 105)}


def test_category_slices_are_capped() -> None:
    reviews = [make_review(f"user{i}", 5, f"text {i}", days_ago=i) for i in range(12)]

    sampled = ReviewSampler(threshold=5, per_category=4).sample(reviews)

    assert (sampled.breakdown.recent, sampled.breakdown.fivestar, sampled.breakdown.onestar) == (4, 4, 0)


def test_undated_reviews_rank_last_for_recency() -> None:
    reviews = [make_review("undated", 3, "no date"), *[make_review(f"u{i}", 3, f"t {i}", days_ago=i) for i in range(3)]]

    sampled = ReviewSampler(threshold=2, per_category=3).sample(reviews)

    assert "undated" not in {review.author for review in sampled.reviews[:3]}


def test_sampling_report_describes_the_sample() -> None:
    sampler = ReviewSampler()

    full = sampler.sampling_report(sampler.sample([make_review("a", 4, "fine")]))
    partial = sampler.sampling_report(sampler.sample(_dataset()))

    assert full == "All 1 reviews were analyzed (no sampling required as count ≤ 300)."
    assert partial.startswith("Intelligent sampling applied to 350 reviews: 100 most recent reviews, 40 five-star")
    assert partial.endswith("Total analyzed: 145 reviews (41.4% of the original dataset).")
