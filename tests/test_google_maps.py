import pytest

from src.scraper.google_maps import GoogleMapsScraper
from src.scraper.review_extractor import ReviewExtractor
from src.scraper.sort_navigation import SortNavigator
from src.services.errors import AnalysisError
from tests.fakes import PLACE_URL, FakePage, card, no_sleep


def _scraper(**overrides) -> GoogleMapsScraper:
    extractor = ReviewExtractor()
    options = {
        "extractor": extractor,
        "navigator": SortNavigator(extractor, settle_ms=0, sleep=no_sleep),
        "sort_attempts": 1,
        "scroll_delay_ms": 0,
    }
    options.update(overrides)
    return GoogleMapsScraper(**options)


def _place_page() -> FakePage:
    return FakePage(
        html_lang="en",
        text="Reviews 4.4 stars Local Guide 2 weeks ago",
        counts={"div.jftiEf[data-review-id]": 5},
        cards=[
            card("Alice", 5, "Lovely brunch", date="1 day ago"),
            card("Bob", 1, "Cold food", date="2 days ago"),
            card("Carol", 4, "Good coffee", date="1 week ago"),
            card("Dan", 3, "Average", date="2 weeks ago"),
            card("Eve", 2, "Slow service", date="1 month ago"),
        ],
    )


@pytest.mark.asyncio
async def test_collect_from_runs_every_order_and_merges() -> None:
    page = _place_page()
    scraper = _scraper(sort_orders=["recent", "worst"])

    result = await scraper.collect_from(page, PLACE_URL, {"recent": 3, "worst": 4})

    assert page.visited[0] == PLACE_URL
    assert [phase.phase for phase in result.phase_results] == ["recent", "worst"]
    assert [phase.reviews_collected for phase in result.phase_results] == [3, 4]
    assert all(phase.stopped_reason == "target-reached" for phase in result.phase_results)
    # Nothing on the page changes order, so sorting is never verified.
    assert all(phase.navigation_method == "none" for phase in result.phase_results)
    assert len(result.reviews_by_category["worst"]) == 4
    assert len(result.unique_reviews) == 4
    assert result.duplicates_removed == 3
    assert result.contributions == {"recent": 3, "worst": 1}
    assert result.language is not None and result.language.language == "english"
    assert result.timed_out is False


@pytest.mark.asyncio
async def test_zero_targets_skip_an_order() -> None:
    scraper = _scraper()

    result = await scraper.collect_from(_place_page(), PLACE_URL, {"recent": 2, "worst": 0, "best": 0})

    assert [phase.phase for phase in result.phase_results] == ["recent"]
    assert len(result.unique_reviews) == 2


@pytest.mark.asyncio
async def test_expired_deadline_keeps_partial_results() -> None:
    scraper = _scraper(total_timeout_s=0)

    result = await scraper.collect_from(_place_page(), PLACE_URL, {"recent": 2, "worst": 2, "best": 2})

    assert result.timed_out is True
    assert result.unique_reviews == []
    assert {phase.stopped_reason for phase in result.phase_results} == {"timeout"}


@pytest.mark.asyncio
async def test_navigation_failure_raises_navigation_error() -> None:
    page = _place_page()
    page.goto_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED")

    with pytest.raises(AnalysisError) as excinfo:
        await _scraper().collect_from(page, PLACE_URL)

    assert excinfo.value.category == "navigation"
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_consent_dialog_is_dismissed() -> None:
    consent = "button[aria-label*='accept all' i]"
    page = FakePage(counts={consent: 1})

    assert await _scraper().dismiss_consent(page) is True
    assert page.clicks == [(consent, 0)]


def test_unknown_sort_order_is_rejected() -> None:
    with pytest.raises(ValueError):
        GoogleMapsScraper(sort_orders=["recent", "oldest"])


def test_from_settings_accepts_overrides() -> None:
    scraper = GoogleMapsScraper.from_settings(headless=True, sort_orders=["best"], total_timeout_s=12)

    assert scraper._sort_orders == ("best",)
    assert scraper._total_timeout_s == 12


@pytest.mark.asyncio
async def test_reviews_panel_is_reopened_after_url_sorting() -> None:
    reviews_tab = "button[role='tab'][aria-label*='review' i]"
    container = "div.jftiEf[data-review-id]"
    page = _place_page()
    visible = list(page.cards)
    page.counts[reviews_tab] = 1

    def close_panel(current: FakePage, url: str) -> None:
        current.cards = []
        current.counts[container] = 0

    def open_panel(current: FakePage, index: int) -> None:
        current.cards = list(visible)
        current.counts[container] = len(visible)

    page.on_goto = close_panel
    page.on_click[reviews_tab] = open_panel

    result = await _scraper(sort_orders=["recent"]).collect_from(page, PLACE_URL, {"recent": 3})

    assert any("sort=newest" in url for url in page.visited)
    assert page.visited[-1] == PLACE_URL
    assert page.clicks.count((reviews_tab, 0)) >= len(page.visited)
    assert result.phase_results[0].reviews_collected == 3
    assert result.phase_results[0].stopped_reason == "target-reached"
    assert result.phase_results[0].navigation_method == "none"
    assert len(result.unique_reviews) == 3
