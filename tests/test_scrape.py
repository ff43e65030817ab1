from dataclasses import replace
import pytest
from loadboard.parsing import synthesize_identifier
from loadboard.scrape import ExtractionEngine, ExtractionError, read_summary
from loadboard.elements import PageElement
from loadboard.utils import CancelToken, RunCancelled
from conftest import FakePage


@pytest.fixture
def engine(settings):
    return ExtractionEngine(settings)


def fill_board(page, detail_html):
    page.add_row("San Leandro, CALoveland, CO", rate="$2,700$2.17*/mi", company="ACME", age="5m", detail=detail_html)
    page.add_row("Reno, NV", "Boise, ID", rate="$1,500", company="Beta", age="12m", detail=None)
    page.add_row("Fresno, CA", "Provo, UT", rate="$3.05/mi", company="Gamma", age="1h")


def test_read_summary(page):
    row = page.add_row("Reno, NV", "Boise, ID", rate="$1,500", company="Beta", age="12m")
    summary = read_summary(PageElement(row))
    assert (summary.origin, summary.destination, summary.rate, summary.company, summary.age) == (
        "Reno, NV", "Boise, ID", "$1,500", "Beta", "12m")


def test_missing_detail_surface_does_not_stop_batch(engine, page, detail_html):
    fill_board(page, detail_html)
    records = engine.extract_batch(page, engine.collect_rows(page))

    assert len(records) == 3
    first, second, third = records
    assert (first.origin, first.destination) == ("San Leandro, CA", "Loveland, CO")
    assert (first.rate_total, first.rate_per_mile) == (2700, 2.17)
    assert first.identifier == "B211849"
    assert second.identifier == synthesize_identifier("Reno, NV", "Boise, ID", "Beta", 1500, None)
    assert (third.rate_total, third.rate_per_mile) == (None, 3.05)
    assert third.identifier.startswith("AUTO_")
    assert page.open_detail is None


def test_contacts_are_off_by_default(engine, page, detail_html):
    fill_board(page, detail_html)
    records = engine.extract_batch(page, engine.collect_rows(page))
    assert all(r.contact is None for r in records)


def test_contacts_when_enabled(settings, page, detail_html):
    engine = ExtractionEngine(replace(settings, extract_contacts=True))
    fill_board(page, detail_html)
    records = engine.extract_batch(page, engine.collect_rows(page))
    assert records[0].contact == "(555) 123-4567"
    assert records[1].contact is None


def test_failing_item_is_skipped_and_surface_closed(engine, page, detail_html):
    page.add_row("Reno, NV", "Boise, ID", rate="$1,500", company="Beta", fail_click=True)
    page.add_row("Fresno, CA", "Provo, UT", rate="$900", company="Gamma", detail=detail_html)
    records = engine.extract_batch(page, engine.collect_rows(page))
    assert [r.origin for r in records] == ["Fresno, CA"]
    assert page.keyboard.presses.count("Escape") >= 2


class StuckKeyboard:
    def __init__(self):
        self.presses = []

    def press(self, key):
        self.presses.append(key)


def test_detail_that_will_not_close_is_never_reused(settings, page, detail_html):
    engine = ExtractionEngine(replace(settings, extract_contacts=True))
    page.keyboard = StuckKeyboard()
    page.add_row("Reno, NV", "Boise, ID", rate="$1,500", company="Beta", detail=detail_html)
    page.add_row("Fresno, CA", "Provo, UT", rate="$900", company="Gamma", detail=None)

    records = engine.extract_batch(page, engine.collect_rows(page))

    assert records == []
    assert page.rows[1].hovered == 0


def test_close_detail_raises_when_surface_stays(engine, page, detail_html):
    page.keyboard = StuckKeyboard()
    page.open_detail = detail_html
    with pytest.raises(ExtractionError, match="still open"):
        engine.close_detail(page)
    assert page.keyboard.presses == ["Escape", "Escape"]


def test_destination_only_row_is_dropped(engine, page):
    page.add_row("", "Reno, NV", rate="$1,500", company="Beta")
    assert engine.extract_batch(page, engine.collect_rows(page)) == []


def test_row_without_origin_is_dropped(engine, page):
    row = page.add_row("", "", rate="-")
    page.add_row("Fresno, CA", "Provo, UT")
    records = engine.extract_batch(page, engine.collect_rows(page))
    assert len(records) == 1
    assert row.hovered == 1


def test_cancelled_run_stops_and_closes_detail(engine, page, detail_html):
    fill_board(page, detail_html)
    token = CancelToken()
    token.cancel()
    with pytest.raises(RunCancelled):
        engine.extract_batch(page, engine.collect_rows(page), token)
    assert "Escape" in page.keyboard.presses


def test_run_timeout_abandons_item_loop(engine, page, detail_html):
    fill_board(page, detail_html)
    now = [0.0]
    token = CancelToken(timeout=5, clock=lambda: now[0])

    rows = engine.collect_rows(page)
    # first item runs, then the deadline passes
    real_item = engine.extract_item

    def slow_item(p, row, index):
        record = real_item(p, row, index)
        now[0] += 10
        return record

    engine.extract_item = slow_item
    with pytest.raises(RunCancelled, match="timeout"):
        engine.extract_batch(page, rows, token)
    assert page.open_detail is None


def test_max_entries_caps_rows(settings, page):
    engine = ExtractionEngine(replace(settings, max_entries=2))
    for n in range(5):
        page.add_row(f"City {n}, CA", "Provo, UT")
    assert len(engine.collect_rows(page)) == 2


def test_open_listings_navigates_when_elsewhere(engine, page):
    page.url = "about:blank"
    page.add_row("Fresno, CA", "Provo, UT")
    engine.open_listings(page)
    assert page.goto_calls == [engine.settings.listings_url]


def test_open_listings_stays_on_current_board(engine, page):
    page.add_row("Fresno, CA", "Provo, UT")
    engine.open_listings(page)
    assert page.goto_calls == []


class GrowingPage(FakePage):
    def __init__(self, pending):
        super().__init__()
        self.pending = pending

    def evaluate(self, script):
        if "scrollTo" in script and self.pending:
            self.add_row(*self.pending.pop(0))
        return super().evaluate(script)


def test_pagination_scrolls_for_more_rows(settings):
    page = GrowingPage([("Reno, NV", "Boise, ID"), ("Fresno, CA", "Provo, UT")])
    page.add_row("Austin, TX", "Tulsa, OK")
    engine = ExtractionEngine(replace(settings, enable_pagination=True, max_entries=3))
    assert len(engine.collect_rows(page)) == 3
    assert page.pending == []
