# loadboard/scrape.py
"""Reads load rows off the board, one item at a time.

Per item: hover, read the summary cells, click to open the detail surface,
read the detail markup, close it again. A failing item is logged and skipped;
it never stops the batch.
"""
import random
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse
from playwright.sync_api import TimeoutError as PWTimeout
from .elements import MarkupElement, PageElement
from .parsing import (
    Match,
    find_contact,
    find_identifier,
    normalize_value,
    parse_rate,
    split_locations,
    synthesize_identifier,
)
from .schemas import ListingRecord, utcnow
from .utils import RunCancelled, human_mouse_move, human_pause, logger, retry

ROW_SELECTOR = ".row-container.ng-star-inserted"
FALLBACK_ROW_SELECTOR = ".row-container"
ORIGIN_CELL = '[data-test="load-origin-cell"]'
DESTINATION_CELL = '[data-test="load-destination-cell"]'
AGE_CELL = '[data-test="load-age-cell"]'
RATE_CELL = '[data-test="load-rate-cell"]'
COMPANY_CELLS = (
    '[data-test="load-company-cell"]',
    ".cell-company .company-prefer-or-blocked",
    ".cell-company",
)
DETAIL_SELECTORS = (
    ".modal-content",
    ".load-details",
    ".detail-panel",
    '[role="dialog"]',
    ".popup-content",
    ".overlay-content",
)
LOAD_MORE_SELECTORS = (
    '[data-test*="load-more"]',
    '[data-test*="next-page"]',
    'button:has-text("Load More")',
    'button:has-text("Show More")',
    ".pagination-next",
    ".load-more-button",
)
DETAIL_SELECTOR = ", ".join(DETAIL_SELECTORS)


class ExtractionError(Exception):
    pass


@dataclass(frozen=True)
class Summary:
    age: str = ""
    rate: str = ""
    origin: str = ""
    destination: str = ""
    company: str = ""


@dataclass(frozen=True)
class DetailFields:
    identifier: Optional[Match] = None
    contact: Optional[Match] = None
    available: bool = True

    @classmethod
    def unavailable(cls):
        return cls(available=False)


def read_summary(view) -> Summary:
    company = ""
    for selector in COMPANY_CELLS:
        if view.exists(selector):
            company = view.get_text(selector)
            break
    return Summary(
        age=view.get_text(AGE_CELL),
        rate=view.get_text(RATE_CELL),
        origin=view.get_text(ORIGIN_CELL),
        destination=view.get_text(DESTINATION_CELL),
        company=company,
    )


class ExtractionEngine:
    def __init__(self, settings):
        self.settings = settings

    def _pause(self, page, low_ms, high_ms):
        human_pause(page, low_ms, high_ms, self.settings.delay_scale)

    def _on_listings(self, page) -> bool:
        path = urlparse(self.settings.listings_url).path.strip("/")
        return bool(path) and path in (page.url or "")

    def open_listings(self, page):
        if self._on_listings(page):
            try:
                page.wait_for_selector(ORIGIN_CELL, timeout=5000)
                return
            except PWTimeout:
                logger.info("No load rows on current page, reloading listings")

        @retry(PWTimeout, tries=2, delay=2, backoff=2)
        def goto():
            page.goto(self.settings.listings_url, wait_until="networkidle", timeout=self.settings.nav_timeout_ms)

        logger.info("Navigating to %s", self.settings.listings_url)
        goto()
        self._pause(page, 1000, 2000)
        page.wait_for_selector(ORIGIN_CELL, timeout=self.settings.nav_timeout_ms)

    def collect_rows(self, page) -> list:
        rows = page.query_selector_all(ROW_SELECTOR)
        if not rows:
            rows = [r for r in page.query_selector_all(FALLBACK_ROW_SELECTOR) if r.query_selector(ORIGIN_CELL)]
        if self.settings.enable_pagination and len(rows) < self.settings.max_entries:
            rows = self._load_more(page, rows)
        logger.info("Found %d load rows, processing %d", len(rows), min(len(rows), self.settings.max_entries))
        return rows[: self.settings.max_entries]

    def _load_more(self, page, rows):
        stagnant_rounds = 0
        attempts = 0
        while len(rows) < self.settings.max_entries and attempts < self.settings.scroll_attempts and stagnant_rounds < 2:
            page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
            self._pause(page, 2000, 4000)
            more = page.query_selector_all(ROW_SELECTOR) or rows
            stagnant_rounds = stagnant_rounds + 1 if len(more) <= len(rows) else 0
            rows = more
            attempts += 1

        if len(rows) >= self.settings.max_entries:
            return rows
        for selector in LOAD_MORE_SELECTORS:
            try:
                button = page.query_selector(selector)
                if button and button.is_visible():
                    logger.info("Clicking load-more control %s", selector)
                    button.click()
                    self._pause(page, 2000, 4000)
                    return page.query_selector_all(ROW_SELECTOR) or rows
            except Exception as e:
                logger.debug("Load-more selector %s failed: %s", selector, e)
        return rows

    def read_detail(self, page) -> DetailFields:
        try:
            surface = page.wait_for_selector(DETAIL_SELECTOR, state="visible", timeout=self.settings.detail_timeout_ms)
        except PWTimeout:
            logger.debug("Detail surface did not appear within %d ms", self.settings.detail_timeout_ms)
            return DetailFields.unavailable()
        if surface is None:
            return DetailFields.unavailable()
        markup = MarkupElement.from_html(surface.inner_html())
        contact = find_contact(markup) if self.settings.extract_contacts else None
        return DetailFields(identifier=find_identifier(markup), contact=contact)

    def _detail_open(self, page) -> bool:
        try:
            surface = page.query_selector(DETAIL_SELECTOR)
            return surface is not None and surface.is_visible()
        except Exception:
            return False

    def close_detail(self, page):
        """Dismiss the detail surface and leave the row list in view.

        Raises ExtractionError when the surface is still open afterwards, so
        nothing reads it again as the next item's detail.
        """
        for _ in range(2):
            try:
                page.keyboard.press("Escape")
            except Exception as e:
                logger.debug("Escape failed: %s", e)
            self._pause(page, 200, 500)
            if not self._detail_open(page):
                return
        raise ExtractionError("detail surface still open after closing")

    def _force_close(self, page):
        try:
            self.close_detail(page)
        except ExtractionError as e:
            logger.warning("Could not restore the row list: %s", e)

    def extract_item(self, page, row, index) -> Optional[ListingRecord]:
        if self._detail_open(page):
            # a surface left over from an earlier item belongs to another load
            self.close_detail(page)
        row.hover()
        self._pause(page, 200, 600)
        summary = read_summary(PageElement(row))

        origin, destination = split_locations(summary.origin, summary.destination)
        if not origin:
            logger.info("Load %d has no origin, skipped", index + 1)
            return None
        if not destination:
            logger.warning("Load %d: could not split %r into origin and destination", index + 1, origin)
        rate = parse_rate(summary.rate)
        company = normalize_value(summary.company)

        row.click()
        try:
            detail = self.read_detail(page)
        finally:
            self.close_detail(page)

        if detail.identifier is not None:
            identifier = detail.identifier.value
        else:
            identifier = synthesize_identifier(origin, destination, company, rate.total, rate.per_mile)
        contact = detail.contact.value if self.settings.extract_contacts and detail.contact else None

        logger.debug(
            "Load %d: %s -> %s | %s | %s (id via %s)",
            index + 1, origin, destination, company, rate.total,
            detail.identifier.strategy if detail.identifier else "synthesized",
        )
        return ListingRecord(
            identifier=identifier,
            origin=origin,
            destination=destination,
            rate_total=rate.total,
            rate_per_mile=rate.per_mile,
            company=company,
            contact=contact,
            age_posted=normalize_value(summary.age),
            extracted_at=utcnow(),
        )

    def extract_batch(self, page, rows, token=None) -> List[ListingRecord]:
        records = []
        for idx, row in enumerate(rows):
            if token is not None and token.cancelled:
                self._force_close(page)
                raise RunCancelled(token.reason)
            try:
                record = self.extract_item(page, row, idx)
            except Exception as e:
                logger.warning("Failed to process load %d: %s", idx + 1, e)
                self._force_close(page)
                continue
            if record is not None:
                records.append(record)
            if random.random() < 0.1:
                human_mouse_move(page, self.settings.delay_scale)
        logger.info("Extracted %d of %d loads", len(records), len(rows))
        return records
