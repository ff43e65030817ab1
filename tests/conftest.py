import pytest
from playwright.sync_api import TimeoutError as PWTimeout
from loadboard.config import Settings
from loadboard.monitor import HealthMonitor
from loadboard.scrape import DETAIL_SELECTOR, ORIGIN_CELL, ROW_SELECTOR


class FakeElement:
    def __init__(self, text="", html=None, visible=True):
        self.text = text
        self.html = html if html is not None else text
        self.visible = visible

    def inner_text(self):
        return self.text

    def inner_html(self):
        return self.html

    def get_attribute(self, name):
        return None

    def is_visible(self):
        return self.visible

    def query_selector(self, selector):
        return None


class FakeRow:
    """A load row. ``detail=None`` means its detail surface never appears."""

    def __init__(self, page, cells, detail="<div></div>", fail_click=False):
        self.page = page
        self.cells = cells
        self.detail = detail
        self.fail_click = fail_click
        self.hovered = 0

    def query_selector(self, selector):
        if selector in self.cells:
            return FakeElement(self.cells[selector])
        return None

    def hover(self):
        self.hovered += 1

    def click(self):
        if self.fail_click:
            raise RuntimeError("element detached")
        if self.detail is not None:
            self.page.open_detail = self.detail


class FakeKeyboard:
    def __init__(self, page):
        self.page = page
        self.presses = []

    def press(self, key):
        self.presses.append(key)
        if key == "Escape":
            self.page.open_detail = None


class FakePage:
    def __init__(self, url="https://one.dat.com/search-loads-ow"):
        self.url = url
        self.rows = []
        self.open_detail = None
        self.keyboard = FakeKeyboard(self)
        self.goto_calls = []
        self.viewport_size = None
        self.alive = True

    def add_row(self, origin, destination="", rate="", company="", age="", **kwargs):
        cells = {
            '[data-test="load-origin-cell"]': origin,
            '[data-test="load-destination-cell"]': destination,
            '[data-test="load-rate-cell"]': rate,
            '[data-test="load-company-cell"]': company,
            '[data-test="load-age-cell"]': age,
        }
        row = FakeRow(self, cells, **kwargs)
        self.rows.append(row)
        return row

    def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        self.url = url

    def evaluate(self, script):
        if not self.alive:
            raise RuntimeError("Target closed")
        return "complete"

    def wait_for_timeout(self, ms):
        pass

    def wait_for_selector(self, selector, state=None, timeout=None):
        if selector == DETAIL_SELECTOR:
            if self.open_detail is None:
                raise PWTimeout(f"Timeout {timeout}ms exceeded")
            return FakeElement(html=self.open_detail)
        if selector == ORIGIN_CELL and self.rows:
            return FakeElement()
        raise PWTimeout(f"Timeout {timeout}ms exceeded")

    def query_selector(self, selector):
        if selector == DETAIL_SELECTOR and self.open_detail is not None:
            return FakeElement(html=self.open_detail)
        return None

    def query_selector_all(self, selector):
        if selector == ROW_SELECTOR:
            return list(self.rows)
        return []


@pytest.fixture
def settings(tmp_path):
    return Settings(
        output_dir=tmp_path,
        delay_scale=0,
        session_retry_delay=0.5,
        max_entries=25,
        max_consecutive_failures=3,
        shutdown_grace=2,
    )


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def monitor(settings):
    return HealthMonitor.from_settings(settings)


@pytest.fixture
def detail_html():
    return """
<div class="modal-content">
  <div class="data-label">Reference ID</div>
  <div class="data-item">B211849</div>
  <div class="contact">Call (555) 123-4567 or ops@broker.example</div>
</div>
"""
