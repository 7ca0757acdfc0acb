"""Tests for page content extraction.

The Playwright browser and the HTTP fetcher are replaced with mocks so the
tests run without a browser or network access.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from pageeditor.models.extract_request import ExtractOptions
from pageeditor.services.extractor import (
    collect_records,
    extract_all_pages,
    extract_current_page,
    fetch_records,
    is_excluded,
    specialty_for,
)
from pageeditor.services.fetcher import page_url_for
from pageeditor.services.gateway import InMemoryGateway
from pageeditor.services.procedures import LOCAL_FUNCTIONS

_EYECARE_HTML = """
<!DOCTYPE html>
<html>
<head><title>Eye Care</title><style>h1 { color: navy; }</style></head>
<body>
  <nav><a href="/">Home</a><a href="/eyecare">Eye Care</a></nav>
  <main>
    <h1>Eye Care</h1>
    <h2>Our Services</h2>
    <h2 style="display: none">Hidden Offer</h2>
    <h3>Book a Visit</h3>
    <img src="/images/eye-exam.jpg" alt="Eye exam">
    <img src="/images/tracking.gif" alt="" width="0" height="0">
  </main>
  <script>document.title = "x";</script>
</body>
</html>
"""

_FULL_HTML = """
<html>
<body>
  <header><a href="/contact">Contact</a></header>
  <main>
    <h2>Treatments</h2>
    <p>We offer   comprehensive
       eye exams.</p>
    <p style="opacity: 0">Invisible text</p>
    <div hidden><p>Hidden block</p></div>
    <ul>
      <li>Glaucoma screening</li>
      <li>Cataract surgery</li>
    </ul>
    <a href="/appointment">Book now</a>
    <img src="https://cdn.example.com/a.png" alt="Clinic">
    <img src="/pending.png" alt="Still loading" data-pe-loaded="false">
  </main>
  <footer><a href="/privacy">Privacy</a></footer>
</body>
</html>
"""

_OPTIONS = ExtractOptions(wait_time=0)


def _gateway():
    return InMemoryGateway(functions=LOCAL_FUNCTIONS)


class TestCollectRecords:
    def test_eyecare_headings_and_image(self):
        records = collect_records(_EYECARE_HTML, "/eyecare", _OPTIONS)

        assert [r.section for r in records] == ["heading", "heading", "heading", "image"]
        assert [r.content for r in records[:3]] == ["Eye Care", "Our Services", "Book a Visit"]
        assert records[0].title == "Heading Level 1"
        assert records[2].title == "Heading Level 3"
        assert [r.name for r in records] == ["heading_0", "heading_1", "heading_2", "image_3"]
        assert [r.order_index for r in records] == [0, 1, 2, 3]
        assert all(r.specialty == "eyecare" for r in records)

        image = records[3]
        assert image.image_url == page_url_for("/images/eye-exam.jpg")
        assert image.title == "Eye exam"
        assert image.content == "Eye exam"

    def test_category_order_and_visibility(self):
        records = collect_records(_FULL_HTML, "/gynecology/visits", _OPTIONS)
        sections = [r.section for r in records]

        assert sections == ["heading", "text", "list", "link", "image"]
        assert records[1].content == "We offer comprehensive eye exams."
        assert records[2].content == "Glaucoma screening\nCataract surgery"
        assert "Invisible text" not in [r.content for r in records]
        assert "Hidden block" not in [r.content for r in records]
        assert all(r.specialty == "gynecology" for r in records)

    def test_chrome_links_skipped(self):
        records = collect_records(_FULL_HTML, "/", _OPTIONS)
        links = [r for r in records if r.section == "link"]
        assert [link.content for link in links] == ["Book now"]
        assert links[0].image_url == page_url_for("/appointment")

    def test_unloaded_images_skipped(self):
        records = collect_records(_FULL_HTML, "/", _OPTIONS)
        images = [r for r in records if r.section == "image"]
        assert [i.image_url for i in images] == ["https://cdn.example.com/a.png"]

    def test_options_disable_categories(self):
        options = ExtractOptions(wait_time=0, include_links=False, include_images=False, include_lists=False)
        records = collect_records(_FULL_HTML, "/", options)
        assert [r.section for r in records] == ["heading", "text"]

    def test_browser_annotation_overrides_styles(self):
        html = '<p data-pe-visible="false">Off screen</p><p style="display:none" data-pe-visible="true">Shown</p>'
        records = collect_records(html, "/", _OPTIONS)
        assert [r.content for r in records] == ["Shown"]

    def test_transparent_container_hides_http_content(self):
        options = ExtractOptions(wait_time=0, render_mode="http")
        records = collect_records('<div style="opacity:0"><p>Ghost text</p></div><p>Real text</p>', "/", options)
        assert [r.content for r in records] == ["Real text"]


class TestHelpers:
    def test_specialty(self):
        assert specialty_for("/eyecare/retina") == "eyecare"
        assert specialty_for("/gynecology") == "gynecology"
        assert specialty_for("/about") == "general"
        assert specialty_for("/") == "general"

    def test_exclusion_is_substring_match(self):
        assert is_excluded("/admin/editor", ["admin", "appointment"])
        assert is_excluded("/eyecare/appointment", ["admin", "appointment"])
        assert not is_excluded("/eyecare", ["admin", "appointment"])
        assert not is_excluded("/eyecare", [""])


class TestExtractCurrentPage:
    def test_stores_records(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value=_EYECARE_HTML)) as render:
            assert asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS)) is True
            render.assert_awaited_once_with(page_url_for("/eyecare"), wait_ms=0)

        records = asyncio.run(fetch_records("/eyecare", gateway))
        assert len(records) == 4
        assert all(r.page == "/eyecare" and r.id for r in records)

    def test_rerun_replaces_instead_of_appending(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value=_EYECARE_HTML)):
            asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS))
            asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS))

        assert len(asyncio.run(fetch_records("/eyecare", gateway))) == 4

    def test_excluded_page_makes_no_calls(self):
        gateway = MagicMock()
        gateway.rpc = AsyncMock()
        gateway.select = AsyncMock()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock()) as render:
            assert asyncio.run(extract_current_page("/admin/page-editor", gateway, _OPTIONS)) is False
            render.assert_not_awaited()
        gateway.rpc.assert_not_called()
        gateway.select.assert_not_called()

    def test_render_failure_keeps_previous_records(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value=_EYECARE_HTML)):
            asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS))
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(side_effect=RuntimeError("crashed"))):
            assert asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS)) is False

        assert len(asyncio.run(fetch_records("/eyecare", gateway))) == 4

    def test_empty_page_clears_records(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value=_EYECARE_HTML)):
            asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS))
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value="<html><body></body></html>")):
            assert asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS)) is False

        assert asyncio.run(fetch_records("/eyecare", gateway)) == []

    def test_http_mode_uses_fetcher(self):
        gateway = _gateway()
        options = ExtractOptions(wait_time=0, render_mode="http")
        with patch("pageeditor.services.extractor.fetch_url", new=AsyncMock(return_value=_FULL_HTML)) as fetch, \
                patch("pageeditor.services.extractor.render_page", new=AsyncMock()) as render:
            assert asyncio.run(extract_current_page("/", gateway, options)) is True
            fetch.assert_awaited_once_with(page_url_for("/"))
            render.assert_not_awaited()

    def test_refused_url_reported_as_false(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(side_effect=ValueError("outside site"))):
            assert asyncio.run(extract_current_page("/eyecare", gateway, _OPTIONS)) is False

    def test_extract_all_pages(self):
        gateway = _gateway()
        with patch("pageeditor.services.extractor.render_page", new=AsyncMock(return_value=_EYECARE_HTML)):
            results = asyncio.run(extract_all_pages(["/eyecare", "/admin", "/eyecare"], gateway, _OPTIONS))
        assert results == {"/eyecare": True, "/admin": False}
