"""Playwright-based snapshots of client-rendered site pages."""

from playwright.async_api import async_playwright

from pageeditor.services.fetcher import MAX_CONTENT_SIZE, _validate_url

TIMEOUT_MS = 30_000  # 30 s in milliseconds

# Record what only a live layout knows on the elements the extractor reads:
# computed visibility plus rendered box size, and image load state.
_ANNOTATE_SCRIPT = """
() => {
  const selector = 'h1, h2, h3, h4, h5, h6, p, ul, ol, a, img';
  document.querySelectorAll(selector).forEach((el) => {
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    let hidden = style.display === 'none'
      || style.visibility === 'hidden'
      || style.opacity === '0';
    for (let p = el.parentElement; p && !hidden; p = p.parentElement) {
      hidden = window.getComputedStyle(p).opacity === '0';
    }
    const visible = !hidden && rect.width > 0 && rect.height > 0;
    el.setAttribute('data-pe-visible', visible ? 'true' : 'false');
    if (el.tagName === 'IMG') {
      const loaded = el.complete && el.naturalWidth !== 0;
      el.setAttribute('data-pe-loaded', loaded ? 'true' : 'false');
    }
  });
}
"""


async def render_page(url: str, *, wait_ms: int = 0) -> str:
    """Render *url* with headless Chromium and return the annotated HTML.

    Args:
        url: A page of the configured site.
        wait_ms: Milliseconds to wait after network idle so client-rendered
            content can settle (0 = no extra wait).

    Raises:
        ValueError: if the URL fails scheme / origin validation.
        RuntimeError: if the rendered HTML exceeds MAX_CONTENT_SIZE.
        playwright.async_api.Error: on browser/network errors.
    """
    _validate_url(url)

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(
            headless=True,
            args=[
                # Required when running as root inside a container.
                "--no-sandbox",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        context = await browser.new_context()
        page = await context.new_page()
        try:
            await page.goto(url, wait_until="networkidle", timeout=TIMEOUT_MS)

            if wait_ms > 0:
                await page.wait_for_timeout(wait_ms)

            await page.evaluate(_ANNOTATE_SCRIPT)
            html = await page.content()
        finally:
            await context.close()
            await browser.close()

    if len(html.encode()) > MAX_CONTENT_SIZE:
        raise RuntimeError("Rendered HTML exceeds the maximum allowed size.")

    return html
