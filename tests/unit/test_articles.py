"""
Article Fetch-and-Convert Tests

SSRF guard, HTML -> Markdown conversion and the httpx fetcher
(against httpx.MockTransport, no network).
"""

import httpx
import pytest

from services.articles import HttpArticleFetcher, html_to_markdown, validate_fetch_url
from services.base import FetchBlockedError, FetchFailedError

WECHAT_PAGE = """
<html>
  <head>
    <title>Fallback title</title>
    <meta property="og:title" content="OG title">
    <script>var tracking = 1;</script>
  </head>
  <body>
    <nav>menu</nav>
    <h1 id="activity-name">  Weekly Notes  </h1>
    <div id="js_content">
      <h2>Section</h2>
      <p>Hello <strong>bold</strong> and <em>soft</em> <a href="https://example.com">link</a>.</p>
      <ul><li>one</li><li>two</li></ul>
      <img data-src="https://img.example/a.png" alt="pic">
      <pre>code line</pre>
      <blockquote><p>quoted</p></blockquote>
    </div>
    <footer>footer</footer>
  </body>
</html>
"""


def _fetcher(handler, **kwargs) -> HttpArticleFetcher:
    transport = httpx.MockTransport(handler)
    return HttpArticleFetcher(
        client_factory=lambda **kw: httpx.AsyncClient(transport=transport, **kw),
        base_delay_ms=1,
        **kwargs,
    )


class TestSSRFGuard:
    @pytest.mark.parametrize("url", ["https://mp.weixin.qq.com/s/abc", "http://93.184.216.34/page"])
    def test_public_urls_allowed(self, url):
        assert validate_fetch_url(url) == url

    @pytest.mark.parametrize("url", ["http://1.example/", "http://0x1f.example/", "http://123abc/"])
    def test_hostnames_that_look_numeric_allowed(self, url):
        assert validate_fetch_url(url) == url

    @pytest.mark.parametrize(
        "url,reason",
        [
            ("ftp://example.com/file", "invalid_protocol"),
            ("file:///etc/passwd", "invalid_protocol"),
            ("not a url", "invalid_url"),
            ("http://localhost:8080/", "localhost_blocked"),
            ("http://api.localhost/", "localhost_blocked"),
            ("http://127.0.0.1/", "private_ip_blocked"),
            ("http://10.1.2.3/", "private_ip_blocked"),
            ("http://192.168.0.10/", "private_ip_blocked"),
            ("http://172.16.5.5/", "private_ip_blocked"),
            ("http://169.254.169.254/latest/meta-data", "private_ip_blocked"),
            ("http://0.0.0.0/", "private_ip_blocked"),
            ("http://[::1]/", "private_ip_blocked"),
            ("http://[fd00::1]/", "private_ip_blocked"),
            ("http://2130706433/", "private_ip_blocked"),
            ("http://0x7f000001/", "private_ip_blocked"),
            ("http://127.1/", "private_ip_blocked"),
            ("http://0177.0.0.1/", "private_ip_blocked"),
            ("http://0xa.0.0.1/", "private_ip_blocked"),
            ("http://[::ffff:127.0.0.1]/", "private_ip_blocked"),
        ],
    )
    def test_blocked_urls(self, url, reason):
        with pytest.raises(FetchBlockedError) as exc_info:
            validate_fetch_url(url)
        assert exc_info.value.reason == reason
        assert exc_info.value.code == f"fetch_blocked:{reason}"


class TestHtmlToMarkdown:
    def test_wechat_article(self):
        article = html_to_markdown(WECHAT_PAGE)
        assert article.resolved_title == "Weekly Notes"
        md = article.markdown
        assert "## Section" in md
        assert "**bold**" in md
        assert "*soft*" in md
        assert "[link](https://example.com)" in md
        assert "- one" in md and "- two" in md
        assert "![pic](https://img.example/a.png)" in md
        assert "```\ncode line\n```" in md
        assert "> quoted" in md
        assert "menu" not in md
        assert "footer" not in md
        assert "tracking" not in md

    def test_title_hint_wins(self):
        assert html_to_markdown(WECHAT_PAGE, "From message").resolved_title == "From message"

    def test_title_fallbacks(self):
        assert html_to_markdown("<html><head><title>T</title></head><body>x</body></html>").resolved_title == "T"
        assert html_to_markdown("<html><body><h1>H</h1></body></html>").resolved_title == "H"
        assert html_to_markdown("<html><body><p>x</p></body></html>").resolved_title == "Untitled"

    def test_article_tag_used_without_js_content(self):
        html = "<html><body><div>aside text</div><article><p>main</p></article></body></html>"
        assert html_to_markdown(html).markdown == "main"

    def test_blank_lines_collapsed(self):
        md = html_to_markdown("<body><p>a</p><p></p><p></p><p>b</p></body>").markdown
        assert md == "a\n\nb"

    def test_ordered_list_numbered(self):
        md = html_to_markdown("<body><ol><li>first</li><li>second</li></ol></body>").markdown
        assert "1. first" in md
        assert "2. second" in md

    def test_table_rendered(self):
        html = (
            "<body><table>"
            "<tr><th>a</th><th>b</th></tr>"
            "<tr><td>1</td><td>2</td></tr>"
            "</table></body>"
        )
        md = html_to_markdown(html).markdown
        assert "| a | b |" in md
        assert "| 1 | 2 |" in md

    def test_code_language_kept(self):
        html = '<body><pre><code class="language-python">print(1)</code></pre></body>'
        assert "```python\nprint(1)\n```" in html_to_markdown(html).markdown

    def test_src_wins_over_data_src(self):
        html = '<body><p><img src="https://a.example/x.png" data-src="https://b.example/y.png" alt="x"></p></body>'
        assert "![x](https://a.example/x.png)" in html_to_markdown(html).markdown


class TestHttpArticleFetcher:
    @pytest.mark.asyncio
    async def test_fetch_and_convert(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=WECHAT_PAGE, headers={"content-type": "text/html"})

        article = await _fetcher(handler).fetch("https://mp.weixin.qq.com/s/abc")
        assert article.resolved_title == "Weekly Notes"
        assert "user-agent" in seen[0].headers

    @pytest.mark.asyncio
    async def test_blocked_before_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="x")

        with pytest.raises(FetchBlockedError):
            await _fetcher(handler).fetch("http://127.0.0.1/admin")
        assert calls == []

    @pytest.mark.asyncio
    async def test_redirect_to_private_address_blocked(self):
        def handler(request):
            if request.url.host == "public.example":
                return httpx.Response(302, headers={"location": "http://10.0.0.1/secret"})
            return httpx.Response(200, text="secret")

        with pytest.raises(FetchBlockedError) as exc_info:
            await _fetcher(handler).fetch("https://public.example/start")
        assert exc_info.value.reason == "private_ip_blocked"

    @pytest.mark.asyncio
    async def test_timeout_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, text="<body><p>ok</p></body>")

        article = await _fetcher(handler, retries=2).fetch("https://example.com/a")
        assert article.markdown == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_5xx_retried_once(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(503)
            return httpx.Response(200, text="<body><p>ok</p></body>")

        article = await _fetcher(handler).fetch("https://example.com/a")
        assert article.markdown == "ok"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_4xx_fails(self):
        def handler(request):
            return httpx.Response(404)

        with pytest.raises(FetchFailedError) as exc_info:
            await _fetcher(handler).fetch("https://example.com/missing")
        assert exc_info.value.code == "fetch_failed:404"
