from __future__ import annotations

import json

import httpx
import pytest

from webaccess.tools import crawl4ai_client, flaresolverr, http_fetcher

PAGE = "<html><head><title>Acme</title></head><body><p>" + "Acme builds rockets. " * 10 + "</p></body></html>"


def _html_response(body: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=body, headers={"content-type": "text/html; charset=utf-8"})


@pytest.mark.asyncio
async def test_http_fetch_returns_html_and_text():
    transport = httpx.MockTransport(lambda request: _html_response(PAGE))
    result = await http_fetcher.fetch("https://acme.io/", transport=transport)
    assert result.success
    assert result.status_code == 200
    assert "Acme builds rockets." in result.text
    assert result.html == PAGE


@pytest.mark.asyncio
async def test_http_fetch_sends_browser_user_agent():
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers["user-agent"]
        return _html_response(PAGE)

    await http_fetcher.fetch("https://acme.io/", user_agent="TestAgent/1.0", transport=httpx.MockTransport(handler))
    assert seen["ua"] == "TestAgent/1.0"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (403, "Access forbidden (403)"),
        (429, "Rate limited (429)"),
        (404, "Page not found (404)"),
        (500, "HTTP error: 500"),
    ],
)
async def test_http_fetch_maps_status_codes(status, expected):
    transport = httpx.MockTransport(lambda request: _html_response("nope", status))
    result = await http_fetcher.fetch("https://acme.io/", transport=transport)
    assert not result.success
    assert result.status_code == status
    assert result.error.startswith(expected)


@pytest.mark.asyncio
async def test_http_fetch_rejects_non_html_and_empty_bodies():
    pdf = httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})
    )
    result = await http_fetcher.fetch("https://acme.io/doc.pdf", transport=pdf)
    assert not result.success
    assert "Non-HTML content type" in result.error

    empty = httpx.MockTransport(lambda request: _html_response("   "))
    result = await http_fetcher.fetch("https://acme.io/", transport=empty)
    assert result.error == "Empty response body"


@pytest.mark.asyncio
async def test_http_fetch_flags_bot_block_pages():
    challenge = "<html><body><h1>Just a moment...</h1><p>Checking your browser</p></body></html>"
    transport = httpx.MockTransport(lambda request: _html_response(challenge))
    result = await http_fetcher.fetch("https://acme.io/", transport=transport)
    assert not result.success
    assert "blocked" in result.error


@pytest.mark.asyncio
async def test_http_fetch_maps_transport_errors():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = await http_fetcher.fetch("https://acme.io/", timeout=3, transport=httpx.MockTransport(timeout))
    assert result.error == "Request timed out after 3s"

    def refused(request):
        raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

    result = await http_fetcher.fetch("https://acme.io/", transport=httpx.MockTransport(refused))
    assert result.error == "Connection refused by server"

    def dns(request):
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)

    result = await http_fetcher.fetch("https://acme.io/", transport=httpx.MockTransport(dns))
    assert result.error == "Domain not found - check the URL"


@pytest.mark.asyncio
async def test_download_asset_returns_bytes_and_filename():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"%PDF-1.4", headers={"content-type": "application/pdf"})
    )
    asset = await http_fetcher.download_asset("https://acme.io/files/Price%20List.pdf", transport=transport)
    assert asset is not None
    assert asset.filename == "Price List.pdf"
    assert asset.content_type == "application/pdf"
    assert asset.content == b"%PDF-1.4"


@pytest.mark.asyncio
async def test_download_asset_refuses_private_hosts_and_errors():
    assert await http_fetcher.download_asset("http://127.0.0.1/secret.pdf") is None

    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    assert await http_fetcher.download_asset("https://acme.io/missing.pdf", transport=transport) is None


def _redirecting_transport(target: str, seen: list[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if request.url.host == "acme.io":
            return httpx.Response(302, headers={"location": target})
        return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_fetch_refuses_redirect_to_metadata_host():
    seen: list[str] = []
    transport = _redirecting_transport("http://169.254.169.254/latest/meta-data", seen)

    result = await http_fetcher.fetch("https://acme.io/", transport=transport)

    assert not result.success
    assert result.error.startswith("Redirect blocked:")
    assert seen == ["https://acme.io/"]


@pytest.mark.asyncio
async def test_fetch_follows_redirect_to_public_host():
    seen: list[str] = []
    result = await http_fetcher.fetch("https://acme.io/", transport=_redirecting_transport("https://www.acme.io/", seen))

    assert result.success
    assert seen == ["https://acme.io/", "https://www.acme.io/"]


@pytest.mark.asyncio
async def test_download_asset_refuses_redirect_to_private_host():
    seen: list[str] = []
    transport = _redirecting_transport("http://10.0.0.5/internal.pdf", seen)

    assert await http_fetcher.download_asset("https://acme.io/files/a.pdf", transport=transport) is None
    assert seen == ["https://acme.io/files/a.pdf"]


def test_filename_from_url_falls_back_to_index():
    assert http_fetcher.filename_from_url("https://acme.io/", index=2) == "asset_3"


# --- FlareSolverr ---


@pytest.mark.asyncio
async def test_flaresolverr_fetch_posts_command_and_parses_solution():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(
            200,
            json={
                "status": "ok",
                "message": "Challenge solved!",
                "solution": {"url": "https://acme.io/", "status": 200, "response": PAGE, "cookies": []},
            },
        )

    result = await flaresolverr.fetch(
        "https://acme.io/",
        "http://solver:8191/v1",
        timeout=30,
        transport=httpx.MockTransport(handler),
    )
    assert captured == {"cmd": "request.get", "url": "https://acme.io/", "maxTimeout": 30000}
    assert result.success
    assert "Acme builds rockets." in result.text


@pytest.mark.asyncio
async def test_flaresolverr_fetch_error_status():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"status": "error", "message": "Cloudflare challenge failed"})
    )
    result = await flaresolverr.fetch("https://acme.io/", "http://solver:8191/v1", transport=transport)
    assert not result.success
    assert result.error == "FlareSolverr error: Cloudflare challenge failed"


@pytest.mark.asyncio
async def test_flaresolverr_fetch_empty_solution_and_bad_payload():
    empty = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"status": "ok", "solution": {"response": ""}})
    )
    result = await flaresolverr.fetch("https://acme.io/", "http://solver:8191/v1", transport=empty)
    assert result.error == "FlareSolverr returned empty response"

    garbage = httpx.MockTransport(lambda request: httpx.Response(200, json={"unexpected": True}))
    result = await flaresolverr.fetch("https://acme.io/", "http://solver:8191/v1", transport=garbage)
    assert not result.success
    assert "unexpected payload" in result.error


@pytest.mark.asyncio
async def test_flaresolverr_unreachable():
    def down(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await flaresolverr.fetch("https://acme.io/", "http://solver:8191/v1", transport=httpx.MockTransport(down))
    assert not result.success
    assert result.error.startswith("FlareSolverr error:")


# --- crawl4ai ---


def test_normalize_payload_shapes():
    record = {"url": "https://acme.io/about", "metadata": {"title": "About"}, "markdown": {"raw_markdown": "We are"}}
    assert crawl4ai_client.normalize_payload([record])[0].title == "About"
    assert crawl4ai_client.normalize_payload({"results": [record]})[0].snippet == "We are"
    assert crawl4ai_client.normalize_payload(record)[0].url == "https://acme.io/about"
    assert crawl4ai_client.normalize_payload({"status": "completed"}) == []
    assert crawl4ai_client.normalize_payload([{"title": "no url"}]) == []


def test_normalize_stream_line_skips_garbage():
    assert crawl4ai_client.normalize_stream_line("") == []
    assert crawl4ai_client.normalize_stream_line("{not json") == []
    pages = crawl4ai_client.normalize_stream_line('{"url": "https://acme.io/contact", "title": "Contact"}')
    assert pages[0].title == "Contact"


@pytest.mark.asyncio
async def test_crawl_reads_ndjson_stream_and_filters_to_site():
    lines = [
        {"url": "https://acme.io/contact", "title": "Contact"},
        {"url": "https://twitter.com/acme"},
        {"url": "https://acme.io/contact"},
        {"url": "https://shop.acme.io/products"},
        {"status": "completed"},
    ]
    body = "\n".join(json.dumps(line) for line in lines)
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text=body, headers={"content-type": "application/x-ndjson"})

    pages = await crawl4ai_client.crawl(
        "http://crawler:11235/",
        "https://acme.io/",
        10,
        transport=httpx.MockTransport(handler),
    )
    assert seen["path"] == "/crawl"
    assert seen["body"]["urls"] == ["https://acme.io/"]
    assert [page.url for page in pages] == ["https://acme.io/contact", "https://shop.acme.io/products"]


@pytest.mark.asyncio
async def test_crawl_reads_json_array_and_caps_pages():
    payload = [{"url": f"https://acme.io/p{i}"} for i in range(5)]
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json=payload))
    pages = await crawl4ai_client.crawl("http://crawler:11235", "https://acme.io/", 3, transport=transport)
    assert [page.url for page in pages] == ["https://acme.io/p0", "https://acme.io/p1", "https://acme.io/p2"]


@pytest.mark.asyncio
async def test_crawl_returns_empty_on_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    assert await crawl4ai_client.crawl("http://crawler:11235", "https://acme.io/", transport=transport) == []

    def down(request):
        raise httpx.ConnectError("refused", request=request)

    assert await crawl4ai_client.crawl("http://crawler:11235", "https://acme.io/", transport=httpx.MockTransport(down)) == []


@pytest.mark.asyncio
async def test_crawl_tolerates_bodies_that_are_not_utf8():
    garbage = httpx.MockTransport(lambda request: httpx.Response(200, content=b"\xff\xfe not json"))
    assert await crawl4ai_client.crawl("http://crawler:11235", "https://acme.io/", transport=garbage) == []

    mangled = httpx.MockTransport(lambda request: httpx.Response(200, content=b'{"url": "https://acme.io/\xff"}'))
    pages = await crawl4ai_client.crawl("http://crawler:11235", "https://acme.io/", transport=mangled)
    assert all(page.url.startswith("https://acme.io/") for page in pages)
