import pytest

from linkwatch.scans.classify import classify_status
from linkwatch.scans.enums import LinkClassification as C
from linkwatch.scans.extract import extract_links, looks_like_asset, normalize_link, origin_of, same_origin


@pytest.mark.parametrize(
    "url,status,expected",
    [
        ("https://a.test/", None, C.NO_RESPONSE),
        ("https://a.test/", 200, C.OK),
        ("https://a.test/", 301, C.OK),
        ("https://a.test/", 401, C.BLOCKED),
        ("https://a.test/", 403, C.BLOCKED),
        ("https://a.test/", 429, C.BLOCKED),
        ("https://a.test/", 404, C.BROKEN),
        ("https://a.test/", 405, C.BROKEN),
        ("https://a.test/", 500, C.BROKEN),
        ("https://docs.google.com/d/1", 405, C.BLOCKED),
        ("https://lh3.googleusercontent.com/x", 400, C.BLOCKED),
        ("https://docs.google.com/d/1", 404, C.BROKEN),
    ],
)
def test_classify_status(url, status, expected):
    assert classify_status(url, status) == expected


class TestExtract:
    def test_anchor_hrefs_in_document_order(self):
        html = """
        <html><body>
          <a href="/b">b</a>
          <a>no href</a>
          <link href="/style.css">
          <a href="/a">a</a>
          <a href="/b">again</a>
        </body></html>
        """
        assert extract_links(html) == ["/b", "/a"]

    def test_empty_document(self):
        assert extract_links("") == []

    @pytest.mark.parametrize(
        "href,expected",
        [
            ("/a", "https://site.test/a"),
            ("a?x=1", "https://site.test/docs/a?x=1"),
            ("../up", "https://site.test/up"),
            ("https://ext.test/p#frag", "https://ext.test/p"),
            ("//cdn.test/lib", "https://cdn.test/lib"),
            ("#top", None),
            ("", None),
            ("mailto:hi@site.test", None),
            ("tel:+100", None),
            ("javascript:void(0)", None),
            ("ftp://files.test/x", None),
            ("HTTPS://SITE.Test/Page", "https://site.test/Page"),
            ("https://site.test", "https://site.test/"),
            ("https://site.test:443/a", "https://site.test/a"),
            ("http://site.test:80", "http://site.test/"),
            ("https://site.test:8443/a", "https://site.test:8443/a"),
            ("https://site.test:99999/a", None),
        ],
    )
    def test_normalize_link(self, href, expected):
        assert normalize_link(href, "https://site.test/docs/index.html") == expected

    def test_same_origin(self):
        origin = origin_of("https://site.test/")
        assert same_origin("https://SITE.test/about", origin)
        assert not same_origin("http://site.test/about", origin)
        assert not same_origin("https://blog.site.test/", origin)

    def test_assets(self):
        assert looks_like_asset("https://site.test/img/logo.PNG")
        assert looks_like_asset("https://site.test/report.pdf?dl=1")
        assert not looks_like_asset("https://site.test/pricing")
