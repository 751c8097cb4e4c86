"""
Unit tests for index.html asset rewriting and metadata annotation.
"""

import json

import pytest

from storehub_storage.rewriter import (
    AssetResolver,
    annotate_index_html,
    ensure_html_doctype,
    rewrite_index_file,
    rewrite_index_html,
)


@pytest.fixture
def dist(tmp_path, write_files):
    """Create a typical bundler output directory."""
    return write_files(
        tmp_path / "dist",
        {
            "index.html": "<html><head></head><body></body></html>",
            "assets/index-3f2a.js": "console.log(1)",
            "assets/index-9c1d.css": "body{}",
            "assets/img/logo.png": b"\x89PNG",
            "favicon.ico": b"\x00",
            "nested/page.html": "<p>nested</p>",
        },
    )


class TestAssetResolver:
    """Test suite for single-value resolution."""

    def test_absolute_assets_path(self, dist):
        """Test that /assets/... becomes a relative assets/ path."""
        assert AssetResolver(dist).rewrite("/assets/index-3f2a.js") == (
            "assets/index-3f2a.js"
        )

    def test_nested_assets_path(self, dist):
        assert AssetResolver(dist).rewrite("/assets/img/logo.png") == (
            "assets/img/logo.png"
        )

    def test_assets_segment_after_base_path(self, dist):
        """Test that a deployment base path before assets/ is dropped."""
        assert AssetResolver(dist).rewrite("/my-app/assets/index-9c1d.css") == (
            "assets/index-9c1d.css"
        )

    def test_bare_file_name_found_in_assets(self, dist):
        assert AssetResolver(dist).rewrite("index-3f2a.js") == "assets/index-3f2a.js"

    def test_root_file(self, dist):
        """Test that a root-level file resolves to its relative path."""
        assert AssetResolver(dist).rewrite("/favicon.ico") == "favicon.ico"

    def test_nested_root_file(self, dist):
        assert AssetResolver(dist).rewrite("/nested/page.html") == "nested/page.html"

    def test_query_and_fragment_preserved(self, dist):
        assert AssetResolver(dist).rewrite("/assets/index-3f2a.js?v=2#x") == (
            "assets/index-3f2a.js?v=2#x"
        )

    def test_unresolvable_left_unchanged(self, dist):
        """Test that a reference to a missing file is left exactly as authored."""
        assert AssetResolver(dist).rewrite("/assets/missing.js") == "/assets/missing.js"
        assert AssetResolver(dist).rewrite("/about") == "/about"

    @pytest.mark.parametrize(
        "value",
        [
            "https://cdn.example.com/lib.js",
            "//cdn.example.com/lib.js",
            "data:image/png;base64,AAAA",
            "mailto:someone@example.com",
            "#top",
            "",
            "/",
        ],
    )
    def test_external_and_empty_unchanged(self, dist, value):
        assert AssetResolver(dist).rewrite(value) == value

    def test_external_url_into_shipped_assets(self, dist):
        """Test that a CDN URL is rewritten only when the asset ships in the bundle."""
        resolver = AssetResolver(dist)
        assert resolver.rewrite("https://cdn.example.com/app/assets/index-3f2a.js") == (
            "assets/index-3f2a.js"
        )
        assert resolver.rewrite("https://cdn.example.com/assets/other.js") == (
            "https://cdn.example.com/assets/other.js"
        )

    def test_escape_outside_dist_ignored(self, tmp_path, dist):
        (tmp_path / "secret.txt").write_text("x")
        assert AssetResolver(dist).rewrite("/../secret.txt") == "/../secret.txt"

    def test_srcset(self, dist):
        """Test that each srcset candidate is rewritten with its descriptor kept."""
        resolver = AssetResolver(dist)
        assert resolver.rewrite_srcset("/assets/img/logo.png 1x, /missing.png 2x") == (
            "assets/img/logo.png 1x, /missing.png 2x"
        )
        assert resolver.rewrite_srcset("/a.png 1x,/b.png 2x") == "/a.png 1x,/b.png 2x"


class TestRewriteIndexHtml:
    """Test suite for whole-document rewriting."""

    def test_rewrites_script_link_and_img(self, dist):
        html = (
            b"<!DOCTYPE html><html><head>"
            b'<script type="module" crossorigin src="/assets/index-3f2a.js"></script>'
            b'<link rel="stylesheet" href="/assets/index-9c1d.css">'
            b'<link rel="icon" href="/favicon.ico">'
            b"</head><body>"
            b'<img src="/assets/img/logo.png" alt="logo">'
            b'<a href="https://example.com/">home</a>'
            b"</body></html>"
        )

        result, changed = rewrite_index_html(html, dist)
        text = result.decode("utf-8")

        assert changed
        assert 'src="assets/index-3f2a.js"' in text
        assert 'href="assets/index-9c1d.css"' in text
        assert 'href="favicon.ico"' in text
        assert 'src="assets/img/logo.png"' in text
        assert 'href="https://example.com/"' in text
        assert 'rel="stylesheet"' in text
        assert text.lower().startswith("<!doctype html>")

    def test_unchanged_document_returned_verbatim(self, dist):
        html = b'<html><head><script src="https://cdn.x/y.js"></script></head></html>'

        result, changed = rewrite_index_html(html, dist)

        assert not changed
        assert result is html

    def test_doctype_added_when_missing(self, dist):
        html = b'<html><head><script src="/assets/index-3f2a.js"></script></head></html>'

        result, changed = rewrite_index_html(html, dist)

        assert changed
        assert result.startswith(b"<!DOCTYPE html>")


class TestEnsureDoctype:
    def test_adds_doctype(self):
        assert ensure_html_doctype(b"<html></html>") == b"<!DOCTYPE html>\n<html></html>"

    def test_keeps_existing_doctype(self):
        content = b"  <!doctype html><html></html>"
        assert ensure_html_doctype(content) is content


class TestAnnotateIndexHtml:
    """Test suite for component metadata injection."""

    def test_inserts_before_head_close(self):
        content = "<html><head><title>x</title></head><body></body></html>"
        meta = {"component-name": "button", "component-version": "1.0.0"}
        config = {"name": "button", "version": "1.0.0"}

        result = annotate_index_html(content, meta, config)

        head, _, rest = result.partition("</head>")
        assert rest == "<body></body></html>"
        assert "<!-- StoreHUBX Component Metadata -->" in head
        assert '<meta name="component-name" content="button">' in head
        assert '<meta name="component-version" content="1.0.0">' in head

        payload = head.split("window.__STOREHUBX_COMPONENT__ = ", 1)[1]
        payload = payload.split(";\n", 1)[0]
        assert json.loads(payload) == config

    def test_escapes_values(self):
        result = annotate_index_html(
            "<head></head>", {"component-name": 'a"<b>'}, {"name": "</script>"}
        )

        assert 'content="a&quot;&lt;b&gt;"' in result
        assert "</script>\"" not in result

    def test_missing_head_returns_none(self):
        assert annotate_index_html("<html><body></body></html>", {}, {}) is None


class TestRewriteIndexFile:
    def test_rewrites_in_place(self, dist):
        index = dist / "index.html"
        index.write_text('<html><head><script src="/assets/index-3f2a.js"></script></head></html>')

        assert rewrite_index_file(index) is True
        assert 'src="assets/index-3f2a.js"' in index.read_text()

        # Already relative: a second pass changes nothing
        before = index.read_bytes()
        assert rewrite_index_file(index) is False
        assert index.read_bytes() == before
