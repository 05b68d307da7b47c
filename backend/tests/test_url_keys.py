"""
Tests for image URL canonicalization.
"""

import sys
from pathlib import Path
from urllib.parse import quote

backend_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_root))

from smartdrafts.agents.lot_reconciliation.url_keys import basename_from, canonical_url, folder_from


DIRECT = "https://dl.dropboxusercontent.com/s/abc123/front.jpg"


class TestCanonicalUrl:
    def test_dropbox_share_link_becomes_direct(self):
        assert canonical_url("https://www.dropbox.com/s/abc123/front.jpg?dl=0") == DIRECT

    def test_dropbox_keeps_other_params(self):
        url = "https://www.dropbox.com/scl/fi/x1/a.jpg?rlkey=k1&dl=1"
        assert canonical_url(url) == "https://dl.dropboxusercontent.com/scl/fi/x1/a.jpg?rlkey=k1"

    def test_raw_param_dropped_on_direct_host(self):
        assert canonical_url(DIRECT + "?raw=1") == DIRECT

    def test_whitespace_trimmed(self):
        assert canonical_url("  https://dropbox.com/s/abc123/front.jpg?dl=0\n") == DIRECT

    def test_proxy_unwrapped(self):
        source = "https://www.dropbox.com/s/abc123/front.jpg?dl=0"
        proxied = "https://app.example.com/.netlify/functions/image-proxy?url=" + quote(source, safe="")
        assert canonical_url(proxied) == DIRECT

    def test_nested_proxy_unwrapped(self):
        inner = "https://app.example.com/.netlify/functions/image-proxy?url=" + quote(DIRECT, safe="")
        outer = "https://app.example.com/.netlify/functions/image-proxy?url=" + quote(inner, safe="")
        assert canonical_url(outer) == DIRECT

    def test_other_urls_untouched(self):
        url = "https://cdn.example.com/lot/a.jpg?w=100"
        assert canonical_url(url) == url

    def test_idempotent(self):
        for url in (
            "https://www.dropbox.com/s/abc123/front.jpg?dl=0",
            "https://cdn.example.com/lot/a.jpg",
            "https://app.example.com/.netlify/functions/image-proxy?url=" + quote(DIRECT, safe=""),
        ):
            once = canonical_url(url)
            assert canonical_url(once) == once

    def test_empty_and_non_string(self):
        assert canonical_url("") == ""
        assert canonical_url("   ") == ""
        assert canonical_url(None) == ""
        assert canonical_url(42) == ""


class TestNameHelpers:
    def test_basename(self):
        assert basename_from("https://cdn.example.com/lot/front%20shot.jpg?dl=0") == "front shot.jpg"
        assert basename_from("local/dir/img.png") == "img.png"
        assert basename_from(None) == ""

    def test_folder(self):
        assert folder_from("https://cdn.example.com/lot7/front.jpg") == "lot7"
        assert folder_from("https://cdn.example.com/front.jpg") == ""
        assert folder_from("") == ""
