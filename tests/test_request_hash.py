import json

import pytest

from nodrivernet.core.network.correlation import IGNORED_HEADERS, Multimap, request_hash

from conftest import request_payload


def test_hash_ignores_header_order_and_case():
    a = request_payload("https://a.test/x", headers={"X-One": "1", "X-Two": "2"})
    b = request_payload("https://a.test/x", headers={"x-two": "2", "x-ONE": "1"})
    assert request_hash(a) == request_hash(b)


def test_hash_ignores_volatile_headers():
    a = request_payload("https://a.test/x", headers={"X-Token": "t", "Referer": "https://one.test/"})
    b = request_payload("https://a.test/x", headers={"X-Token": "t", "Referer": "https://two.test/", "Cookie": "a=b"})
    assert request_hash(a) == request_hash(b)
    assert "referer" in IGNORED_HEADERS


def test_hash_changes_with_relevant_header():
    a = request_payload("https://a.test/x", headers={"X-Token": "1"})
    b = request_payload("https://a.test/x", headers={"X-Token": "2"})
    assert request_hash(a) != request_hash(b)


@pytest.mark.parametrize("field, value", [
    ("method", "POST"),
    ("postData", "a=1"),
    ("url", "https://a.test/y"),
])
def test_hash_covers_method_post_data_and_url(field, value):
    a = request_payload("https://a.test/x")
    b = dict(a, **{field: value})
    assert request_hash(a) != request_hash(b)


def test_hash_percent_decodes_url():
    a = request_payload("https://a.test/a%20b")
    b = request_payload("https://a.test/a b")
    assert request_hash(a) == request_hash(b)


@pytest.mark.parametrize("escape, char", [("%2F", "/"), ("%3f", "?"), ("%23", "#"), ("%26", "&")])
def test_hash_keeps_reserved_escapes(escape, char):
    encoded = request_payload(f"https://a.test/a{escape}b")
    assert request_hash(encoded) != request_hash(request_payload(f"https://a.test/a{char}b"))
    assert json.loads(request_hash(encoded))["url"] == f"https://a.test/a{escape}b"


def test_hash_decodes_utf8_around_reserved_escapes():
    a = request_payload("https://a.test/caf%C3%A9%2Fx")
    b = request_payload("https://a.test/caf\u00e9%2Fx")
    assert request_hash(a) == request_hash(b)


def test_hash_keeps_raw_url_when_decoding_fails():
    url = "https://a.test/%E0%A4%A"
    assert json.loads(request_hash(request_payload(url)))["url"] == url


def test_data_urls_hash_without_headers():
    a = request_payload("data:text/plain,hi", headers={"X-One": "1"})
    b = request_payload("data:text/plain,hi", headers={"X-Two": "2"})
    assert request_hash(a) == request_hash(b)
    assert json.loads(request_hash(a))["headers"] == {}


def test_multimap_is_fifo_per_key():
    m = Multimap()
    m.set("h", "1")
    m.set("h", "2")
    m.set("h", "1")
    m.set("other", "3")
    assert len(m) == 3
    assert m.first_value("h") == "1"
    assert m.delete("h", "1")
    assert m.first_value("h") == "2"
    assert not m.delete("h", "1")
    assert m.delete("h", "2")
    assert m.first_value("h") is None
    assert not m.has("h", "2")
    assert m.has("other", "3")
