from pantry_to_cart.parser import (
    dig,
    extract,
    extract_script_content_by_id,
    parse_app_state,
    parse_json_ld,
    parse_pagination,
    try_parse_json,
)


def test_json_ld_flattens_arrays_and_graph(page):
    html = page(json_ld=[
        [{"@type": "Product", "name": "A"}, {"@type": "Product", "name": "B"}],
        {"@context": "https://schema.org", "@graph": [{"@type": "Organization"}, {"@type": "Product", "name": "C"}]},
    ])
    names = [o.get("name") for o in parse_json_ld(html)]
    assert names == ["A", "B", None, "C"]


def test_malformed_json_ld_block_is_skipped(page):
    html = page(json_ld=[{"@type": "Product", "name": "ok"}])
    html = html.replace("</head>", '<script type="application/ld+json">{broken</script></head>')
    assert [o["name"] for o in parse_json_ld(html)] == ["ok"]


def test_app_state_structured(page, search_state):
    state = search_state([{"id": 1}], total_pages=4)
    assert parse_app_state(page(app_state=state)) == state
    assert parse_app_state("<html></html>") is None


def test_regex_fallback_when_structure_is_broken():
    # Unterminated markup before the block trips structural lookup in some parsers;
    # the regex strategy still finds it.
    html = '<div><script id="__NEXT_DATA__">{"props": {"pageProps": {"totalPages": 2}}}</script>'
    raw = extract_script_content_by_id(html, "__NEXT_DATA__")
    assert try_parse_json(raw) == {"props": {"pageProps": {"totalPages": 2}}}


def test_try_parse_json_rejects_garbage_and_non_objects():
    assert try_parse_json("nope") is None
    assert try_parse_json("[1, 2]") is None
    assert try_parse_json("") is None


def test_pagination_text_wins():
    html = '<div class="pagination-info">Sayfa 2/7</div><a class="page-link" href="?page=12">12</a>'
    assert parse_pagination(html) == 7


def test_pagination_of_text():
    assert parse_pagination('<span class="page-count">3 of 9</span>') == 9


def test_pagination_max_link():
    html = (
        '<a class="page-link" href="/arama?q=sut&amp;page=2">2</a>'
        '<a class="page-link" href="/arama?q=sut&amp;page=5">Son</a>'
        '<a class="page-link">3</a>'
    )
    assert parse_pagination(html) == 5


def test_pagination_from_app_state(page, search_state):
    assert parse_pagination(page(app_state=search_state([], total_pages=6))) == 6


def test_pagination_unknown_is_zero():
    assert parse_pagination("<html><body>nothing</body></html>") == 0
    assert parse_pagination("") == 0


def test_extract_combines_sources(page, search_state):
    state = search_state([{"id": 1}], total_pages=3)
    html = page(app_state=state, json_ld=[{"@type": "Product", "name": "A"}])
    result = extract(html)
    assert result.app_state == state
    assert result.app_state_source == "structured"
    assert result.json_ld[0]["name"] == "A"
    assert result.total_pages == 3
    assert not result.empty


def test_extract_empty_html():
    result = extract("   ")
    assert result.empty
    assert result.total_pages == 0


def test_dig():
    assert dig({"a": {"b": 1}}, ("a", "b")) == 1
    assert dig({"a": [1]}, ("a", "b")) is None
    assert dig(None, ("a",)) is None
