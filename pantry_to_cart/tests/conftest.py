import json

import pytest


def _app_state_script(state):
    return f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(state, ensure_ascii=False)}</script>'


def _ld_script(obj):
    return f'<script type="application/ld+json">{json.dumps(obj, ensure_ascii=False)}</script>'


def make_page(*, app_state=None, json_ld=(), body="", title="Cimri"):
    head = "".join(_ld_script(o) for o in json_ld)
    tail = _app_state_script(app_state) if app_state is not None else ""
    return f"<html><head><title>{title}</title>{head}</head><body>{body}{tail}</body></html>"


def product(pid, title, price, **extra):
    p = {
        "id": pid,
        "title": title,
        "path": f"/market/{pid}",
        "offerSummary": {"minPrice": price},
        "merchant": {"id": "m1", "name": "Migros"},
    }
    p.update(extra)
    return p


@pytest.fixture
def page():
    return make_page


@pytest.fixture
def search_state():
    def build(products, total_pages=1):
        return {"props": {"pageProps": {"products": products, "totalPages": total_pages}}}
    return build


@pytest.fixture
def milk_products():
    return [
        product("vucut-sutu-1", "Nivea Vücut Sütü 400 ml", 19.90),
        product("sutlu-gofret-2", "Sütlü Gofret 36 g", 8.50),
        product("ayran-3", "Ayran 1 L", 12.00),
        product("pinar-sut-4", "Süt 1 L", 35.00),
        product("tam-yagli-5", "Tam Yağlı Süt 1 L", 45.00),
    ]


@pytest.fixture
def product_factory():
    return product
