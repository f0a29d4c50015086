import json

from pantry_to_cart.report import FAILED, MATCHED, NO_MATCH, SKIPPED_STAPLE, ItemReport, build_report


def _item(status, price=None, title=None):
    return ItemReport(
        raw="1 L süt", name="süt", quantity=1, unit="lt", grams=1000,
        chosen_title=title, chosen_url=None, best_store="A101" if title else None,
        best_price=price, offer_count=1 if title else 0, reason="", status=status,
    )


def test_counts_and_total(tmp_path):
    items = [
        _item(MATCHED, 35.0, "Süt 1 L"),
        _item(MATCHED, 20.25, "Un 1 kg"),
        _item(NO_MATCH),
        _item(SKIPPED_STAPLE),
        _item(FAILED),
    ]
    report = build_report(items)
    assert (report.total, report.matched, report.no_match, report.skipped, report.failed) == (5, 2, 1, 1, 1)
    assert report.estimated_total == 55.25

    text = report.summary_text()
    assert "[MATCHED] 1 L süt" in text
    assert "55.25 TL" in text

    path = report.write_json(str(tmp_path / "out" / "report.json"))
    data = json.loads(open(path, encoding="utf-8").read())
    assert data["items"][0]["chosen_title"] == "Süt 1 L"
    assert data["matched"] == 2
