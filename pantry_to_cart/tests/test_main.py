from pantry_to_cart import main as cli
from pantry_to_cart.models import BestOffer, PriceComparison, ProductListing


def test_version(capsys):
    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == "0.1.0"


def test_parse_command(capsys):
    assert cli.main(["parse", "2 yemek kaşığı zeytinyağı"]) == 0
    out = capsys.readouterr().out
    assert "zeytinyağı" in out
    assert "~30" in out


def test_config_keys(capsys):
    assert cli.main(["config", "keys"]) == 0
    out = capsys.readouterr().out
    assert "PANTRY_BASE_URL" in out
    assert "ASSIST_API_KEY  (secret)" in out


class FakeFinder:
    def find_best_offer(self, name, hint=None):
        if name == "ejder meyvesi":
            return None
        if name == "bozuk":
            raise RuntimeError("kaput")
        listing = ProductListing(id="1", name=f"{name} paket", price=10.0, product_url="https://x/1")
        best = PriceComparison(store="A101", price=9.5, product_name=listing.name)
        return BestOffer(listing=listing, reason="ok", offers=[best], best=best)


def test_run_writes_report(tmp_path, monkeypatch, capsys):
    lines = tmp_path / "list.txt"
    lines.write_text("# tarif\n200 gram makarna\n1 tutam tuz\nejder meyvesi\nbozuk\n\n", encoding="utf-8")
    out = tmp_path / "report.json"
    monkeypatch.setattr(cli, "build_finder", lambda cfg: FakeFinder())
    monkeypatch.setenv("PANTRY_CACHE_DIR", str(tmp_path / "cache"))

    assert cli.main(["run", str(lines), "--out", str(out)]) == 0

    text = capsys.readouterr().out
    assert "Matched: 1" in text
    assert "Skipped: 1" in text
    assert "No match: 1" in text
    assert "Failed: 1" in text
    assert out.exists()
