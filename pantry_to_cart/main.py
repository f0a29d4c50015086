from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
import re
import sys
from pathlib import Path

from .assist import ChatCompletionsClient
from .browser import BrowserRenderer, browserless_ws_endpoint
from .cache import FileCache
from .cimri import build_client
from .config import ENV_KEYS, SECRET_KEYS, Config
from .normalize import is_pantry_staple, parse_ingredient
from .pipeline import PriceFinder
from .report import FAILED, MATCHED, NO_MATCH, SKIPPED_STAPLE, ItemReport, build_report

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class JsonFormatter(logging.Formatter):
    """One JSON object per log record; extra= fields are carried through."""

    STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in self.STANDARD_ATTRS:
                continue
            data[key] = value
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str, *, as_json: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = []
    handler = logging.StreamHandler(sys.stderr)
    if as_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pantry-to-cart")
    p.add_argument("--version", action="store_true", help="Print version and exit")
    p.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--log-json", action="store_true", help="Log one JSON object per line")
    p.add_argument("--env", default=None, help="Infisical environment to overlay secrets from")

    sub = p.add_subparsers(dest="cmd", required=False)

    p_search = sub.add_parser("search", help="Search listings")
    p_search.add_argument("query")
    p_search.add_argument("--page", type=int, default=1)
    p_search.add_argument("--sort", default=None, help="e.g. price-asc")

    p_detail = sub.add_parser("detail", help="Show a product's offers, specs and price history")
    p_detail.add_argument("product_id")

    p_parse = sub.add_parser("parse", help="Parse an ingredient line")
    p_parse.add_argument("text")

    p_best = sub.add_parser("best", help="Find the best offer for a product")
    p_best.add_argument("name")
    p_best.add_argument("--quantity", default=None, help="Quantity hint, e.g. 1L or '500 g'")

    p_compare = sub.add_parser("compare", help="Per-merchant prices for a product, cheapest first")
    p_compare.add_argument("name")
    p_compare.add_argument("--quantity", default=None)
    p_compare.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    p_run = sub.add_parser("run", help="Price every ingredient line in a file")
    p_run.add_argument("file", help="One ingredient per line; '-' reads stdin")
    p_run.add_argument("--limit", type=int, default=0, help="Max items (0=all)")
    p_run.add_argument("--skip", type=int, default=0, help="Skip first N items")
    p_run.add_argument("--include-staples", action="store_true", help="Also price water, salt and the like")
    p_run.add_argument("--out", default="artifacts/run_report.json")

    p_cache = sub.add_parser("cache", help="Cache commands")
    sub_cache = p_cache.add_subparsers(dest="cache_cmd", required=True)
    sub_cache.add_parser("clean", help="Evict expired and overflow entries")

    p_config = sub.add_parser("config", help="Config commands")
    sub_config = p_config.add_subparsers(dest="config_cmd", required=True)
    sub_config.add_parser("keys", help="List recognised environment keys")
    sub_config.add_parser("check", help="Validate the configuration")

    p_browser = sub.add_parser("browser", help="Headless browser commands")
    sub_browser = p_browser.add_subparsers(dest="browser_cmd", required=True)
    p_render = sub_browser.add_parser("render", help="Render a URL and save the HTML")
    p_render.add_argument("url")
    p_render.add_argument("--out", default="artifacts/render.html")

    return p


def build_finder(cfg: Config) -> PriceFinder:
    assist = ChatCompletionsClient.from_options(cfg.assist) if cfg.assist.enabled else None
    if assist is None:
        logger.info("ASSIST_API_KEY not set; using deterministic ranking only")
    price_cache = FileCache(
        cfg.scraper.price_cache_directory,
        default_ttl=cfg.scraper.price_cache_minutes * 60,
        max_entries=cfg.scraper.max_cache_files,
    )
    return PriceFinder(
        build_client(cfg),
        assist=assist,
        rules=cfg.rules,
        price_cache=price_cache,
        price_cache_ttl=cfg.scraper.price_cache_minutes * 60,
    )


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    if args.version:
        print(VERSION)
        return 0

    if args.cmd is None:
        p.print_help()
        return 0

    setup_logging(args.log_level, as_json=args.log_json)

    if args.cmd == "parse":
        req = parse_ingredient(args.text)
        print(f"name:     {req.name}")
        print(f"quantity: {req.quantity:g} {req.unit}")
        print(f"grams:    ~{req.quantity_in_grams:g}")
        return 0

    if args.cmd == "config" and args.config_cmd == "keys":
        for k in ENV_KEYS:
            suffix = "  (secret)" if k in SECRET_KEYS else ""
            print(f"{k}{suffix}")
        return 0

    cfg = Config.load(env=args.env)

    if args.cmd == "config":
        if args.config_cmd == "check":
            # Intentionally do not print secret values
            print(f"OK: search {cfg.scraper.base_url}")
            print(f"    cache {cfg.scraper.cache_directory} ({cfg.scraper.cache_duration_minutes} min)")
            print(f"    assist {'enabled' if cfg.assist.enabled else 'disabled'} ({cfg.assist.model})")
            print(f"    browser {'browserless' if cfg.browserless_url else 'local chromium'}")
            return 0

    if args.cmd == "browser":
        if args.browser_cmd == "render":
            ws = None
            if cfg.browserless_url and cfg.browserless_token:
                ws = browserless_ws_endpoint(base_ws_url=cfg.browserless_url, token=cfg.browserless_token)
            html = BrowserRenderer(ws_endpoint=ws).render(args.url)
            out = Path(args.out)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(html, encoding="utf-8")
            print(f"OK: wrote {out} ({len(html)} bytes)")
            return 0

    if args.cmd == "cache":
        if args.cache_cmd == "clean":
            removed = build_client(cfg).clean_cache()
            print(f"OK: removed {removed} cache files")
            return 0

    if args.cmd == "search":
        client = build_client(cfg)
        result = client.search(args.query, page=args.page, sort=args.sort)
        if result.fetch_failed:
            print("ERROR: could not fetch search results.")
            return 1
        if not result.products:
            print("No results found.")
            return 1
        pages = result.total_pages or "?"
        print(f"Page {result.current_page}/{pages}")
        for i, item in enumerate(result.products, 1):
            print(f"{i}. {item.name}")
            print(f"   Price: {item.price:.2f} TL  Store: {item.merchant_name or 'N/A'}  Id: {item.id}")
            print(f"   URL: {item.product_url}")
        return 0

    if args.cmd == "detail":
        detail = build_client(cfg).get_product_detail(args.product_id)
        if detail is None:
            print("ERROR: could not fetch product detail.")
            return 1
        print(detail.name or detail.id)
        if detail.description:
            print(detail.description)
        for o in sorted(detail.offers, key=lambda o: o.price):
            print(f"  {o.price:>10.2f} TL  {o.merchant_name}")
        for g in detail.specs:
            print(f"[{g.group}]")
            for s in g.items:
                print(f"  {s.name}: {s.value}")
        if detail.price_history:
            print(f"Price history: {len(detail.price_history)} points, "
                  f"{detail.price_history[0].date} .. {detail.price_history[-1].date}")
        return 0

    if args.cmd == "best":
        found = build_finder(cfg).find_best_offer(args.name, args.quantity)
        if found is None:
            print("No price available.")
            return 1
        print(f"MATCH: {found.listing.name}  ({found.reason})")
        if found.best is not None:
            print(f"BEST:  {found.best.price:.2f} {found.best.currency}  {found.best.store}")
        print(f"URL:   {found.listing.product_url}")
        return 0

    if args.cmd == "compare":
        offers = build_finder(cfg).compare_prices(args.name, args.quantity)
        if args.json:
            print(json.dumps([o.to_dict() for o in offers], indent=2, ensure_ascii=False))
            return 0 if offers else 1
        if not offers:
            print("No price available.")
            return 1
        for i, o in enumerate(offers, 1):
            sale = f"  (-%{o.discount_percentage})" if o.is_on_sale and o.discount_percentage else ""
            print(f"{i}. {o.price:>10.2f} {o.currency}  {o.store}{sale}")
        return 0

    if args.cmd == "run":
        return _run_list(args, cfg)

    raise RuntimeError("unreachable")


_HAS_QUANTITY_RE = re.compile(r"\d|[½¼¾⅓⅔]")


def _read_lines(path: str) -> list[str]:
    text = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    return [ln.strip() for ln in text.splitlines() if ln.strip() and not ln.strip().startswith("#")]


def _run_list(args, cfg: Config) -> int:
    lines = _read_lines(args.file)
    if args.skip > 0:
        lines = lines[args.skip:]
    if args.limit > 0:
        lines = lines[: args.limit]

    print(f"Pricing {len(lines)} items.")
    finder = build_finder(cfg)
    reports: list[ItemReport] = []

    for idx, raw in enumerate(lines):
        req = parse_ingredient(raw)
        print(f"\n-> [{idx+1}/{len(lines)}] {raw}")
        print(f"  query: {req.name}")

        def item(status: str, reason: str, **kw) -> ItemReport:
            return ItemReport(
                raw=raw, name=req.name, quantity=req.quantity, unit=req.unit,
                grams=req.quantity_in_grams, chosen_title=kw.get("title"),
                chosen_url=kw.get("url"), best_store=kw.get("store"),
                best_price=kw.get("price"), offer_count=kw.get("offers", 0),
                reason=reason, status=status,
            )

        if not args.include_staples and is_pantry_staple(req.name, cfg.rules.pantry_staples):
            print("  SKIP: pantry staple")
            reports.append(item(SKIPPED_STAPLE, "pantry staple"))
            continue

        hint = f"{req.quantity:g} {req.unit}" if _HAS_QUANTITY_RE.search(raw) else None
        try:
            found = finder.find_best_offer(req.name, hint)
        except Exception as exc:
            logger.exception("pricing failed for %r", raw)
            print(f"  ERROR: {exc}")
            reports.append(item(FAILED, str(exc)))
            continue

        if found is None:
            print("  NO MATCH")
            reports.append(item(NO_MATCH, "no acceptable product"))
            continue

        best = found.best
        print(f"  MATCH: {found.listing.name}  {best.price if best else found.listing.price:.2f} TL")
        reports.append(item(
            MATCHED, found.reason,
            title=found.listing.name, url=found.listing.product_url,
            store=best.store if best else found.listing.merchant_name,
            price=best.price if best else found.listing.price,
            offers=len(found.offers),
        ))

    report = build_report(reports)
    print("\n" + report.summary_text())
    path = report.write_json(args.out)
    print(f"\nReport written to {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
