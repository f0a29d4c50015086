from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path

MATCHED = "MATCHED"
NO_MATCH = "NO_MATCH"
SKIPPED_STAPLE = "SKIPPED_STAPLE"
FAILED = "FAILED"


@dataclass
class ItemReport:
    raw: str
    name: str
    quantity: float
    unit: str
    grams: float
    chosen_title: str | None
    chosen_url: str | None
    best_store: str | None
    best_price: float | None
    offer_count: int
    reason: str
    status: str  # MATCHED, NO_MATCH, SKIPPED_STAPLE, FAILED


@dataclass
class RunReport:
    timestamp: str
    total: int
    matched: int
    no_match: int
    skipped: int
    failed: int
    estimated_total: float
    items: list[ItemReport]

    def summary_text(self) -> str:
        lines = [
            f"Run: {self.timestamp}",
            f"Total: {self.total}  Matched: {self.matched}  No match: {self.no_match}  "
            f"Skipped: {self.skipped}  Failed: {self.failed}",
            f"Estimated basket: {self.estimated_total:.2f} TL",
            "",
        ]
        for i, it in enumerate(self.items, 1):
            lines.append(f"  {i}. [{it.status}] {it.raw}")
            if it.chosen_title:
                price = f"{it.best_price:.2f} TL" if it.best_price is not None else ""
                lines.append(f"     -> {it.chosen_title}  {price}  {it.best_store or ''}".rstrip())
            elif it.reason:
                lines.append(f"     -> {it.reason}")
        return "\n".join(lines)

    def write_json(self, path: str = "artifacts/run_report.json") -> str:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(asdict(self), indent=2, ensure_ascii=False), encoding="utf-8")
        return str(out)


def build_report(items: list[ItemReport]) -> RunReport:
    return RunReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        total=len(items),
        matched=sum(1 for i in items if i.status == MATCHED),
        no_match=sum(1 for i in items if i.status == NO_MATCH),
        skipped=sum(1 for i in items if i.status == SKIPPED_STAPLE),
        failed=sum(1 for i in items if i.status == FAILED),
        estimated_total=round(sum(i.best_price or 0.0 for i in items if i.status == MATCHED), 2),
        items=items,
    )
