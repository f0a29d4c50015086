"""Text-generation client used to expand queries and re-rank candidates.

The model is asked for JSON but never trusted to return only JSON: replies
are scanned for the first balanced ``{...}`` block.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .config import AssistOptions
from .http import HttpClient
from .models import ProductListing

logger = logging.getLogger(__name__)

MAX_EXPANSION_LENGTH = 100


class AssistUnavailable(RuntimeError):
    """The assist service failed, timed out or replied with nothing usable."""


class TextGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


@dataclass(frozen=True)
class ChatCompletionsClient:
    """Single-turn client for an OpenAI-compatible ``/chat/completions`` API."""

    http: HttpClient
    model: str
    temperature: float = 0.7
    max_tokens: int = 1000

    @staticmethod
    def from_options(opts: AssistOptions) -> "ChatCompletionsClient":
        if not opts.api_key:
            raise RuntimeError("ASSIST_API_KEY is not set")
        return ChatCompletionsClient(
            http=HttpClient(base_url=opts.base_url, token=opts.api_key, timeout_s=opts.timeout_seconds),
            model=opts.model,
        )

    def generate(self, prompt: str) -> str:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            resp = self.http.post("/chat/completions", json=body)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise AssistUnavailable(f"assist request failed: {exc}") from exc

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise AssistUnavailable("assist reply has no message content") from exc
        if not isinstance(text, str) or not text.strip():
            raise AssistUnavailable("assist reply is empty")
        logger.debug("assist replied with %d chars", len(text))
        return text.strip()


def extract_json_block(text: str) -> dict[str, Any] | None:
    """Return the first balanced ``{...}`` object in *text* that parses, or None."""
    if not text:
        return None
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        data = json.loads(text[start:i + 1])
                    except ValueError:
                        break
                    if isinstance(data, dict):
                        return data
                    break
        start = text.find("{", start + 1)
    return None


def clean_expansion(original: str, reply: str | None) -> str:
    """Accept the model's rewrite only when the whole reply is short and non-empty.

    Length is checked before line splitting, so a long explanation after a
    short first line still discards the rewrite.
    """
    if not reply:
        return original
    text = reply.strip().strip("\"'`").strip()
    if not text or len(text) > MAX_EXPANSION_LENGTH:
        return original
    return text.splitlines()[0].strip() or original


def build_expansion_prompt(term: str) -> str:
    return (
        "Bir market fiyat karşılaştırma sitesinde arama yapacağım.\n"
        f"MALZEME: {term}\n\n"
        "Bu malzemeyi sitede en iyi sonucu verecek bir arama terimine çevir.\n"
        "- Malzeme genel bir kategori ise yaygın bir çeşit veya tipik paket boyutu ekle "
        "(örnek: \"süt\" -> \"süt 1 lt\", \"pirinç\" -> \"baldo pirinç 1 kg\").\n"
        "- Malzeme zaten belirli ise olduğu gibi bırak.\n"
        "- Marka uydurma.\n\n"
        "SADECE arama terimini yaz, açıklama ekleme."
    )


def format_candidates(candidates: list[ProductListing]) -> str:
    lines = []
    for i, c in enumerate(candidates, 1):
        sale = f" [İNDİRİM: %{c.discount_percentage}]" if c.is_on_sale and c.discount_percentage else ""
        merchant = f" ({c.merchant_name})" if c.merchant_name else ""
        lines.append(f"{i}. {c.name} - {c.price:.2f} TL{merchant}{sale}")
    return "\n".join(lines)


def build_rerank_prompt(term: str, quantity_hint: str | None, candidates: list[ProductListing]) -> str:
    return (
        "Bir tarif için marketten malzeme alacağım.\n"
        f"ARANAN MALZEME: {term}\n"
        f"İHTİYAÇ MİKTARI: {quantity_hint or 'belirtilmedi'}\n\n"
        "ADAYLAR:\n"
        f"{format_candidates(candidates)}\n\n"
        "Adaylar arasından en uygun olanı seç. Kurallar:\n"
        "1. Ürün adı aranan malzemenin kendisi olmalı; sadece kelimeyi içermesi yetmez. "
        "\"tavuk\" için \"tavuk aromalı cips\" olmaz, \"makarna\" için \"makarna sosu\" olmaz.\n"
        "2. Atıştırmalık, şekerleme, kozmetik ve temizlik ürünlerini asla seçme.\n"
        "3. Başka bir kategorinin \"aromalı\" çeşidini seçme.\n"
        "4. Paket boyutu ihtiyaca yakın olmalı, fiyat makul olmalı.\n\n"
        "SADECE şu JSON'u döndür:\n"
        "{\"selectedIndex\": 1, \"reason\": \"kısa açıklama\", \"isRelevant\": true}\n"
        "Hiçbir aday uygun değilse selectedIndex 0 ve isRelevant false döndür."
    )


@dataclass(frozen=True)
class RerankDecision:
    index: int  # 1-based; 0 means "none acceptable"
    reason: str
    is_relevant: bool


def parse_rerank_reply(reply: str) -> RerankDecision:
    data = extract_json_block(reply)
    if data is None:
        raise AssistUnavailable("no JSON object in rerank reply")
    # Keys are matched case-insensitively.
    lowered = {str(k).lower(): v for k, v in data.items()}
    raw_index = lowered.get("selectedindex", 0)
    try:
        index = int(raw_index)
    except (TypeError, ValueError, OverflowError) as exc:
        raise AssistUnavailable(f"bad selectedIndex {raw_index!r}") from exc
    relevant = lowered.get("isrelevant", lowered.get("isvalid", False))
    if isinstance(relevant, str):
        relevant = relevant.strip().lower() in {"true", "yes", "evet"}
    return RerankDecision(index=index, reason=str(lowered.get("reason") or ""), is_relevant=bool(relevant))
