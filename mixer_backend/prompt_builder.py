"""Prompt rendering for the auto-reply pipeline.

The static wording lives in ``prompts/auto_reply.txt``; this module only selects
and formats the dynamic sections (style examples, catalog, history) and fills the
``<<PLACEHOLDER>>`` markers in a single pass, so text supplied by customers can
never expand into another section.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Optional, Sequence

from .config import PromptLimits, ShopProfile
from .models import ConversationTurn, ProductSummary, TrainingPair
from .utils import format_vnd

HANDOFF_TOKEN = "[HANDOFF]"

CUSTOMER_LABEL = "Khách"
SHOP_LABEL = "Shop"

NO_EXAMPLES_TEXT = "Trả lời thân thiện, ngắn gọn."
NO_PRODUCTS_TEXT = "(Đang cập nhật)"
NO_HISTORY_TEXT = "(Cuộc trò chuyện mới)"

SECTION_RULE = "═══════════════════════════════════════════════════════"

GLOSSARY_LINES = [
    "ib = inbox | sz = size | đt = điện thoại | sđt = số điện thoại",
    "ship = giao hàng | cod = thanh toán khi nhận | ck = chuyển khoản",
    "check = kiểm tra | tk = tài khoản | add = địa chỉ",
    "k/ko/kg = không | đc = được | vs = với | nx = nữa | j = gì",
]

PLACEHOLDER_RE = re.compile(r"<<([A-Z_]+)>>")


def load_template(path: Path) -> str:
    """Purpose: Load a prompt template as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the template; output is the decoded string.
    Side Effects / State: Reads the filesystem.
    Failure Modes: UnicodeDecodeError triggers a tolerant decode that drops bad bytes;
        a missing file raises FileNotFoundError.
    Testing Notes: Validate BOM stripping on a file written with utf-8-sig.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return path.read_text(encoding="utf-8").lstrip("\ufeff")
    except UnicodeDecodeError:
        raw = path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def _section(title: str, body: str) -> str:
    return f"{SECTION_RULE}\n📌 {title}:\n{SECTION_RULE}\n{body}\n\n"


def render_examples(pairs: Sequence[TrainingPair], limit: int) -> str:
    """Render the first `limit` pairs as quoted Khách/Shop exchanges."""
    selected = list(pairs)[: max(limit, 0)]
    if not selected:
        return NO_EXAMPLES_TEXT
    blocks = [
        f'{CUSTOMER_LABEL}: "{pair.customer_message}"\n{SHOP_LABEL}: "{pair.employee_response}"'
        for pair in selected
    ]
    return "\n\n".join(blocks)


def render_product_line(product: ProductSummary) -> str:
    stock = "(còn hàng)" if product.stock > 0 else "(hết hàng)"
    line = f"- {product.name}: {format_vnd(product.price)}đ {stock}"
    if product.sizes:
        line += f" | Size: {', '.join(product.sizes)}"
    if product.colors:
        line += f" | Màu: {', '.join(product.colors)}"
    return line


def render_products(products: Sequence[ProductSummary], limit: int) -> str:
    selected = list(products)[: max(limit, 0)]
    if not selected:
        return NO_PRODUCTS_TEXT
    return "\n".join(render_product_line(product) for product in selected)


def render_history(history: Sequence[ConversationTurn], limit: int) -> str:
    """Render the last `limit` turns, oldest first."""
    if limit <= 0:
        return NO_HISTORY_TEXT
    selected = list(history)[-limit:]
    if not selected:
        return NO_HISTORY_TEXT
    return "\n".join(
        f"{CUSTOMER_LABEL if turn.role == 'customer' else SHOP_LABEL}: {turn.message}" for turn in selected
    )


def render_shop_info(shop: ShopProfile) -> str:
    lines = [
        f"- Tên cửa hàng: {shop.name}",
        f"- Bán: {shop.category}",
        f"- Ship: {shop.shipping}",
        f"- Thanh toán: {shop.payment}",
        f"- Giờ làm việc: {shop.opening_hours}",
    ]
    return "\n".join(lines)


class PromptBuilder:
    """Render the auto-reply prompt from a template and per-call inputs."""

    def __init__(
        self,
        template: str,
        limits: Optional[PromptLimits] = None,
        shop: Optional[ShopProfile] = None,
        include_glossary: bool = True,
        include_shop_info: bool = True,
    ) -> None:
        self._template = template
        self._limits = limits or PromptLimits()
        self._shop = shop or ShopProfile()
        self._include_glossary = include_glossary
        self._include_shop_info = include_shop_info

    @classmethod
    def from_file(
        cls,
        path: Path,
        limits: Optional[PromptLimits] = None,
        shop: Optional[ShopProfile] = None,
        include_glossary: bool = True,
        include_shop_info: bool = True,
    ) -> "PromptBuilder":
        return cls(
            load_template(path),
            limits=limits,
            shop=shop,
            include_glossary=include_glossary,
            include_shop_info=include_shop_info,
        )

    @property
    def limits(self) -> PromptLimits:
        return self._limits

    def build(
        self,
        customer_message: str,
        training_pairs: Sequence[TrainingPair],
        products: Sequence[ProductSummary],
        history: Sequence[ConversationTurn],
    ) -> str:
        """Purpose: Render the full prompt for one inbound message.
        Inputs/Outputs: Inputs are the message and the three context sequences; output
            is the prompt text. Identical inputs always yield identical text.
        Side Effects / State: None.
        Failure Modes: None; empty sections render as placeholders.
        Testing Notes: Check caps (first N pairs, first M products, last K turns).
        """
        values: Dict[str, str] = {
            "SHOP_NAME": self._shop.name,
            "EXAMPLES": render_examples(training_pairs, self._limits.max_examples),
            "GLOSSARY": _section("TỪ VIẾT TẮT THƯỜNG GẶP", "\n".join(GLOSSARY_LINES))
            if self._include_glossary
            else "",
            "SHOP_INFO": _section("THÔNG TIN SHOP", render_shop_info(self._shop))
            if self._include_shop_info
            else "",
            "PRODUCTS": render_products(products, self._limits.max_products),
            "HISTORY": render_history(history, self._limits.max_history),
            "MESSAGE": customer_message,
            "HANDOFF_TOKEN": HANDOFF_TOKEN,
        }
        rendered = PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), match.group(0)), self._template)
        return rendered.strip()
