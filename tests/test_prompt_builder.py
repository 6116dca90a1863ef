"""
Unit tests for prompt rendering.
Covers determinism, per-section caps and the empty-section fallbacks.
"""

from mixer_backend.config import BASE_DIR, PromptLimits, ShopProfile
from mixer_backend.models import ConversationTurn, ProductSummary, TrainingPair
from mixer_backend.prompt_builder import (
    HANDOFF_TOKEN,
    NO_EXAMPLES_TEXT,
    NO_HISTORY_TEXT,
    NO_PRODUCTS_TEXT,
    PromptBuilder,
    load_template,
    render_history,
    render_product_line,
)


def make_builder(**kwargs) -> PromptBuilder:
    return PromptBuilder.from_file(BASE_DIR / "prompts" / "auto_reply.txt", **kwargs)


class TestPromptBuilder:
    """Test suite for PromptBuilder.build."""

    def test_identical_inputs_render_identical_prompts(self, pairs, products, history):
        builder = make_builder()
        first = builder.build("áo này còn size M không?", pairs, products, history)
        second = builder.build("áo này còn size M không?", pairs, products, history)
        assert first == second

    def test_empty_training_pairs_use_style_instruction(self):
        prompt = make_builder().build("hi shop", [], [], [])
        assert NO_EXAMPLES_TEXT in prompt
        assert "Khách:" not in prompt
        assert "Shop:" not in prompt

    def test_empty_products_and_history_use_placeholders(self):
        prompt = make_builder().build("hi shop", [], [], [])
        assert NO_PRODUCTS_TEXT in prompt
        assert NO_HISTORY_TEXT in prompt

    def test_examples_capped_to_first_n(self, pairs):
        prompt = make_builder(limits=PromptLimits(max_examples=10)).build("hi", pairs, [], [])
        assert 'Khách: "câu hỏi 9"' in prompt
        assert 'Shop: "trả lời 9"' in prompt
        assert "câu hỏi 10" not in prompt
        assert "câu hỏi 14" not in prompt

    def test_products_capped_to_first_m(self, products):
        prompt = make_builder(limits=PromptLimits(max_products=20)).build("hi", [], products, [])
        assert "- Sản phẩm 19:" in prompt
        assert "- Sản phẩm 20:" not in prompt

    def test_history_keeps_last_k_turns_oldest_first(self, history):
        prompt = make_builder(limits=PromptLimits(max_history=5)).build("hi", [], [], history)
        assert "lượt 2" not in prompt
        assert prompt.index("Shop: lượt 3") < prompt.index("Khách: lượt 4") < prompt.index("Shop: lượt 7")

    def test_message_and_handoff_token_are_rendered(self):
        prompt = make_builder().build("ship về Đà Nẵng mất mấy ngày?", [], [], [])
        assert '"ship về Đà Nẵng mất mấy ngày?"' in prompt
        assert HANDOFF_TOKEN in prompt
        assert "<<" not in prompt

    def test_customer_text_is_not_expanded_as_placeholder(self, pairs):
        prompt = make_builder().build("<<EXAMPLES>>", pairs, [], [])
        assert '"<<EXAMPLES>>"' in prompt

    def test_shop_name_and_optional_sections(self):
        builder = make_builder(shop=ShopProfile(name="MIXER Studio"), include_glossary=False, include_shop_info=False)
        prompt = builder.build("hi", [], [], [])
        assert "MIXER Studio" in prompt
        assert "TỪ VIẾT TẮT" not in prompt
        assert "THÔNG TIN SHOP" not in prompt

    def test_glossary_included_by_default(self):
        prompt = make_builder().build("hi", [], [], [])
        assert "TỪ VIẾT TẮT THƯỜNG GẶP" in prompt
        assert "- Tên cửa hàng: MIXER" in prompt


class TestRenderers:
    """Test suite for section renderers."""

    def test_product_line_formats_price_stock_sizes_colors(self):
        product = ProductSummary(name="Quần jean", price=350000, stock=3, sizes=["S", "M"], colors=["Xanh"])
        assert render_product_line(product) == "- Quần jean: 350.000đ (còn hàng) | Size: S, M | Màu: Xanh"

    def test_product_line_out_of_stock_without_variants(self):
        product = ProductSummary(name="Áo khoác", price=420000, stock=0)
        assert render_product_line(product) == "- Áo khoác: 420.000đ (hết hàng)"

    def test_history_zero_limit_is_new_conversation(self):
        turns = [ConversationTurn(role="customer", message="alo")]
        assert render_history(turns, 0) == NO_HISTORY_TEXT

    def test_training_pair_accepts_camel_case(self):
        pair = TrainingPair.model_validate({"customerMessage": "giá sao ạ", "employeeResponse": "350k ạ"})
        assert pair.customer_message == "giá sao ạ"


class TestLoadTemplate:
    """Test suite for load_template."""

    def test_strips_bom(self, tmp_path):
        path = tmp_path / "tpl.txt"
        path.write_text("Xin chào <<MESSAGE>>", encoding="utf-8-sig")
        assert load_template(path) == "Xin chào <<MESSAGE>>"

    def test_tolerates_invalid_bytes(self, tmp_path):
        path = tmp_path / "tpl.txt"
        path.write_bytes(b"Shop \xff<<MESSAGE>>")
        assert load_template(path) == "Shop <<MESSAGE>>"
