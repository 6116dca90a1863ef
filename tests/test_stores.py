"""
Unit tests for the JSON-backed stores and the product catalog.
"""

import json
import os
import threading

import pytest
from unittest.mock import patch
from pydantic import ValidationError

from mixer_backend.catalog import ProductCatalog, parse_product
from mixer_backend.conversation_store import ConversationStore
from mixer_backend.models import TrainingPair
from mixer_backend.settings_store import SettingsStore
from mixer_backend.training_store import TrainingStore, count_by_category


class TestSettingsStore:
    """Test suite for SettingsStore."""

    def test_defaults_when_file_missing(self, tmp_path):
        settings = SettingsStore(tmp_path / "settings.json").get_settings()
        assert settings.auto_reply_enabled is False
        assert settings.confidence_threshold == pytest.approx(0.6)

    def test_toggle_persists_with_dashboard_keys(self, tmp_path):
        path = tmp_path / "settings.json"
        store = SettingsStore(path)

        assert store.toggle().auto_reply_enabled is True

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["ai_auto_reply_enabled"] is True
        assert saved["ai_confidence_threshold"] == pytest.approx(0.6)
        assert SettingsStore(path).get_settings().auto_reply_enabled is True

    def test_update_threshold_validates_range(self, tmp_path):
        store = SettingsStore(tmp_path / "settings.json")
        assert store.update(confidence_threshold=0.75).confidence_threshold == pytest.approx(0.75)
        with pytest.raises(ValidationError):
            store.update(confidence_threshold=1.5)
        assert store.get_settings().confidence_threshold == pytest.approx(0.75)

    def test_malformed_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        assert SettingsStore(path).get_settings().auto_reply_enabled is False


class TestTrainingStore:
    """Test suite for TrainingStore."""

    def test_add_pairs_deduplicates_by_id(self, tmp_path, pairs):
        store = TrainingStore(tmp_path / "training.json")
        assert store.add_pairs(pairs[:3]) == 3
        assert store.add_pairs(pairs[:5]) == 2
        assert store.count() == 5

    def test_reload_from_disk(self, tmp_path, pairs):
        path = tmp_path / "training.json"
        TrainingStore(path).add_pairs(pairs[:4])
        reloaded = TrainingStore(path)
        assert [pair.id for pair in reloaded.get_training_data()] == ["c0_p0", "c1_p1", "c2_p2", "c3_p3"]
        assert json.loads(path.read_text(encoding="utf-8"))["pairs"][0]["customerMessage"] == "câu hỏi 0"

    def test_invalid_entries_are_skipped(self, tmp_path):
        path = tmp_path / "training.json"
        path.write_text(
            json.dumps({"pairs": [{"customerMessage": "hi"}, {"customerMessage": "hi", "employeeResponse": "chào bạn"}]}),
            encoding="utf-8",
        )
        assert TrainingStore(path).count() == 1

    def test_count_by_category_reports_all_keys(self):
        pairs = [
            TrainingPair(customer_message="a", employee_response="b", category="greeting"),
            TrainingPair(customer_message="a", employee_response="b"),
        ]
        assert count_by_category(pairs) == {
            "greeting": 1,
            "product": 0,
            "order": 0,
            "shipping": 0,
            "payment": 0,
            "other": 1,
        }


class TestConversationStore:
    """Test suite for ConversationStore."""

    def test_turns_are_trimmed_to_max(self, tmp_path):
        store = ConversationStore(tmp_path / "conv.json", max_turns=3)
        for i in range(5):
            store.add_turn("u1", "customer", f"m{i}")
        assert [turn.message for turn in store.get_history("u1")] == ["m2", "m3", "m4"]

    def test_employee_turn_clears_awaiting_human(self, tmp_path):
        store = ConversationStore(tmp_path / "conv.json")
        store.add_turn("u1", "customer", "mình muốn đổi hàng")
        store.mark_awaiting_human("u1")
        assert store.is_awaiting_human("u1") is True

        store.add_turn("u1", "employee", "Dạ bạn gửi mình mã đơn nhé")
        assert store.is_awaiting_human("u1") is False

    def test_automated_employee_turn_keeps_awaiting_human(self, tmp_path):
        store = ConversationStore(tmp_path / "conv.json")
        store.mark_awaiting_human("u1")
        store.add_turn("u1", "employee", "Chào mừng bạn đến với shop!", clear_awaiting=False)
        assert store.is_awaiting_human("u1") is True

    def test_persists_and_reloads(self, tmp_path):
        path = tmp_path / "conv.json"
        ConversationStore(path).add_turn("u1", "customer", "alo")
        history = ConversationStore(path).get_history("u1")
        assert [(turn.role, turn.message) for turn in history] == [("customer", "alo")]

    def test_concurrent_writers_keep_every_conversation(self, tmp_path):
        path = tmp_path / "conv.json"
        store = ConversationStore(path, max_conversations=1000)
        errors = []

        def chat(worker):
            try:
                for i in range(20):
                    store.add_turn(f"u{worker}_{i}", "customer", "alo")
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=chat, args=(worker,)) for worker in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(json.loads(path.read_text(encoding="utf-8"))["conversations"]) == 160
        assert not path.with_suffix(".tmp").exists()
        assert ConversationStore(path).get_history("u7_19")[0].message == "alo"

    def test_oldest_conversations_are_pruned(self, tmp_path):
        store = ConversationStore(tmp_path / "conv.json", max_conversations=2)
        with patch("mixer_backend.conversation_store.time.time", side_effect=[1.0, 2.0, 3.0]):
            store.add_turn("u1", "customer", "a")
            store.add_turn("u2", "customer", "b")
            store.add_turn("u3", "customer", "c")
        assert store.get_history("u1") == []
        assert store.get_history("u3")

    def test_unknown_role_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            ConversationStore(tmp_path / "conv.json").add_turn("u1", "bot", "hi")


class TestProductCatalog:
    """Test suite for ProductCatalog and parse_product."""

    def test_missing_file_is_empty(self, tmp_path):
        assert ProductCatalog(tmp_path / "products.json").list_products() == []

    def test_reloads_when_file_changes(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([{"name": "Áo thun", "price": 150000, "stock": 5}]), encoding="utf-8")
        catalog = ProductCatalog(path)
        assert [p.name for p in catalog.list_products()] == ["Áo thun"]

        path.write_text(json.dumps({"products": [{"name": "Quần short", "price": 200000}]}), encoding="utf-8")
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert [p.name for p in catalog.list_products()] == ["Quần short"]
        assert catalog.count() == 1

    def test_parse_product_accepts_loose_keys(self):
        product = parse_product({"Ten San Pham": "Váy hoa", "Gia": "320000", "So luong": -2, "sizes": "S, M"})
        assert product.name == "Váy hoa"
        assert product.price == 320000
        assert product.stock == 0
        assert product.sizes == ["S", "M"]

    def test_parse_product_rejects_rows_without_name(self):
        assert parse_product({"price": 1000}) is None
        assert parse_product("not a row") is None
