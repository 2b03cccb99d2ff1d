import pytest

from promptgraph.core.Cache import CacheEntry, ResponseCache, fingerprint, node_of
from promptgraph.core.Errors import MalformedArtifactError
from promptgraph.core.Expander import PromptInstance


def entry(node_id, value, kind="text"):
    return CacheEntry(node_id=node_id, kind=kind, value=value, prompt="p", model="gpt2", timestamp=1)


class TestFingerprint:

    def setup_method(self):
        self.instance = PromptInstance("Translate Paris to French", {"city": "Paris"})

    def test_deterministic(self):
        assert fingerprint("B", self.instance, "gpt2") == fingerprint("B", self.instance, "gpt2")

    def test_equal_inputs_built_separately(self):
        other = PromptInstance("Translate Paris to French", {"city": "Paris"})
        assert fingerprint("B", self.instance) == fingerprint("B", other)

    def test_history_order_does_not_matter(self):
        a = PromptInstance("x", {"a": "1", "b": "2"})
        b = PromptInstance("x", {"b": "2", "a": "1"})
        assert fingerprint("n", a) == fingerprint("n", b)

    @pytest.mark.parametrize("node_id,instance,model,image", [
        ("C", PromptInstance("Translate Paris to French", {"city": "Paris"}), "gpt2", None),
        ("B", PromptInstance("Translate Tokyo to French", {"city": "Tokyo"}), "gpt2", None),
        ("B", PromptInstance("Translate Paris to French", {"city": "Paris"}), "t5-base", None),
        ("B", PromptInstance("Translate Paris to French", {"city": "Paris"}), "gpt2", "data:image/png;base64,AA=="),
    ])
    def test_any_change_changes_key(self, node_id, instance, model, image):
        base = fingerprint("B", self.instance, "gpt2")
        assert fingerprint(node_id, instance, model, image) != base

    def test_key_carries_node_id(self):
        key = fingerprint("node-7", self.instance)
        assert node_of(key) == "node-7"


class TestResponseCache:

    def setup_method(self):
        self.cache = ResponseCache()

    def test_get_missing(self):
        assert self.cache.get("A::x") is None

    def test_first_writer_wins(self):
        assert self.cache.put("A::1", entry("A", "first")) is True
        assert self.cache.put("A::1", entry("A", "second")) is False
        assert self.cache.get("A::1").value == "first"

    def test_put_stamps_timestamp(self):
        e = CacheEntry(node_id="A", kind="text", value="v")
        self.cache.put("A::1", e)
        assert self.cache.get("A::1").timestamp > 0

    def test_export_for_filters_by_node(self):
        self.cache.put("A::1", entry("A", "a"))
        self.cache.put("B::1", entry("B", "b"))
        self.cache.put("C::1", entry("C", "c"))
        exported = self.cache.export_for(["A", "C"])
        assert set(exported) == {"A::1", "C::1"}
        assert exported["A::1"]["value"] == "a"

    def test_import_is_additive_and_local_wins(self):
        self.cache.put("A::1", entry("A", "local"))
        added = self.cache.import_entries({
            "A::1": entry("A", "remote").to_dict(),
            "A::2": entry("A", "new").to_dict(),
        })
        assert added == 1
        assert self.cache.get("A::1").value == "local"
        assert self.cache.get("A::2").value == "new"
        assert len(self.cache) == 2

    def test_import_round_trip(self):
        self.cache.put("A::1", entry("A", "v"))
        other = ResponseCache()
        other.import_entries(self.cache.export_all())
        assert other.get("A::1") == self.cache.get("A::1")

    def test_malformed_fragment_changes_nothing(self):
        self.cache.put("A::1", entry("A", "local"))
        fragment = {
            "A::2": entry("A", "ok").to_dict(),
            "A::3": {"node_id": "A", "kind": "banana", "value": 1},
        }
        with pytest.raises(MalformedArtifactError):
            self.cache.import_entries(fragment)
        assert len(self.cache) == 1
        assert self.cache.get("A::2") is None

    @pytest.mark.parametrize("fragment", [
        [],
        {"no-separator": {"node_id": "A", "kind": "text", "value": 1}},
        {"A::1": {"kind": "text", "value": 1}},
        {"A::1": "not an object"},
        {"A::1": {"node_id": "A", "kind": "text", "value": 1, "timestamp": "soon"}},
        {"A::1": {"node_id": "A", "kind": "text", "value": 1, "timestamp": [1]}},
    ])
    def test_malformed_fragments_rejected(self, fragment):
        with pytest.raises(MalformedArtifactError):
            self.cache.import_entries(fragment)

    def test_entries_for_and_clear(self):
        self.cache.put("A::1", entry("A", "a"))
        self.cache.put("B::1", entry("B", "b"))
        assert [e.value for e in self.cache.entries_for("A")] == ["a"]
        self.cache.clear()
        assert len(self.cache) == 0

    def test_imported_error_entries_are_skipped(self):
        added = self.cache.import_entries({
            "A::1": {"node_id": "A", "kind": "error", "value": "rate limited"},
            "A::2": entry("A", "fine").to_dict(),
        })
        assert added == 1
        assert "A::1" not in self.cache
        assert self.cache.get("A::2").value == "fine"
