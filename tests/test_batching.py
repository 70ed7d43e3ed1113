"""Tests for deduplication, chunking and the in-flight registry."""

from lingoproxy.batching import BatchBuilder, chunk_strings, deduplicate, preprocess, reconstruct
from lingoproxy.inflight import InFlightStore
from lingoproxy.structures import Segment, SegmentKind


class TestDedupe:
    def test_first_seen_order_and_positions(self):
        result = deduplicate(["a", "b", "a", "c", "b"])

        assert result.unique == ["a", "b", "c"]
        assert result.index_map == {"a": [0, 2], "b": [1, 4], "c": [3]}

    def test_accepts_segments(self):
        segments = [Segment(kind=SegmentKind.TEXT, value="Hi"), Segment(kind=SegmentKind.TITLE, value="Hi")]
        assert deduplicate(segments).unique == ["Hi"]

    def test_reconstruct_expands_and_falls_back(self):
        values = ["Hello", "World", "Hello"]
        dedupe = deduplicate(values)

        assert reconstruct(values, dedupe, ["Hola", ""]) == ["Hola", "World", "Hola"]


class TestChunking:
    def test_item_limit(self):
        assert chunk_strings(["a", "b", "c"], max_items=2) == [["a", "b"], ["c"]]

    def test_size_limit_counts_utf8_bytes(self):
        # "éé" is four bytes.
        assert chunk_strings(["éé", "a"], max_chars=4) == [["éé"], ["a"]]
        assert chunk_strings(["ab", "cd"], max_chars=4) == [["ab", "cd"]]

    def test_oversized_string_travels_alone(self):
        long_text = "x" * 10
        assert BatchBuilder(max_chars=5).build([long_text, "y"]) == [[long_text], ["y"]]

    def test_empty_input(self):
        assert chunk_strings([]) == []

    def test_preprocess_chunks_unique_values(self):
        prepared = preprocess(["a", "a", "b"], max_items=1)

        assert prepared.total_unique == 2
        assert prepared.chunks == [["a"], ["b"]]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestInFlightStore:
    def test_key_format(self):
        assert InFlightStore.build(7, "de", "abc123") == "7:de:abc123"

    def test_claim_is_exclusive_until_deleted(self):
        store = InFlightStore(clock=FakeClock())

        assert store.claim("1:es:h")
        assert not store.claim("1:es:h")
        assert store.is_in_flight("1:es:h")
        store.delete("1:es:h")
        assert store.claim("1:es:h")

    def test_stale_entries_are_swept_lazily(self):
        clock = FakeClock()
        store = InFlightStore(clock=clock, cleanup_interval=60, max_age=300)
        store.set_in_flight("old")
        clock.now = 200
        store.set_in_flight("recent")

        clock.now = 400
        assert not store.is_in_flight("old")
        assert store.is_in_flight("recent")
        assert store.keys() == ["recent"]

    def test_no_sweep_within_interval(self):
        clock = FakeClock()
        store = InFlightStore(clock=clock, cleanup_interval=60, max_age=1)
        store.set_in_flight("k")

        clock.now = 30
        assert store.is_in_flight("k")
        assert len(store) == 1
