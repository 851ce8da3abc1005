import unittest

from bookrag.chunking import ChunkingConfig, ChunkingEngine, clean_heading, parse_label, parse_unit_number
from bookrag.config import ChunkingStrategy
from bookrag.errors import InvalidInputError
from bookrag.models import OutlineSection, OutlineUnit


def _body(chunk):
    return chunk.text.split("\n", 1)[1]


class TestOutlineChunking(unittest.TestCase):
    def setUp(self):
        self.engine = ChunkingEngine(ChunkingConfig(strategy=ChunkingStrategy.AUTO, max_chunk_chars=50))
        self.text = "\n".join(
            [
                "Rivers carve valleys over thousands of years.",
                "Deltas form where rivers meet the sea.",
                "Floods deposit fertile silt on plains.",
                "Monsoon rains arrive between June and September.",
                "Deserts receive less than 250 mm of rain yearly.",
                "Highlands are cooler than the lowlands nearby.",
            ]
        )
        self.outline = (
            OutlineUnit("Unit 1: Rivers", 1, 1),
            OutlineUnit(
                "Unit 2: Climate",
                2,
                2,
                sub_chapters=(
                    OutlineSection("Rain", 2, 2),
                ),
            ),
        )

    def test_chunks_are_bounded_and_non_empty(self):
        chunks = self.engine.chunk(self.text, self.outline, document_id="doc-1")
        self.assertTrue(chunks)
        for chunk in chunks:
            self.assertLessEqual(len(chunk.text), 50)
            self.assertTrue(chunk.text.strip())
            self.assertEqual(chunk.document_id, "doc-1")

    def test_chunking_is_deterministic(self):
        first = self.engine.chunk(self.text, self.outline, document_id="doc-1")
        second = self.engine.chunk(self.text, self.outline, document_id="doc-1")
        self.assertEqual(first, second)

    def test_page_ranges_map_to_line_slices(self):
        chunks = self.engine.chunk(self.text, self.outline, document_id="doc-1")
        unit_one = "".join(_body(c) for c in chunks if c.unit_title == "Unit 1: Rivers")
        self.assertIn("Rivers", unit_one)
        self.assertNotIn("Monsoon", unit_one)
        self.assertTrue(all(c.page_start == 1 and c.page_end == 1 for c in chunks if c.unit_title == "Unit 1: Rivers"))

    def test_ordinals_are_contiguous_per_unit(self):
        chunks = self.engine.chunk(self.text, self.outline, document_id="doc-1")
        for title in ("Unit 1: Rivers", "Unit 2: Climate"):
            ordinals = [c.index for c in chunks if c.unit_title == title]
            self.assertEqual(ordinals, list(range(1, len(ordinals) + 1)))

    def test_sub_chapter_prefix_and_attributes(self):
        chunks = [c for c in self.engine.chunk(self.text, self.outline) if c.unit_title == "Unit 2: Climate"]
        self.assertTrue(chunks)
        for chunk in chunks:
            self.assertTrue(chunk.text.startswith("Unit 2: Climate > Rain\n"))
            self.assertEqual(chunk.sub_chapter_title, "Rain")
            self.assertEqual(chunk.unit_number, 2)

    def test_outline_strategy_requires_outline(self):
        engine = ChunkingEngine(ChunkingConfig(strategy=ChunkingStrategy.OUTLINE))
        with self.assertRaises(InvalidInputError):
            engine.chunk("some text")

    def test_headings_strategy_ignores_outline(self):
        engine = ChunkingEngine(ChunkingConfig(strategy=ChunkingStrategy.HEADINGS, min_chunk_chars=1))
        chunks = engine.chunk(self.text, self.outline)
        self.assertEqual({c.unit_title for c in chunks}, {"Document"})
        self.assertTrue(all(c.page_start is None for c in chunks))

    def test_payload_omits_absent_optionals(self):
        chunk = self.engine.chunk(self.text, self.outline)[0]
        payload = chunk.payload()
        self.assertEqual(payload["normalized_unit_title"], "unit 1: rivers")
        self.assertNotIn("sub_chapter_title", payload)
        self.assertEqual(payload["chunk_index"], 1)


class TestHeadingChunking(unittest.TestCase):
    def setUp(self):
        self.engine = ChunkingEngine(
            ChunkingConfig(
                strategy=ChunkingStrategy.HEADINGS,
                window_max_words=10,
                window_overlap_words=3,
                min_chunk_chars=1,
            )
        )

    def test_sliding_window_overlap(self):
        words = " ".join(f"w{i}" for i in range(1, 26))
        chunks = self.engine.chunk(f"Front matter line\nUnit 1: Landforms\n{words}\n")
        bodies = [_body(c).split() for c in chunks]
        self.assertEqual(len(bodies), 4)
        self.assertEqual(bodies[0], [f"w{i}" for i in range(1, 11)])
        for previous, current in zip(bodies, bodies[1:]):
            self.assertLessEqual(len(previous), 10)
            self.assertEqual(current[:3], previous[-3:])
        self.assertEqual(bodies[-1][-1], "w25")
        self.assertEqual([c.index for c in chunks], [1, 2, 3, 4])

    def test_front_matter_is_ignored(self):
        chunks = self.engine.chunk("Copyright notice here\nUnit 1: Landforms\nmountains and valleys\n")
        self.assertEqual(len(chunks), 1)
        self.assertNotIn("Copyright", chunks[0].text)
        self.assertEqual(chunks[0].text, "Unit 1: Landforms\nmountains and valleys")

    def test_table_of_contents_merges_with_body_units(self):
        text = "\n".join(
            [
                "Contents",
                "Unit 1: Landforms .......... 3",
                "Unit 2: Climate .......... 9",
                "Unit 1: Landforms",
                "mountains rise high",
                "UNIT 2 Climate",
                "rain falls often",
            ]
        )
        chunks = self.engine.chunk(text)
        self.assertEqual([c.unit_title for c in chunks], ["Unit 1: Landforms", "Unit 2: Climate"])
        self.assertEqual([c.unit_number for c in chunks], [1, 2])
        self.assertIn("rain falls often", chunks[1].text)

    def test_sub_heading_flushes_window(self):
        text = "Unit 1: Landforms\nintro words here\n1.1 Mountains\nhigh peaks and ridges\n"
        chunks = self.engine.chunk(text)
        self.assertEqual(len(chunks), 2)
        self.assertEqual(chunks[0].sub_chapter_title, None)
        self.assertEqual(chunks[1].sub_chapter_title, "1.1 Mountains")
        self.assertTrue(chunks[1].text.startswith("Unit 1: Landforms > 1.1 Mountains\n"))

    def test_text_without_headings_becomes_single_unit(self):
        chunks = self.engine.chunk("just some plain text\nwithout any structure")
        self.assertEqual({c.unit_title for c in chunks}, {"Document"})

    def test_short_fragments_are_dropped(self):
        engine = ChunkingEngine(ChunkingConfig(strategy=ChunkingStrategy.HEADINGS, min_chunk_chars=30))
        chunks = engine.chunk("Unit 1: Landforms\ntiny\nUnit 2: Climate\n" + "long enough body text " * 3)
        self.assertEqual([c.unit_title for c in chunks], ["Unit 2: Climate"])

    def test_empty_text_yields_no_chunks(self):
        self.assertEqual(self.engine.chunk(""), [])


class TestHeadingHelpers(unittest.TestCase):
    def test_parse_label_accepts_digits_and_roman(self):
        self.assertEqual(parse_label("3"), 3)
        self.assertEqual(parse_label("iv"), 4)
        self.assertEqual(parse_label("XII"), 12)
        self.assertIsNone(parse_label("abc"))

    def test_parse_unit_number(self):
        self.assertEqual(parse_unit_number("Unit 7: Trade"), 7)
        self.assertEqual(parse_unit_number("chapter 12 Energy"), 12)
        self.assertIsNone(parse_unit_number("Introduction"))

    def test_clean_heading_strips_leaders(self):
        self.assertEqual(clean_heading("  Unit 3:   Soils ..... 41 "), "Unit 3: Soils")
        self.assertEqual(clean_heading("1.2 Rivers 14"), "1.2 Rivers")


if __name__ == "__main__":
    unittest.main()
