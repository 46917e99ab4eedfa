# test_chunking_engine.py
"""
Unit tests for the chunking engine: the strategy cascade, the single-chunk
base case, oversized blocks and chunk metadata.
"""

import pytest

from progressive_render.app.core.Rendering.analyzer import StructuralAnalyzer
from progressive_render.app.core.Rendering.base import ChunkingStrategy, Document, PriorityTier
from progressive_render.app.core.Rendering.chunker import ChunkingEngine, slice_fixed
from progressive_render.app.core.Rendering.exceptions import InvalidInputError
from progressive_render.app.core.Rendering.markup import utf8_len
from progressive_render.app.core.Rendering.parsers import TreeStructuralParser


@pytest.fixture
def engine(render_config):
    return ChunkingEngine(render_config(target_chunk_byte_size=10 * 1024))


class TestChunkingEngine:
    """Test chunk planning and materialization."""

    def test_small_document_is_single_chunk(self, engine, landing_page):
        doc = Document.from_text(landing_page)
        chunks = engine.split(doc)

        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.strategy is ChunkingStrategy.SINGLE
        assert chunk.markup == landing_page
        assert chunk.is_first and chunk.is_last
        assert chunk.meta() == {"chunkIndex": 0, "totalChunks": 1, "isFirstChunk": True, "isLastChunk": True}

    def test_structural_node_grouping(self, engine, make_html):
        doc = Document.from_text(make_html(sections=50, section_bytes=1000))
        chunks = engine.split(doc, 10 * 1024)

        assert len(chunks) == 5
        assert all(c.strategy is ChunkingStrategy.STRUCTURAL_NODE for c in chunks)
        assert all(c.byte_size <= 10 * 1024 for c in chunks)
        # Every chunk is a standalone document with the original skeleton
        for chunk in chunks:
            assert chunk.markup.startswith(doc.preamble)
            assert chunk.markup.endswith(doc.closing)
            assert chunk.body.count("<section") == chunk.body.count("</section>")

    def test_chunk_metadata(self, engine, make_html):
        doc = Document.from_text(make_html(sections=50, section_bytes=1000))
        chunks = engine.split(doc, 10 * 1024)

        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert all(c.total == len(chunks) for c in chunks)
        assert [c.is_first for c in chunks] == [True] + [False] * (len(chunks) - 1)
        assert [c.is_last for c in chunks] == [False] * (len(chunks) - 1) + [True]
        assert chunks[0].start == doc.body_start
        assert chunks[-1].end == doc.body_end
        for previous, current in zip(chunks, chunks[1:]):
            assert previous.end == current.start

    def test_content_preservation(self, engine, make_html):
        doc = Document.from_text(make_html(sections=37, section_bytes=777))
        chunks = engine.split(doc, 4096)
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_falls_through_to_semantic_tags(self, render_config, make_html):
        engine = ChunkingEngine(render_config(tree_parse_max_bytes=1000))
        doc = Document.from_text(make_html(sections=50, section_bytes=1000))
        plan = engine.plan(doc, 10 * 1024)

        assert plan.strategy is ChunkingStrategy.SEMANTIC_TAG
        assert plan.total == 5
        chunks = list(engine.iter_chunks(doc, plan))
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_single_top_level_element_falls_through_to_fixed_size(self, engine):
        html = "<html><body><div>" + ("<p>lorem ipsum</p>" * 400) + "</div></body></html>"
        doc = Document.from_text(html)
        chunks = engine.split(doc, 1024)

        assert all(c.strategy is ChunkingStrategy.FIXED_SIZE for c in chunks)
        assert len(chunks) > 1
        assert all(c.byte_size <= 1024 for c in chunks)
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_text_only_body_uses_fixed_size(self, engine):
        html = "<html><body>" + ("plain words é " * 1000) + "</body></html>"
        doc = Document.from_text(html)
        chunks = engine.split(doc, 2048)

        assert chunks[0].strategy is ChunkingStrategy.FIXED_SIZE
        assert all(c.byte_size == utf8_len(c.body) for c in chunks)
        assert all(c.byte_size <= 2048 for c in chunks)
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_fragment_without_body(self, engine):
        fragment = "".join(f"<section><p>{'y' * 200}</p></section>" for _ in range(20))
        doc = Document.from_text(fragment)
        chunks = engine.split(doc, 1024)

        assert len(chunks) > 1
        assert chunks[0].strategy is ChunkingStrategy.SEMANTIC_TAG
        assert "".join(c.markup for c in chunks) == fragment

    def test_oversized_block_is_sliced(self, engine, make_html):
        from_html = make_html(sections=3, section_bytes=500)
        big = '<section id="big"><p>' + ("z" * 7000) + "</p></section>\n"
        html = from_html.replace("</body>", big + "</body>")
        doc = Document.from_text(html)
        chunks = engine.split(doc, 2048)

        assert all(c.byte_size <= 2048 for c in chunks)
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body
        big_pieces = [c for c in chunks if "z" in c.body]
        assert len(big_pieces) >= 4

    def test_block_within_tolerance_stays_whole(self, render_config):
        engine = ChunkingEngine(render_config(overflow_tolerance=0.25))
        body = (
            "<section><p>" + "a" * 600 + "</p></section>\n"
            + '<section id="wide"><p>' + "b" * 2200 + "</p></section>\n"
            + "<section><p>" + "c" * 600 + "</p></section>\n"
        )
        doc = Document.from_text(f"<html><body>\n{body}</body></html>")
        chunks = engine.split(doc, 2048)

        wide = [c for c in chunks if "b" * 10 in c.body]
        assert len(wide) == 1
        assert wide[0].body.startswith('<section id="wide">')
        assert 2048 < wide[0].byte_size <= int(2048 * 1.25)

    def test_plan_is_deterministic(self, engine, make_html):
        doc = Document.from_text(make_html(sections=23, section_bytes=900))
        first = engine.plan(doc, 3000)
        second = engine.plan(doc, 3000)

        assert first.strategy is second.strategy
        assert [(s.start, s.end) for s in first.spans] == [(s.start, s.end) for s in second.spans]

    @pytest.mark.parametrize("target", [0, -5, True, 1.5, "1024"])
    def test_invalid_target(self, engine, landing_page, target):
        with pytest.raises(InvalidInputError):
            engine.plan(Document.from_text(landing_page), target)

    def test_chunks_carry_priority(self, engine, landing_page):
        doc = Document.from_text(landing_page)
        priority_map = StructuralAnalyzer().analyze(doc)
        chunks = engine.split(doc, 40, priority_map=priority_map)

        assert len(chunks) > 2
        assert chunks[0].priority is PriorityTier.CRITICAL
        assert chunks[-1].priority is PriorityTier.LOW
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_chunks_default_to_high_priority(self, engine, make_html):
        doc = Document.from_text(make_html(sections=10, section_bytes=1000))
        chunks = engine.split(doc, 2048)
        assert all(c.priority is PriorityTier.HIGH for c in chunks)

    def test_describe(self, engine, make_html):
        doc = Document.from_text(make_html(sections=50, section_bytes=1000))
        description = engine.describe(engine.plan(doc, 10 * 1024))

        assert description["strategy"] == "structural_node"
        assert description["total_chunks"] == 5
        assert description["max_bytes"] <= 10 * 1024

    def test_body_attribute_with_quoted_gt(self, engine, make_html):
        html = make_html(sections=50, section_bytes=1000).replace("<body>", '<body data-x="a>b">')
        doc = Document.from_text(html)
        chunks = engine.split(doc, 10 * 1024)

        assert len(chunks) == 5
        for chunk in chunks:
            assert chunk.markup.startswith(doc.preamble)
            assert doc.preamble.endswith('<body data-x="a>b">')
        assert ChunkingEngine.reconstruct_body(chunks, doc) == doc.body

    def test_materialize_takes_body_from_given_markup(self, engine, make_html):
        doc = Document.from_text(make_html(sections=50, section_bytes=1000))
        plan = engine.plan(doc, 10 * 1024)
        staged = doc.preamble + "<p>read back</p>" + doc.closing

        chunk = engine.materialize(doc, plan, 2, markup=staged)

        assert chunk.markup is staged
        assert chunk.body == "<p>read back</p>"
        assert (chunk.start, chunk.end) == (plan.spans[2].start, plan.spans[2].end)

    def test_single_chunk_body_is_document_body(self, engine, landing_page):
        doc = Document.from_text(landing_page)
        chunk = engine.split(doc)[0]
        assert chunk.markup is doc.text
        assert chunk.body == doc.body


class TestSliceFixed:
    """Test byte-budget slicing."""

    def test_pieces_cover_region(self):
        text = "<p>aaa</p>" * 50
        pieces = slice_fixed(text, 0, len(text), 25)

        assert pieces[0][0] == 0
        assert pieces[-1][1] == len(text)
        for (_, end), (start, _) in zip(pieces, pieces[1:]):
            assert end == start

    def test_cuts_after_closing_tags(self):
        text = "<p>aaa</p>" * 50
        for start, end in slice_fixed(text, 0, len(text), 25):
            assert text[end - 4:end] == "</p>"
            assert end - start <= 25

    def test_respects_multibyte_budget(self):
        text = "中" * 100
        pieces = slice_fixed(text, 0, len(text), 10)
        assert all(utf8_len(text[s:e]) <= 10 for s, e in pieces)
        assert "".join(text[s:e] for s, e in pieces) == text

    def test_budget_smaller_than_a_tag_still_progresses(self):
        text = "<div>" + "y" * 100 + "</div>"
        pieces = slice_fixed(text, 0, len(text), 3)
        assert "".join(text[s:e] for s, e in pieces) == text
        assert all(e > s for s, e in pieces)

    def test_does_not_split_an_open_tag_when_avoidable(self):
        text = "x" * 18 + '<span class="k">' + "y" * 30
        pieces = slice_fixed(text, 0, len(text), 24)
        assert pieces[0] == (0, 18)


class TestTreeParserReuse:
    """Test sharing one tree parse between analysis and chunking."""

    @pytest.fixture
    def parse_calls(self, monkeypatch):
        from bs4 import BeautifulSoup

        from progressive_render.app.core.Rendering import parsers

        calls = []

        def counting_soup(*args, **kwargs):
            calls.append(1)
            return BeautifulSoup(*args, **kwargs)

        monkeypatch.setattr(parsers, "BeautifulSoup", counting_soup)
        return calls

    def test_reused_tree_serves_analysis_and_chunking(self, parse_calls, render_config, make_html):
        doc = Document.from_text(make_html(sections=50, section_bytes=1000, extra_body="<nav><a>Home</a></nav>\n"))
        parser = TreeStructuralParser(reuse_tree=True)

        priority_map = StructuralAnalyzer(tree_parser=parser).analyze(doc)
        plan = ChunkingEngine(render_config(), tree_parser=parser).plan(doc, 10 * 1024)

        assert not priority_map.is_empty
        assert plan.strategy is ChunkingStrategy.STRUCTURAL_NODE
        assert len(parse_calls) == 1

        parser.release()
        parser.parse(doc)
        assert len(parse_calls) == 2

    def test_tree_is_not_kept_by_default(self, parse_calls, make_html):
        doc = Document.from_text(make_html(sections=5, section_bytes=200))
        parser = TreeStructuralParser()
        parser.parse(doc)
        parser.parse(doc)
        assert len(parse_calls) == 2

    def test_other_document_is_parsed_again(self, parse_calls, make_html):
        parser = TreeStructuralParser(reuse_tree=True)
        parser.parse(Document.from_text(make_html(sections=5, section_bytes=200)))
        parser.parse(Document.from_text(make_html(sections=6, section_bytes=200)))
        assert len(parse_calls) == 2
