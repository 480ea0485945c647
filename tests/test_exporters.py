from datetime import datetime
from unittest.mock import patch

import pytest

from episode_graph import (
    EpisodeRecord,
    LinkGraph,
    build_graph,
    build_title_lookup,
    note_filename,
    render_dot,
    render_graphviz,
    render_note,
    write_link_graph_dot,
    write_notes,
)

A_URL = "https://show.example.com/episode/1"
B_URL = "https://show.example.com/episode/2"


def make_record(n, url, title, links, body="Some text."):
    return EpisodeRecord(
        id=n,
        url=url,
        title=title,
        published_at=datetime(2022, 5, n),
        links=links,
        article_text=body,
    )


@pytest.fixture
def foo_bar_records():
    return [
        make_record(1, A_URL, "Foo", [B_URL, "https://example.com/x"]),
        make_record(2, B_URL, "Bar", []),
    ]


class TestDotExporter:

    def test_cycle_export_has_one_statement_per_edge(self):
        graph = LinkGraph()
        for source, target in [("1", "2"), ("1", "2"), ("2", "3"), ("3", "1")]:
            graph.add_edge(source, target)

        dot = render_dot(graph)
        edge_lines = [line for line in dot.splitlines() if "->" in line]

        assert len(edge_lines) == 4
        assert edge_lines.count('  "1" -> "2";') == 2

    def test_framing_and_labels(self, foo_bar_records):
        dot = render_dot(build_graph(foo_bar_records), name="Show")
        lines = dot.splitlines()

        assert lines[0] == 'digraph "Show" {'
        assert lines[-1] == "}"
        assert f'  "{A_URL}" [label="Foo"];' in lines
        assert f'  "{B_URL}" [label="Bar"];' in lines
        assert f'  "{A_URL}" -> "https://example.com/x";' in lines

    def test_unlabeled_vertices_have_no_statement(self, foo_bar_records):
        dot = render_dot(build_graph(foo_bar_records))

        assert '"https://example.com/x" [' not in dot

    def test_quotes_and_newlines_are_escaped(self):
        graph = LinkGraph()
        graph.label_vertex("k", 'Say "hi"\nback\\slash')

        dot = render_dot(graph)

        assert '"k" [label="Say \\"hi\\"\\nback\\\\slash"];' in dot

    def test_write_creates_parent_dirs(self, tmp_path, foo_bar_records):
        out = tmp_path / "nested" / "graph.dot"
        write_link_graph_dot(out, build_graph(foo_bar_records))

        assert out.read_text(encoding="utf-8").startswith('digraph "EpisodeLinks" {')

    def test_render_graphviz_invokes_dot(self, tmp_path):
        dot_path = tmp_path / "graph.dot"
        dot_path.write_text("digraph {}\n", encoding="utf-8")

        with patch("episode_graph.subprocess.run") as mock_run:
            out = render_graphviz(dot_path, "svg")

        assert out == tmp_path / "graph.svg"
        cmd = mock_run.call_args.args[0]
        assert cmd == ["dot", "-Tsvg", str(dot_path), "-o", str(out)]
        assert mock_run.call_args.kwargs["check"] is True


class TestNoteExporter:

    def test_mentions_resolve_known_titles(self, foo_bar_records):
        titles = build_title_lookup(foo_bar_records)
        note = render_note(foo_bar_records[0], titles)

        assert note.startswith("# Foo\n")
        assert "Some text." in note
        mentions = note.split("## Mentions", 1)[1]
        assert "- [[Bar]]" in mentions
        assert "- [[https://example.com/x]]" in mentions

    def test_note_without_links_has_empty_mentions(self, foo_bar_records):
        titles = build_title_lookup(foo_bar_records)
        note = render_note(foo_bar_records[1], titles)

        assert note.rstrip().endswith("## Mentions")
        assert "[[" not in note

    def test_mentions_keep_order_and_duplicates(self):
        record = make_record(3, A_URL, "Foo", ["https://z.example/", None, B_URL, B_URL])
        note = render_note(record, {B_URL: "Bar"})
        mention_lines = [line for line in note.splitlines() if line.startswith("- [[")]

        assert mention_lines == ["- [[https://z.example/]]", "- [[Bar]]", "- [[Bar]]"]

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("Episode 12: The Return", "Episode 12- The Return"),
            ('a/b\\c*d?e"f<g>h|i', "a-b-c-d-e-f-g-h-i"),
            ("  spaced   out  ", "spaced out"),
            ("", "untitled"),
        ],
    )
    def test_note_filename_sanitizes(self, title, expected):
        assert note_filename(title) == expected

    def test_write_notes(self, tmp_path, foo_bar_records):
        written = write_notes(foo_bar_records, tmp_path / "notes")

        assert [p.name for p in written] == ["Foo.md", "Bar.md"]
        assert "[[Bar]]" in (tmp_path / "notes" / "Foo.md").read_text(encoding="utf-8")

    def test_colliding_names_warn_instead_of_overwriting(self, tmp_path, capsys):
        records = [
            make_record(1, A_URL, "Q: A", [], body="first"),
            make_record(2, B_URL, "Q/ A", [], body="second"),
        ]

        written = write_notes(records, tmp_path)

        assert [p.name for p in written] == ["Q- A.md", "Q- A (2).md"]
        assert "first" in written[0].read_text(encoding="utf-8")
        assert "second" in written[1].read_text(encoding="utf-8")
        assert "collides" in capsys.readouterr().err

    def test_suffixed_name_never_overwrites_an_existing_note(self, tmp_path, capsys):
        records = [
            make_record(1, "https://show.example.com/episode/1", "Intro (2)", [], body="original"),
            make_record(3, "https://show.example.com/episode/3", "Intro", [], body="third"),
            make_record(2, "https://show.example.com/episode/2", "Intro", [], body="second"),
        ]

        written = write_notes(records, tmp_path)

        assert [p.name for p in written] == ["Intro (2).md", "Intro.md", "Intro (2-2).md"]
        assert len(set(written)) == 3
        assert "original" in (tmp_path / "Intro (2).md").read_text(encoding="utf-8")
        assert "second" in (tmp_path / "Intro (2-2).md").read_text(encoding="utf-8")
        assert "collides" in capsys.readouterr().err

    def test_colliding_records_with_same_id_get_distinct_files(self, tmp_path):
        records = [
            make_record(1, "https://show.example.com/a", "Recap", [], body="a"),
            make_record(1, "https://show.example.com/b", "Recap", [], body="b"),
            make_record(1, "https://show.example.com/c", "Recap", [], body="c"),
        ]

        written = write_notes(records, tmp_path)

        assert [p.name for p in written] == ["Recap.md", "Recap (1).md", "Recap (1-2).md"]

    def test_untitled_episode_uses_url_slug(self, tmp_path):
        record = make_record(7, "https://show.example.com/episode/7", "", [])

        written = write_notes([record], tmp_path)

        assert written[0].name == "7.md"
        assert written[0].read_text(encoding="utf-8").startswith("# 7\n")
