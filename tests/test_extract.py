import pytest

from docrun.errors import ExtractionError, StepNotFound
from docrun.extract import Document, StepExtractor, extract_steps, read_documents


def _doc(name, text):
    return Document(name=name, lines=text.splitlines())


def test_marked_block_becomes_step():
    reg = StepExtractor().extract([
        _doc("01-setup.md", "# Setup\n<!-- step: prerequisites -->\n```bash\nsudo apt-get install -y gcc\n```\n"),
    ])
    step = reg.lookup("prerequisites")
    assert step.body == "sudo apt-get install -y gcc"
    assert step.source == "01-setup.md"
    assert step.order == 0


def test_preamble_prepended_to_next_step():
    text = "\n".join([
        "Set this first:",
        "```bash",
        "export GREETING=hello",
        "```",
        "Then:",
        "<!-- step: greet -->",
        "```bash",
        'echo "$GREETING"',
        "```",
    ])
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert reg.ids() == ["greet"]
    assert reg.lookup("greet").body == 'export GREETING=hello\necho "$GREETING"'


def test_preamble_consumed_once():
    text = "\n".join([
        "```bash", "export A=1", "```",
        "<!-- step: one -->", "```bash", "echo one", "```",
        "<!-- step: two -->", "```bash", "echo two", "```",
    ])
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert reg.lookup("one").body == "export A=1\necho one"
    assert reg.lookup("two").body == "echo two"


def test_preamble_does_not_cross_documents():
    a = "<!-- step: first -->\n```bash\necho a\n```\n```bash\nexport LEFTOVER=1\n```\n"
    b = "<!-- step: second -->\n```bash\necho b\n```\n"
    reg = StepExtractor().extract([_doc("a.md", a), _doc("b.md", b)])
    assert reg.lookup("second").body == "echo b"
    assert "LEFTOVER" not in reg.lookup("first").body


def test_marker_without_block_is_ignored():
    text = "<!-- step: orphan -->\nJust prose.\n"
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert len(reg) == 0
    with pytest.raises(StepNotFound):
        reg.lookup("orphan")


def test_marker_binds_first_block_only():
    text = "\n".join([
        "<!-- step: build -->",
        "```bash", "make", "```",
        "```bash", "make install", "```",
        "<!-- step: test -->",
        "```bash", "make test", "```",
    ])
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert reg.lookup("build").body == "make"
    assert reg.lookup("test").body == "make install\nmake test"


def test_foreign_fences_are_ignored():
    text = "\n".join([
        "<!-- step: run -->",
        "```text",
        "```bash",
        "not a command",
        "```",
        "```bash",
        "echo real",
        "```",
    ])
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert reg.lookup("run").body == "echo real"


def test_configured_fence_languages():
    text = "<!-- step: s -->\n```sh\necho sh\n```\n"
    assert len(StepExtractor().extract([_doc("a.md", text)])) == 0
    reg = StepExtractor(fence_languages=["bash", "sh"]).extract([_doc("a.md", text)])
    assert reg.lookup("s").body == "echo sh"


def test_body_lines_kept_verbatim():
    text = "<!-- step: s -->\n```bash\nif true; then\n    echo indented\nfi\n\n```\n"
    reg = StepExtractor().extract([_doc("a.md", text)])
    assert reg.lookup("s").body == "if true; then\n    echo indented\nfi\n"


def test_unterminated_block_raises():
    text = "<!-- step: s -->\n```bash\necho never closed\n"
    with pytest.raises(ExtractionError, match="a.md:2"):
        StepExtractor().extract([_doc("a.md", text)])


def test_duplicate_id_last_body_first_position():
    a = "<!-- step: sdk-download -->\n```bash\necho first\n```\n<!-- step: build -->\n```bash\nmake\n```\n"
    b = "<!-- step: sdk-download -->\n```bash\necho second\n```\n"
    reg = StepExtractor().extract([_doc("a.md", a), _doc("b.md", b)])

    assert reg.ids() == ["sdk-download", "build"]
    step = reg.lookup("sdk-download")
    assert step.body == "echo second"
    assert step.source == "b.md"
    assert step.order == 0


def test_read_documents_lexical_order(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "02-build.md").write_text("<!-- step: build -->\n```bash\nmake\n```\n")
    (docs / "01-setup.md").write_text("<!-- step: setup -->\n```bash\n./setup.sh\n```\n")
    (docs / "notes.txt").write_text("<!-- step: ignored -->\n```bash\nnope\n```\n")

    assert [d.name for d in read_documents(docs)] == ["01-setup.md", "02-build.md"]
    assert extract_steps(docs).ids() == ["setup", "build"]


def test_missing_docs_dir(tmp_path):
    with pytest.raises(ExtractionError, match="not found"):
        read_documents(tmp_path / "nope")


def test_undecodable_document(tmp_path):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "bad.md").write_bytes(b"\xff\xfe\x00bad")
    with pytest.raises(ExtractionError, match="Cannot read"):
        read_documents(docs)
