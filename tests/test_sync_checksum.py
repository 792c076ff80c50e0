"""Tests for sync content normalisation and hashing."""

from notesync.sync.checksum import content_hash, normalise_content


class TestNormaliseContent:
    """Tests for normalise_content()."""

    def test_strips_bom(self):
        assert normalise_content("\ufeff# Title") == "# Title"

    def test_crlf_to_lf(self):
        assert normalise_content("a\r\nb\r\n") == "a\nb\n"

    def test_trailing_whitespace_kept(self):
        assert normalise_content("a  \nb\t\n") == "a  \nb\t\n"

    def test_blank_lines_kept(self):
        assert normalise_content("\na\n\nb\n\n") == "\na\n\nb\n\n"


class TestContentHash:
    """Tests for content_hash()."""

    def test_hex_digest(self):
        digest = content_hash("hello")
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)

    def test_deterministic(self):
        assert content_hash("# Note\nbody") == content_hash("# Note\nbody")

    def test_eol_and_bom_are_not_divergence(self):
        assert content_hash("a\nb\n") == content_hash("\ufeffa\r\nb\r\n")

    def test_hard_line_break_is_divergence(self):
        assert content_hash("line  \nnext") != content_hash("line\nnext")

    def test_trailing_newline_is_divergence(self):
        assert content_hash("a\n") != content_hash("a")

    def test_different_content_differs(self):
        assert content_hash("a\nb") != content_hash("a\nc")

    def test_indentation_matters(self):
        assert content_hash("  a") != content_hash("a")
