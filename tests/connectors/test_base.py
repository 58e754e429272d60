"""Tests for the connector data model and SourceConnector helpers."""

import base64
from pathlib import Path

from tranga_cli.connectors.base import Chapter, ConnectorInfo, Publication, safe_path_name


class TestSafePathName:
    """Tests for safe_path_name."""

    def test_strips_illegal_characters(self) -> None:
        assert safe_path_name('Who/What: "Why"?') == "WhoWhat Why"

    def test_keeps_allowed_punctuation(self) -> None:
        assert safe_path_name("Vol.1 - It's (not) over, ~again!") == "Vol.1 - It's (not) over, ~again!"

    def test_trailing_dots_removed(self) -> None:
        assert safe_path_name("To be continued...") == "To be continued"


class TestConnectorInfo:
    def test_display_name_defaults_to_name(self) -> None:
        assert ConnectorInfo(name="MangaDex").display_name == "MangaDex"
        assert ConnectorInfo(name="MangaDex", display_name="Manga Dex").display_name == "Manga Dex"


class TestPublication:
    """Tests for derived publication fields."""

    def test_folder_name_from_sort_name(self) -> None:
        publication = Publication(sort_name="Frieren: Beyond Journey's End", publication_id="x")
        assert publication.folder_name == "Frieren Beyond Journey's End"

    def test_explicit_folder_name_kept(self) -> None:
        publication = Publication(sort_name="Frieren", publication_id="x", folder_name="Sousou no Frieren")
        assert publication.folder_name == "Sousou no Frieren"

    def test_internal_id(self) -> None:
        """The internal id encodes the lowercase letters of the title and the year."""
        publication = Publication(sort_name="One Piece!", publication_id="x", year=1997)
        assert publication.internal_id == base64.b64encode(b"onepiece1997").decode("ascii")

    def test_internal_id_without_year(self) -> None:
        publication = Publication(sort_name="Berserk", publication_id="x")
        assert base64.b64decode(publication.internal_id) == b"berserk"

    def test_create_publication_folder(self, tmp_path: Path) -> None:
        folder = Publication(sort_name="Test Manga", publication_id="x").create_publication_folder(tmp_path)

        assert folder == tmp_path / "Test Manga"
        assert folder.is_dir()

    def test_dict_round_trip(self) -> None:
        publication = Publication(
            sort_name="Test Manga",
            publication_id="pub-1",
            authors=["Someone"],
            links={"AniList": "https://anilist.co/manga/1"},
            year=2020,
            ignore_chapters_below=12.5,
        )
        assert Publication.from_dict(publication.to_dict()) == publication


class TestChapter:
    """Tests for chapter numbers and file names."""

    def test_number(self) -> None:
        assert Chapter("p", "12").number == 12.0
        assert Chapter("p", "10.5").number == 10.5
        assert Chapter("p", "10,5").number == 10.5

    def test_number_not_numeric(self) -> None:
        assert Chapter("p", "Extra").number is None

    def test_file_name(self) -> None:
        assert Chapter("p", "3").file_name == "Ch.3"
        assert Chapter("p", "3", volume_number="1").file_name == "Vol.1 Ch.3"
        assert Chapter("p", "3", volume_number="1", name="The End?").file_name == "Vol.1 Ch.3 - The End"


class TestSourceConnector:
    """Tests for the helpers shared by every source connector."""

    def test_chapter_archive_path(self, source, publication: Publication, library_dir: Path) -> None:
        path = source.chapter_archive_path(publication, Chapter("pub-1", "7", name="Storm"))
        assert path == library_dir / "Test Manga" / "Ch.7 - Storm.cbz"

    def test_new_chapters_skips_downloaded(self, source, publication: Publication) -> None:
        chapters = [Chapter("pub-1", "1"), Chapter("pub-1", "2")]
        existing = source.chapter_archive_path(publication, chapters[0])
        existing.parent.mkdir(parents=True)
        existing.write_bytes(b"cbz")

        assert source.new_chapters(publication, chapters) == [chapters[1]]

    def test_new_chapters_threshold(self, source) -> None:
        """Numbered chapters below the threshold are skipped; unnumbered are kept."""
        publication = Publication(sort_name="Test Manga", publication_id="pub-1", ignore_chapters_below=5)
        chapters = [Chapter("pub-1", "4.9"), Chapter("pub-1", "5"), Chapter("pub-1", "Oneshot")]

        selected = source.new_chapters(publication, chapters)

        assert [c.chapter_number for c in selected] == ["5", "Oneshot"]

    def test_get_publication(self, source) -> None:
        assert source.get_publication("pub-2").sort_name == "Other Manga"
        assert source.get_publication("nope") is None

    def test_configure_merges(self, source) -> None:
        source.configure({"language": "de"})
        source.configure({"quality": "high"})

        assert source.config == {"language": "de", "quality": "high"}

    def test_name_from_info(self, source) -> None:
        assert source.name == "FakeSource"
