"""Unit tests for portal.files: cart file lists and download planning."""

import pytest

from conftest import METADATA_URL, file_url
from encode_ko_audit.portal.files import (
    FilesList,
    accession_from_url,
    local_result_path,
    needs_download,
    plan_downloads,
    read_download_list,
    read_files_list,
    write_download_list,
)


# ---------------------------------------------------------------------------
# files.txt parsing
# ---------------------------------------------------------------------------

class TestReadFilesList:

    def test_metadata_url_on_first_line(self, tmp_path):
        path = tmp_path / "files.txt"
        path.write_text(f"{METADATA_URL}\n{file_url('ENCFF001AAA')}\n{file_url('ENCFF002BBB')}\n")

        listing = read_files_list(path)

        assert listing.metadata_url == METADATA_URL
        assert listing.file_urls == [file_url("ENCFF001AAA"), file_url("ENCFF002BBB")]

    def test_blank_lines_and_whitespace_ignored(self, tmp_path):
        path = tmp_path / "files.txt"
        path.write_text(f"\n  {METADATA_URL}  \n\n{file_url('ENCFF001AAA')}\n   \n")

        listing = read_files_list(path)

        assert listing.metadata_url == METADATA_URL
        assert listing.file_urls == [file_url("ENCFF001AAA")]

    def test_without_metadata_url(self, tmp_path):
        path = tmp_path / "files.txt"
        path.write_text(f"{file_url('ENCFF001AAA')}\n")

        listing = read_files_list(path)

        assert listing.metadata_url is None
        assert listing.accessions() == ["ENCFF001AAA"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_files_list(tmp_path / "nope.txt")


class TestAccessionFromUrl:

    def test_files_segment(self):
        assert accession_from_url(file_url("ENCFF123XYZ")) == "ENCFF123XYZ"

    def test_bare_filename(self):
        assert accession_from_url("https://example.org/dl/ENCFF123XYZ.tsv.gz") == "ENCFF123XYZ"

    def test_relative_path(self):
        assert accession_from_url("/files/ENCFF123XYZ/@@download/ENCFF123XYZ.tsv") == "ENCFF123XYZ"

    def test_no_accession(self):
        with pytest.raises(ValueError, match="No file accession"):
            accession_from_url("https://example.org/readme.txt")

    def test_accessions_skip_unparseable_urls(self):
        listing = FilesList(file_urls=[file_url("ENCFF001AAA"), "https://example.org/x.txt"])
        assert listing.accessions() == ["ENCFF001AAA"]


# ---------------------------------------------------------------------------
# Download planning
# ---------------------------------------------------------------------------

class TestPlanDownloads:

    def _listing(self, *accessions):
        return FilesList(metadata_url=METADATA_URL, file_urls=[file_url(a) for a in accessions])

    def test_only_wanted_and_missing(self, tmp_path):
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "ENCFF001AAA.tsv").write_text("content\n")

        urls = plan_downloads(
            self._listing("ENCFF001AAA", "ENCFF002BBB", "ENCFF003CCC"),
            wanted_accessions=["ENCFF001AAA", "ENCFF002BBB"],
            data_dir=data_dir,
        )

        assert urls == [file_url("ENCFF002BBB")]

    def test_empty_local_file_is_refetched(self, tmp_path):
        (tmp_path / "ENCFF001AAA.tsv").write_text("")

        urls = plan_downloads(self._listing("ENCFF001AAA"), ["ENCFF001AAA"], tmp_path)

        assert urls == [file_url("ENCFF001AAA")]

    def test_duplicates_dropped_in_order(self, tmp_path):
        listing = self._listing("ENCFF002BBB", "ENCFF001AAA", "ENCFF002BBB")

        urls = plan_downloads(listing, ["ENCFF001AAA", "ENCFF002BBB"], tmp_path)

        assert urls == [file_url("ENCFF002BBB"), file_url("ENCFF001AAA")]

    def test_local_result_path(self, tmp_path):
        assert local_result_path(tmp_path, "ENCFF001AAA") == tmp_path / "ENCFF001AAA.tsv"

    def test_needs_download(self, tmp_path):
        (tmp_path / "empty.tsv").write_text("")
        (tmp_path / "full.tsv").write_text("id\n")

        assert needs_download(tmp_path / "absent.tsv") is True
        assert needs_download(tmp_path / "empty.tsv") is True
        assert needs_download(tmp_path / "full.tsv") is False


class TestDownloadList:

    def test_one_url_per_line(self, tmp_path):
        path = write_download_list([file_url("ENCFF001AAA"), file_url("ENCFF002BBB")],
                                   tmp_path / "out" / "download_files.txt")

        assert path.read_text() == f"{file_url('ENCFF001AAA')}\n{file_url('ENCFF002BBB')}\n"
        assert read_download_list(path) == [file_url("ENCFF001AAA"), file_url("ENCFF002BBB")]

    def test_empty_list_writes_empty_file(self, tmp_path):
        path = write_download_list([], tmp_path / "download_files.txt")

        assert path.read_text() == ""
        assert read_download_list(path) == []
