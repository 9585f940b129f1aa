"""Tests for file naming, extension resolution and data: URLs."""

from comic_scraper.naming import (
    build_filename,
    decode_data_url,
    file_extension,
    folder_name,
    format_index,
    sanitize_filename,
    url_path_extension,
)


class TestFilenames:
    def test_single_image_page_has_no_suffix(self) -> None:
        assert build_filename(7, "", "png") == "00007.png"

    def test_multi_image_page_gets_one_based_suffix(self) -> None:
        names = [build_filename(7, "", "jpg", group_count=3, sub_number=n) for n in (1, 2, 3)]
        assert names == ["00007-1.jpg", "00007-2.jpg", "00007-3.jpg"]

    def test_title_is_sanitized_and_appended(self) -> None:
        assert build_filename(12, ' What? "Now": ', "gif") == "00012 What Now.gif"

    def test_index_wider_than_padding(self) -> None:
        assert format_index(123456) == "123456"

    def test_sanitize_strips_illegal_characters(self) -> None:
        assert sanitize_filename(' a/b\\c?d%e*f|g"h<i>j:k ') == "abcdefghijk"

    def test_folder_name_never_points_at_the_root(self) -> None:
        assert [folder_name(n) for n in ("???", "<>", ".", "..", "")] == ["Untitled"] * 5

    def test_folder_name_trims_dots_and_separators(self) -> None:
        assert folder_name(" .Comic. ") == "Comic"
        assert folder_name("../A/B") == "AB"


class TestExtensions:
    def test_content_type_preferred(self) -> None:
        assert file_extension("image/jpeg; charset=binary", "png") == "jpg"

    def test_url_extension_when_no_content_type(self) -> None:
        assert file_extension(None, "webp") == "webp"

    def test_octet_stream_falls_back_to_url(self) -> None:
        assert file_extension("application/octet-stream", "gif") == "gif"

    def test_png_fallback(self) -> None:
        assert file_extension(None, "") == "png"

    def test_url_path_extension_ignores_query(self) -> None:
        assert url_path_extension("https://x.test/a/b.jpeg?v=2") == "jpeg"


class TestDataURLs:
    def test_base64_payload(self) -> None:
        assert decode_data_url("data:image/png;base64,aGVsbG8=") == ("image/png", b"hello")

    def test_percent_encoded_payload(self) -> None:
        assert decode_data_url("data:text/plain,a%20b") == ("text/plain", b"a b")

    def test_missing_comma_is_rejected(self) -> None:
        assert decode_data_url("data:image/png;base64") is None

    def test_bad_base64_is_rejected(self) -> None:
        assert decode_data_url("data:image/png;base64,@@@") is None

    def test_not_a_data_url(self) -> None:
        assert decode_data_url("https://x.test/a.png") is None
