"""Tests for selector-driven extraction."""

from comic_scraper.extractor import Selectors, extract_page, parse_srcset

BASE = "https://comic.test/strips/10"


def _extract(markup, title="h1", image="img", next_="a.next"):
    return extract_page(markup, BASE, Selectors(title=title, image=image, next=next_))


class TestTitle:
    def test_title_is_unescaped_and_trimmed(self) -> None:
        page = _extract("<h1>  Tom &amp; Jerry  </h1>")
        assert page.title == "Tom & Jerry"

    def test_entities_are_decoded_once(self) -> None:
        assert _extract("<h1>A &amp;amp; B</h1>").title == "A &amp; B"

    def test_whitespace_title_is_none(self) -> None:
        assert _extract("<h1>   </h1>").title is None

    def test_first_match_wins(self) -> None:
        assert _extract("<h1>One</h1><h1>Two</h1>").title == "One"

    def test_empty_selector_gives_no_title(self) -> None:
        assert _extract("<h1>One</h1>", title="").title is None


class TestImages:
    def test_relative_urls_resolve_against_base(self) -> None:
        page = _extract('<img src="a.png"><img src="/b.png"><img src="//cdn.test/c.png">')
        assert page.image_urls == [
            "https://comic.test/strips/a.png",
            "https://comic.test/b.png",
            "https://cdn.test/c.png",
        ]

    def test_srcset_prefers_widest_candidate(self) -> None:
        page = _extract('<img src="small.png" srcset="s.png 320w, l.png 1024w, m.png 640w">')
        assert page.image_urls == ["https://comic.test/strips/l.png"]

    def test_data_src_used_when_no_src(self) -> None:
        page = _extract('<img data-src="lazy.png">')
        assert page.image_urls == ["https://comic.test/strips/lazy.png"]

    def test_duplicates_dropped_within_page(self) -> None:
        page = _extract('<img src="a.png"><img src="https://comic.test/strips/a.png">')
        assert page.image_urls == ["https://comic.test/strips/a.png"]

    def test_elements_without_url_are_skipped(self) -> None:
        page = _extract('<img alt="nothing"><img src="a.png">')
        assert page.image_urls == ["https://comic.test/strips/a.png"]

    def test_empty_selector_is_not_an_error(self) -> None:
        assert _extract('<img src="a.png">', image="").image_urls == []

    def test_invalid_selector_yields_nothing(self) -> None:
        assert _extract('<img src="a.png">', image="img[[").image_urls == []

    def test_data_urls_are_kept(self) -> None:
        page = _extract('<img src="data:image/png;base64,AAAA">')
        assert page.image_urls == ["data:image/png;base64,AAAA"]


class TestNextLink:
    def test_next_href_resolved(self) -> None:
        assert _extract('<a class="next" href="11">n</a>').next_url == "https://comic.test/strips/11"

    def test_missing_match_gives_none(self) -> None:
        assert _extract("<p>end</p>").next_url is None

    def test_missing_href_gives_none(self) -> None:
        assert _extract('<a class="next">n</a>').next_url is None


class TestSrcset:
    def test_unparsable_width_defaults_to_zero(self) -> None:
        assert parse_srcset("a.png 2x, b.png 300w, c.png") == [
            (0, "a.png"), (300, "b.png"), (0, "c.png"),
        ]

    def test_empty_entries_ignored(self) -> None:
        assert parse_srcset(" , a.png 10w,") == [(10, "a.png")]
