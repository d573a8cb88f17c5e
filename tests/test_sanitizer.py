"""Tests for sanitizer.sanitize, has_visible_content and strip_graphics."""

import warnings

from bs4 import XMLParsedAsHTMLWarning

from bookpress.services.sanitizer import has_visible_content, sanitize, strip_graphics


class TestSanitize:
    def test_removes_script_tags(self):
        soup = sanitize("<p>Text</p><script>alert('xss')</script>")
        assert "alert" not in soup.get_text()

    def test_removes_style_tags(self):
        soup = sanitize("<style>body { color: red; }</style><p>Text</p>")
        assert "color" not in soup.get_text()

    def test_removes_head_and_title(self):
        soup = sanitize("<html><head><title>Chapter One</title></head><body><p>Body</p></body></html>")
        assert "Chapter One" not in soup.get_text()
        assert "Body" in soup.get_text()

    def test_removes_embedded_frames(self):
        soup = sanitize("<p>Content</p><iframe src='x.html'>frame text</iframe><object>obj</object>")
        assert "frame text" not in soup.get_text()
        assert "obj" not in soup.get_text()
        assert "Content" in soup.get_text()

    def test_removes_template_tags(self):
        soup = sanitize("<p>Real</p><template><div>tmpl js code</div></template>")
        assert "tmpl js code" not in soup.get_text()
        assert "Real" in soup.get_text()

    def test_removes_html_comments(self):
        soup = sanitize("<p>Visible</p><!-- converted by some tool -->")
        assert "converted by" not in str(soup)

    def test_removes_display_none_elements(self):
        soup = sanitize('<p>Visible</p><div style="display:none">Hidden</div>')
        assert "Hidden" not in soup.get_text()
        assert "Visible" in soup.get_text()

    def test_removes_visibility_hidden_elements(self):
        soup = sanitize('<span style="visibility: hidden">Ghost</span><p>Real</p>')
        assert "Ghost" not in soup.get_text()
        assert "Real" in soup.get_text()

    def test_keeps_footnote_attributes(self):
        soup = sanitize('<p><a class="duokan-footnote" href="#n1">1</a></p>')
        a = soup.find("a")
        assert a.get("href") == "#n1"
        assert "duokan-footnote" in a.get("class")

    def test_accepts_bytes(self):
        soup = sanitize('<?xml version="1.0" encoding="utf-8"?><p>café</p>'.encode("utf-8"))
        assert "café" in soup.get_text()

    def test_xml_prolog_does_not_warn(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            soup = sanitize('<?xml version="1.0" encoding="utf-8"?><body><p>Chapter</p></body>')
        assert "Chapter" in soup.get_text()
        assert not [w for w in caught if issubclass(w.category, XMLParsedAsHTMLWarning)]


class TestHasVisibleContent:
    def test_text_is_visible(self):
        assert has_visible_content(sanitize("<p>Words</p>"))

    def test_image_only_page_is_visible(self):
        assert has_visible_content(sanitize('<div><img src="cover.jpg"/></div>'))

    def test_svg_only_page_is_visible(self):
        assert has_visible_content(sanitize("<svg><rect width='10' height='10'/></svg>"))

    def test_blank_page(self):
        assert not has_visible_content(sanitize("<div>  </div><p>\n</p>"))

    def test_page_with_only_scripts_is_blank(self):
        assert not has_visible_content(sanitize("<script>var a = 1;</script>"))


class TestStripGraphics:
    def test_svg_cover_becomes_img(self):
        soup = sanitize(
            '<svg xmlns:xlink="http://www.w3.org/1999/xlink">'
            '<image xlink:href="../Images/cover.jpg" width="600"/></svg>'
        )
        strip_graphics(soup)
        assert soup.find("svg") is None
        assert soup.find("img")["src"] == "../Images/cover.jpg"

    def test_drawing_without_image_removed(self):
        soup = sanitize("<p>Hello</p><svg><path d='M0 0 L100 100'/></svg>")
        strip_graphics(soup)
        assert soup.find("svg") is None
        assert soup.find("img") is None
        assert "Hello" in soup.get_text()

    def test_canvas_removed(self):
        soup = sanitize("<p>Content</p><canvas>fallback</canvas>")
        strip_graphics(soup)
        assert "fallback" not in soup.get_text()
        assert "Content" in soup.get_text()
