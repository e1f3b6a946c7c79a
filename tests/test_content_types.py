import unittest

from content_types import (
    content_item_to_embed_url,
    detect_content_type,
    extract_ai_tool_slug,
    extract_text_content,
    normalize_embed_url,
    parse_credentials_from_text,
)


class DetectContentTypeTests(unittest.TestCase):
    def test_known_hosts(self):
        cases = {
            "https://www.youtube.com/watch?v=dQw4w9WgXcQ": "video",
            "https://www.loom.com/share/abc": "video",
            "https://vimeo.com/123": "video",
            "https://gamma.app/docs/Deck/abc123": "slide_deck",
            "https://app.guidde.com/share/x": "guide",
            "https://app.clay.com/workspaces/1": "clay_table",
            "https://example.com/page": "external_link",
        }
        for url, expected in cases.items():
            with self.subTest(url=url):
                self.assertEqual(detect_content_type(url), expected)

    def test_prefixes_and_empty(self):
        self.assertEqual(detect_content_type("ai-tool:email-writer"), "ai_tool")
        self.assertEqual(detect_content_type("text:Read this"), "text")
        self.assertEqual(detect_content_type(""), "text")
        self.assertEqual(detect_content_type(None), "text")


class NormalizeEmbedUrlTests(unittest.TestCase):
    def test_youtube_variants(self):
        expected = "https://www.youtube.com/embed/dQw4w9WgXcQ?rel=0"
        self.assertEqual(normalize_embed_url("https://www.youtube.com/watch?v=dQw4w9WgXcQ"), expected)
        self.assertEqual(normalize_embed_url("https://youtu.be/dQw4w9WgXcQ"), expected)

    def test_loom_share_link(self):
        url = "https://www.loom.com/share/0123abcd-0123-abcd-0123-0123456789ab?sid=1"
        self.assertEqual(
            normalize_embed_url(url),
            "https://www.loom.com/embed/0123abcd-0123-abcd-0123-0123456789ab",
        )

    def test_gamma_doc(self):
        self.assertEqual(normalize_embed_url("https://gamma.app/docs/My-Deck/abc123"), "https://gamma.app/embed/abc123")

    def test_unknown_passes_through(self):
        self.assertEqual(normalize_embed_url("https://example.com/x"), "https://example.com/x")
        self.assertEqual(normalize_embed_url(None), "")


class ExtractTests(unittest.TestCase):
    def test_prefixed_values(self):
        self.assertEqual(extract_ai_tool_slug("ai-tool: writer "), "writer")
        self.assertIsNone(extract_ai_tool_slug("https://x"))
        self.assertEqual(extract_text_content("text:Hello"), "Hello")

    def test_credentials(self):
        creds = parse_credentials_from_text("Login URL: https://app.example.com\nUsername: demo\nPassword: s3cret")
        self.assertEqual(
            creds, {"login_url": "https://app.example.com", "username": "demo", "password": "s3cret"}
        )
        self.assertIsNone(parse_credentials_from_text("nothing useful here"))

    def test_item_collapses_to_single_string(self):
        self.assertEqual(content_item_to_embed_url({"content_type": "ai_tool", "ai_tool_slug": "w"}), "ai-tool:w")
        self.assertEqual(content_item_to_embed_url({"content_type": "text", "content_text": "hi"}), "text:hi")
        self.assertEqual(
            content_item_to_embed_url({"content_type": "video", "embed_url": "https://v"}), "https://v"
        )


if __name__ == "__main__":
    unittest.main()
