import unittest

from newswire.ingestion.url_utils import resolve_link, validate_fetch_url


class TestFetchUrlValidation(unittest.TestCase):
    def test_allows_public_https(self):
        self.assertIsNone(validate_fetch_url("https://vnexpress.net/rss/tin-moi-nhat.rss"))

    def test_blocks_localhost(self):
        self.assertEqual(validate_fetch_url("http://localhost:1234/"), "blocked_host")

    def test_blocks_private_ip(self):
        self.assertEqual(validate_fetch_url("http://127.0.0.1:1234/"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("http://192.168.1.10/feed"), "blocked_private_ip")

    def test_blocks_link_local_and_mapped_addresses(self):
        self.assertEqual(validate_fetch_url("http://169.254.169.254/latest"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("http://[::ffff:10.0.0.1]/"), "blocked_private_ip")
        self.assertEqual(validate_fetch_url("http://[::1]:8000/"), "blocked_private_ip")

    def test_blocks_non_http_scheme(self):
        self.assertEqual(validate_fetch_url("file:///etc/passwd"), "bad_scheme")

    def test_empty_and_hostless(self):
        self.assertEqual(validate_fetch_url(""), "empty_url")
        self.assertEqual(validate_fetch_url("https:///path"), "missing_host")

    def test_blocks_localhost_subdomains_without_exemption(self):
        self.assertEqual(validate_fetch_url("http://api.localhost:8080/feed"), "blocked_host")
        self.assertEqual(validate_fetch_url("http://LOCALHOST./feed"), "blocked_host")


class TestResolveLink(unittest.TestCase):
    def test_relative_link(self):
        self.assertEqual(resolve_link("/a/b.html", "https://example.com/news/list"), "https://example.com/a/b.html")
        self.assertEqual(resolve_link("b.html", "https://example.com/news/list"), "https://example.com/news/b.html")

    def test_absolute_link_unchanged(self):
        self.assertEqual(resolve_link("https://cdn.example.org/x", "https://example.com/"), "https://cdn.example.org/x")

    def test_empty_link(self):
        self.assertEqual(resolve_link("   ", "https://example.com/"), "")


if __name__ == "__main__":
    unittest.main()
