import html
import logging
import re

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# A single cleaning pass can expose new work (double-encoded entities,
# markup hidden behind entities), so passes repeat until nothing changes.
MAX_PASSES = 5

MARKUP_PATTERN = re.compile(r"<\s*/?\s*[a-zA-Z][^<>]*>|<!--.*?-->", re.DOTALL)

BLOCK_TAGS = [
    "p",
    "div",
    "section",
    "article",
    "header",
    "footer",
    "aside",
    "blockquote",
    "pre",
    "ul",
    "ol",
    "li",
    "table",
    "tr",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
]

DROPPED_TAGS = ["script", "style", "noscript", "iframe"]

# UTF-8 text that was decoded as cp1252/latin-1 somewhere upstream
ENCODING_FIXES = {
    "â€™": "'",
    "â€˜": "'",
    "â€œ": '"',
    "â€\x9d": '"',
    "â€”": "—",
    "â€“": "–",
    "â€¦": "...",
    "Ã¡": "á",
    "Ã©": "é",
    "Ã¨": "è",
    "Ã­": "í",
    "Ã³": "ó",
    "Ãº": "ú",
    "Ã±": "ñ",
    "Ã¼": "ü",
    "Ã¶": "ö",
    "Ã¤": "ä",
    "Â\xa0": " ",
}

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_PATTERN = re.compile(
    r"(?<![\w+])(?:\+?\d{1,2}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}(?!\w)"
)
EMAIL_PLACEHOLDER = "[email]"
PHONE_PLACEHOLDER = "[phone]"
# @handle or #hashtag standing alone between whitespace
SOCIAL_TAG_PATTERN = re.compile(r"(?<!\S)[@#]\w+(?!\S)")

BOILERPLATE_PATTERN = re.compile(
    r"\b(?:all rights reserved|unsubscribe|subscribe|newsletter|copyright"
    r"|advertisement|sponsored|promoted)\b",
    re.IGNORECASE,
)


def word_count(text: str) -> int:
    """Count whitespace-separated words; non-strings count as zero."""
    if not text or not isinstance(text, str):
        return 0
    return len(text.split())


class TextNormalizer:
    """Turn raw article bodies into clean plain text ready for chunking."""

    def normalize(self, content) -> str:
        """
        Clean raw text content.

        Strips markup, decodes character references, repairs mis-decoded
        byte sequences, redacts e-mail addresses and phone numbers, collapses
        punctuation runs, drops stray social handles, hashtags and
        boilerplate markers, and normalizes whitespace.

        Args:
            content: Raw article text, possibly HTML

        Returns:
            Cleaned text. Non-string or empty input gives an empty string.
        """
        if not content or not isinstance(content, str):
            return ""

        cleaned = content
        for _ in range(MAX_PASSES):
            next_pass = self._clean_once(cleaned)
            if next_pass == cleaned:
                break
            cleaned = next_pass
        else:
            logger.debug("Normalization did not settle after %d passes", MAX_PASSES)

        return cleaned

    def _clean_once(self, text: str) -> str:
        text = self._strip_markup(text)
        text = self._fix_encoding(text)
        text = self._remove_unwanted_patterns(text)
        return self._normalize_whitespace(text)

    def _strip_markup(self, text: str) -> str:
        if not MARKUP_PATTERN.search(text):
            return html.unescape(text)

        soup = BeautifulSoup(text, "html.parser")
        for element in soup(DROPPED_TAGS):
            element.decompose()
        for line_break in soup.find_all("br"):
            line_break.replace_with("\n")
        for block in soup.find_all(BLOCK_TAGS):
            block.insert_before("\n\n")
            block.insert_after("\n\n")

        return soup.get_text()

    def _fix_encoding(self, text: str) -> str:
        for wrong, correct in ENCODING_FIXES.items():
            text = text.replace(wrong, correct)
        return text

    def _remove_unwanted_patterns(self, text: str) -> str:
        text = EMAIL_PATTERN.sub(EMAIL_PLACEHOLDER, text)
        text = PHONE_PATTERN.sub(PHONE_PLACEHOLDER, text)
        text = re.sub(r"\.{4,}", "...", text)
        text = re.sub(r"!{2,}", "!", text)
        text = re.sub(r"\?{2,}", "?", text)
        text = SOCIAL_TAG_PATTERN.sub("", text)
        return BOILERPLATE_PATTERN.sub("", text)

    def _normalize_whitespace(self, text: str) -> str:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        # every whitespace run that is not a newline, nbsp included
        text = re.sub(r"[^\S\n]+", " ", text)
        text = re.sub(r" *\n *", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()


_default_normalizer = TextNormalizer()


def normalize_text(content) -> str:
    """Module-level shortcut for TextNormalizer().normalize."""
    return _default_normalizer.normalize(content)
