from __future__ import annotations

import re
from urllib.parse import urlparse

import trafilatura
from bs4 import BeautifulSoup

STRIPPED_TAGS = ("script", "style", "nav", "header", "footer", "noscript")


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Clean scraped content: collapse whitespace, trim to max length."""
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def normalize_host(url: str) -> str:
    """Lower-cased host without a leading ``www.``."""
    try:
        host = (urlparse(url).hostname or "").lower().strip()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def html_to_text(html: str) -> str:
    """Main-content text of an HTML page; whole-page text when that finds nothing."""
    if not html.strip():
        return ""
    extracted = trafilatura.extract(html, output_format="txt")
    if isinstance(extracted, str) and extracted.strip():
        return clean_content(extracted, max_length=len(extracted))

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(STRIPPED_TAGS):
        tag.decompose()
    text = soup.get_text(" ")
    return clean_content(text, max_length=len(text))
