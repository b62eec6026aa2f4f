from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import unescape
from html.parser import HTMLParser
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import trafilatura

from backend.app.services.extraction_types import (
    ExtractionFailed,
    ExtractionOk,
    ExtractionResult,
)

LOGGER = logging.getLogger("claimcheck.web_page")

LINK_CONTENT_LABEL = "link"
_INLINE_WHITESPACE_PATTERN = re.compile(r"[ \t\f\v]+")
_BLANK_LINES_PATTERN = re.compile(r"\n\s*\n+")


@dataclass(frozen=True)
class _FetchResult:
    html: str | None
    http_status: int | None
    error_message: str | None


class _PageTitleParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._title_parts: list[str] = []
        self._og_title: str | None = None
        self._capture_title = False

    @property
    def title(self) -> str | None:
        if self._og_title:
            return self._og_title
        title = " ".join("".join(self._title_parts).split())
        return title or None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        tag_name = tag.lower()
        if tag_name == "title":
            self._capture_title = True
            return
        if tag_name != "meta":
            return
        attrs_map = {name.lower(): (value or "").strip() for name, value in attrs}
        if attrs_map.get("property", "").lower() == "og:title" and attrs_map.get("content"):
            self._og_title = unescape(attrs_map["content"])

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() == "title":
            self._capture_title = False

    def handle_data(self, data: str) -> None:
        if self._capture_title:
            self._title_parts.append(data)


class WebPageExtractor:
    def __init__(
        self,
        *,
        fetch_timeout_seconds: float = 12.0,
        user_agent: str = "claimcheck/0.1",
        min_chars: int = 200,
        max_chars: int = 10_000,
    ) -> None:
        self._fetch_timeout_seconds = max(1.0, fetch_timeout_seconds)
        self._user_agent = user_agent.strip() or "claimcheck/0.1"
        self._min_chars = max(1, min_chars)
        self._max_chars = max(self._min_chars, max_chars)

    def extract(self, url: str) -> ExtractionResult:
        fetched = self._fetch_html(url)
        if fetched.html is None:
            LOGGER.warning(
                "web page fetch failed url=%s http_status=%s error=%s",
                url[:200],
                fetched.http_status,
                fetched.error_message,
            )
            return ExtractionFailed(
                error="Could not fetch content from the link. Paste the text directly.",
            )

        text = _extract_readable_text(fetched.html, source_url=url) or ""
        if len(text) < self._min_chars:
            return ExtractionFailed(
                error=(
                    "Inconclusive: the page does not contain enough readable text for analysis. "
                    "Paste the text directly."
                ),
            )

        warnings: list[str] = []
        if len(text) > self._max_chars:
            text = text[: self._max_chars]
            warnings.append(f"Page content truncated to {self._max_chars:,} characters.")

        LOGGER.info("web page extracted url=%s chars=%s", url[:200], len(text))
        return ExtractionOk(
            text=text,
            content_label=LINK_CONTENT_LABEL,
            title=_extract_title(fetched.html),
            source_url=url,
            warnings=tuple(warnings),
        )

    def _fetch_html(self, url: str) -> _FetchResult:
        request = Request(
            url,
            headers={
                "Accept": "text/html,application/xhtml+xml",
                "User-Agent": self._user_agent,
            },
            method="GET",
        )
        try:
            with urlopen(request, timeout=self._fetch_timeout_seconds) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                body = response.read().decode(charset, errors="replace")
                return _FetchResult(
                    html=body,
                    http_status=getattr(response, "status", None),
                    error_message=None,
                )
        except HTTPError as exc:
            status_code = int(exc.code)
            return _FetchResult(
                html=None,
                http_status=status_code,
                error_message=f"http_{status_code}",
            )
        except (URLError, TimeoutError, OSError, ValueError) as exc:
            return _FetchResult(
                html=None,
                http_status=None,
                error_message=f"network_error:{type(exc).__name__}",
            )


def _extract_readable_text(html_text: str, *, source_url: str) -> str | None:
    extracted = trafilatura.extract(
        html_text,
        url=source_url,
        output_format="txt",
        favor_precision=True,
        include_comments=False,
        include_tables=False,
    )
    if not isinstance(extracted, str):
        return None
    lines = [_INLINE_WHITESPACE_PATTERN.sub(" ", line).strip() for line in extracted.splitlines()]
    normalized = _BLANK_LINES_PATTERN.sub("\n\n", "\n".join(lines)).strip()
    return normalized or None


def _extract_title(html_text: str) -> str | None:
    parser = _PageTitleParser()
    parser.feed(html_text)
    parser.close()
    return parser.title
