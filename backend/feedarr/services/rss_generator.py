"""
RSS Feed Generator

Turns the raw payload of one feed type into an RSS 2.0 document and writes
it to the feeds directory, replacing the previous version atomically.

Description fields are small HTML fragments. Every upstream value placed in
them is HTML-escaped first; the XML writer then escapes the whole fragment as
element text, so the same discipline applies to all three feed types.
"""

import asyncio
import html
import logging
import os
import re
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from feedarr.core.config import settings
from feedarr.core.exceptions import StorageError
from feedarr.schemas.feeds import FeedKind, parse_feed_kind
from feedarr.services.arr_client import normalize_records

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
ET.register_namespace("atom", ATOM_NS)

RSS_CONTENT_TYPE = "application/rss+xml; charset=utf-8"
FEED_AUTHOR = "Feedarr"
FEED_CATEGORIES = ["Movies", "Media"]
GENERATOR = "Feedarr RSS Generator"
PLACEHOLDER_LINK = "#"
IMDB_URL = "https://www.imdb.com/title/{imdb_id}"

# Anything outside the XML 1.0 Char production
XML_ILLEGAL_CHARS = re.compile("[^\t\n\r\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")

FEED_CHANNELS: Dict[FeedKind, Dict[str, str]] = {
    FeedKind.CALENDAR: {
        "title": "Calendar Feed",
        "description": "Upcoming movies from calendar",
    },
    FeedKind.NOTIFICATION: {
        "title": "Notifications Feed",
        "description": "System notifications and alerts",
    },
    FeedKind.QUEUE: {
        "title": "Queue Feed",
        "description": "Download queue status and progress",
    },
}


@dataclass
class RssDocument:
    """A rendered feed, as written to disk"""
    kind: FeedKind
    content: bytes
    item_count: int
    content_type: str = RSS_CONTENT_TYPE


def xml_safe(value: Any) -> str:
    """Drop characters an XML 1.0 document cannot contain"""
    if value is None:
        return ""
    return XML_ILLEGAL_CHARS.sub("", str(value))


def escape_html(value: Any) -> str:
    if value is None:
        return ""
    return html.escape(xml_safe(value), quote=True)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse an upstream ISO-8601 timestamp into an aware UTC datetime"""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_date_label(value: Any) -> str:
    parsed = parse_date(value)
    if parsed is None:
        return escape_html(value)
    return parsed.strftime("%Y-%m-%d")


def rfc822(value: datetime) -> str:
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _paragraph(label: str, value: str) -> str:
    return f"<p><strong>{label}:</strong> {value}</p>"


def imdb_link(record: Dict[str, Any]) -> str:
    imdb_id = record.get("imdbId")
    return IMDB_URL.format(imdb_id=imdb_id) if imdb_id else PLACEHOLDER_LINK


def queue_progress(item: Dict[str, Any]) -> Optional[str]:
    """Download progress as a percentage with one decimal, or None"""
    size = item.get("size")
    size_left = item.get("sizeleft")
    if size is None or size_left is None:
        return None
    try:
        size = float(size)
        size_left = float(size_left)
    except (TypeError, ValueError):
        return None
    if size <= 0:
        return None
    return f"{(size - size_left) / size * 100:.1f}"


# --- per-kind item builders -------------------------------------------------

def build_movie_description(movie: Dict[str, Any]) -> str:
    parts = []

    if movie.get("overview"):
        parts.append(_paragraph("Overview", escape_html(movie["overview"])))
    if movie.get("year"):
        parts.append(_paragraph("Year", escape_html(movie["year"])))
    if movie.get("status"):
        parts.append(_paragraph("Status", escape_html(movie["status"])))
    if movie.get("inCinemas"):
        parts.append(_paragraph("In Cinemas", format_date_label(movie["inCinemas"])))
    if movie.get("digitalRelease"):
        parts.append(_paragraph("Digital Release", format_date_label(movie["digitalRelease"])))
    if movie.get("physicalRelease"):
        parts.append(_paragraph("Physical Release", format_date_label(movie["physicalRelease"])))
    if movie.get("genres"):
        parts.append(_paragraph("Genres", ", ".join(escape_html(g) for g in movie["genres"])))

    return "\n".join(parts) or "No additional information available."


def movie_categories(movie: Dict[str, Any]) -> List[str]:
    categories = ["Movie"]
    if movie.get("status"):
        categories.append(str(movie["status"]))
    if movie.get("genres"):
        categories.extend(str(g) for g in movie["genres"][:3])
    return categories


def build_calendar_item(movie: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    release = (
        parse_date(movie.get("digitalRelease"))
        or parse_date(movie.get("physicalRelease"))
        or parse_date(movie.get("inCinemas"))
    )
    return {
        "title": movie.get("title") or "Unknown Movie",
        "link": imdb_link(movie),
        "guid_id": movie.get("id"),
        "pub_date": release or now,
        "description": build_movie_description(movie),
        "categories": movie_categories(movie),
    }


def build_notification_description(notification: Dict[str, Any]) -> str:
    parts = [_paragraph("Implementation", escape_html(notification.get("implementationName") or "Unknown"))]

    fields = notification.get("fields")
    if fields:
        parts.append(_paragraph("Configuration Fields", f"{len(fields)} fields configured"))
    if notification.get("configContract"):
        parts.append(_paragraph("Contract", escape_html(notification["configContract"])))

    return "\n".join(parts)


def build_notification_item(notification: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    categories = ["Notification"]
    if notification.get("implementationName"):
        categories.append(str(notification["implementationName"]))
    return {
        "title": notification.get("name") or "System Notification",
        "link": PLACEHOLDER_LINK,
        "guid_id": notification.get("id"),
        # Notifications carry no date of their own
        "pub_date": now,
        "description": build_notification_description(notification),
        "categories": categories,
    }


def quality_name(quality: Any) -> Optional[str]:
    """Name from the nested {"quality": {"name": ...}} shape; plain strings pass through"""
    if isinstance(quality, dict):
        inner = quality.get("quality")
        if isinstance(inner, dict):
            return inner.get("name")
        return quality.get("name")
    if isinstance(quality, str):
        return quality
    return None


def build_queue_description(item: Dict[str, Any]) -> str:
    movie = item.get("movie") or {}
    parts = [_paragraph("Status", escape_html(item.get("status") or "Unknown"))]

    progress = queue_progress(item)
    if progress is not None:
        parts.append(_paragraph("Progress", f"{progress}%"))
    if item.get("quality"):
        parts.append(_paragraph("Quality", escape_html(quality_name(item["quality"]) or "Unknown")))
    if item.get("protocol"):
        parts.append(_paragraph("Protocol", escape_html(item["protocol"])))
    if item.get("indexer"):
        parts.append(_paragraph("Indexer", escape_html(item["indexer"])))
    if movie.get("overview"):
        parts.append(_paragraph("Movie Overview", escape_html(movie["overview"])))

    return "\n".join(parts)


def build_queue_item(item: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    movie = item.get("movie") or {}
    status = item.get("status")
    return {
        "title": f"{movie.get('title') or 'Unknown Movie'} - {status or 'Unknown Status'}",
        "link": imdb_link(movie),
        "guid_id": item.get("id"),
        "pub_date": parse_date(item.get("added")) or now,
        "description": build_queue_description(item),
        "categories": ["Queue", str(status or "Unknown")],
    }


ITEM_BUILDERS: Dict[FeedKind, Callable[[Dict[str, Any], datetime], Dict[str, Any]]] = {
    FeedKind.CALENDAR: build_calendar_item,
    FeedKind.NOTIFICATION: build_notification_item,
    FeedKind.QUEUE: build_queue_item,
}


class RssGenerator:
    """Renders and persists one RSS document per feed type"""

    def __init__(
        self,
        feeds_dir: Optional[str] = None,
        site_url: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.feeds_dir = Path(feeds_dir or settings.FEEDS_DIR)
        self.site_url = (site_url or settings.public_site_url).rstrip("/")
        self.ttl_minutes = ttl_minutes or int(settings.cache_ttl_seconds // 60) or 10
        self.clock = clock

    def feed_url(self, kind: FeedKind) -> str:
        return f"{self.site_url}/rss/{parse_feed_kind(kind).value}"

    def get_feed_path(self, kind: FeedKind) -> Path:
        return self.feeds_dir / f"{parse_feed_kind(kind).value}.xml"

    def feed_exists(self, kind: FeedKind) -> bool:
        return self.get_feed_path(kind).is_file()

    def render(self, kind: FeedKind, payload: Any) -> RssDocument:
        """Build the RSS document for a payload without touching the disk"""
        kind = parse_feed_kind(kind)
        now = self.clock()
        records = normalize_records(payload)

        rss = ET.Element("rss", {"version": "2.0"})
        channel = self._build_channel(rss, kind, now)

        fallback_stamp = int(now.timestamp() * 1000)
        build_item = ITEM_BUILDERS[kind]
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                logger.warning(f"Unexpected {kind.value} record at index {index}: {record!r}")
                record = {}
            item = build_item(record, now)
            if item["guid_id"] is not None:
                guid = f"{kind.value}-{item['guid_id']}"
            else:
                # Records without an id in the same build share this guid
                guid = f"{kind.value}-{fallback_stamp}"
            self._append_item(channel, item, guid)

        ET.indent(rss)
        content = ET.tostring(rss, encoding="utf-8", xml_declaration=True)
        return RssDocument(kind=kind, content=content, item_count=len(records))

    async def materialize(self, kind: FeedKind, payload: Any) -> RssDocument:
        """Render the feed and atomically replace the file on disk"""
        document = self.render(kind, payload)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_atomic, self.get_feed_path(document.kind), document.content)
        logger.info(f"Wrote {document.kind.value} feed with {document.item_count} items")
        return document

    async def read_feed(self, kind: FeedKind) -> Optional[bytes]:
        """Return the last materialized document, or None if there is none yet"""
        path = self.get_feed_path(kind)
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e

    def _build_channel(self, rss: ET.Element, kind: FeedKind, now: datetime) -> ET.Element:
        meta = FEED_CHANNELS[kind]
        channel = ET.SubElement(rss, "channel")
        ET.SubElement(channel, "title").text = meta["title"]
        ET.SubElement(channel, "description").text = meta["description"]
        ET.SubElement(channel, "link").text = self.site_url
        ET.SubElement(channel, f"{{{ATOM_NS}}}link", {
            "href": self.feed_url(kind),
            "rel": "self",
            "type": "application/rss+xml",
        })
        ET.SubElement(channel, "generator").text = GENERATOR
        ET.SubElement(channel, "lastBuildDate").text = rfc822(now)
        ET.SubElement(channel, "pubDate").text = rfc822(now)
        ET.SubElement(channel, "copyright").text = str(now.year)
        ET.SubElement(channel, "language").text = "en"
        ET.SubElement(channel, "managingEditor").text = FEED_AUTHOR
        ET.SubElement(channel, "webMaster").text = FEED_AUTHOR
        for category in FEED_CATEGORIES:
            ET.SubElement(channel, "category").text = category
        ET.SubElement(channel, "ttl").text = str(self.ttl_minutes)
        return channel

    @staticmethod
    def _append_item(channel: ET.Element, item: Dict[str, Any], guid: str) -> None:
        element = ET.SubElement(channel, "item")
        ET.SubElement(element, "title").text = xml_safe(item["title"])
        ET.SubElement(element, "description").text = item["description"]
        ET.SubElement(element, "link").text = xml_safe(item["link"])
        ET.SubElement(element, "guid", {"isPermaLink": "false"}).text = xml_safe(guid)
        for category in item["categories"]:
            ET.SubElement(element, "category").text = xml_safe(category)
        ET.SubElement(element, "pubDate").text = rfc822(item["pub_date"])

    def _write_atomic(self, path: Path, content: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(content)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error(f"Failed to write {path}: {str(e)}")
            raise StorageError(f"Failed to write {path.name}: {e}") from e
