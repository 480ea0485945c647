#!/usr/bin/env python3
"""Build a link graph from episode pages and export it as DOT and markdown notes.

Features:
- Fetches each episode page (with retries and an optional HTML cache).
- Extracts title, publish date, outbound links, and article text.
- Builds a directed multigraph of episode -> link target references.
- Optionally restricts the graph to links that stay on the same site.
- Reports backlink counts, writes a Graphviz DOT file, and writes one
  cross-linked markdown note per episode.
"""

from __future__ import annotations

import argparse
import csv
import hashlib
import json
import re
import subprocess
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, NamedTuple
from urllib.parse import urljoin, urlparse, urlunparse

DEFAULT_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

ARTICLE_STRIP_SELECTORS = [
    "script",
    "style",
    "noscript",
    "form",
    "button",
    "svg",
    '[class*="subscription-widget"]',
    '[data-testid*="comment"]',
    '[id*="comment"]',
    '[class*="comment"]',
    '[class*="discussion"]',
]

ARTICLE_TEXT_SELECTOR = "h1, h2, h3, h4, p, li, blockquote"

EPISODE_CSV_COLUMNS = [
    "id",
    "url",
    "title",
    "published_at",
    "link_count",
    "backlinks",
]

# Characters that are not allowed (or not portable) in file names.
ILLEGAL_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


class InvalidEdgeTargetError(ValueError):
    """Raised when an edge endpoint is missing or empty."""


class ExtractionError(ValueError):
    """Raised when an episode page lacks a field the graph needs."""


@dataclass(frozen=True)
class EpisodeRecord:
    id: int
    url: str
    title: str
    published_at: datetime
    links: list[str | None] = field(default_factory=list)
    article_text: str = ""


class Vertex(NamedTuple):
    key: str
    label: str | None


class Edge(NamedTuple):
    source: str
    target: str


class LinkGraph:
    """Directed multigraph keyed by URL.

    Every call to ``add_edge`` stores a separate edge, so repeated mentions of
    the same target are all kept. Vertices are created on first reference by
    either ``add_edge`` or ``label_vertex`` and remember insertion order.
    """

    def __init__(self) -> None:
        self._labels: dict[str, str | None] = {}
        self._edges: list[Edge] = []
        self._incoming: dict[str, list[Edge]] = {}

    def _ensure_vertex(self, key: str) -> None:
        if key not in self._labels:
            self._labels[key] = None

    def add_edge(self, source: str | None, target: str | None) -> Edge:
        if not source:
            raise InvalidEdgeTargetError(f"Edge source must be a non-empty string, got {source!r}")
        if not target:
            raise InvalidEdgeTargetError(f"Edge target must be a non-empty string, got {target!r}")
        self._ensure_vertex(source)
        self._ensure_vertex(target)
        edge = Edge(source, target)
        self._edges.append(edge)
        self._incoming.setdefault(target, []).append(edge)
        return edge

    def label_vertex(self, key: str, label: str) -> None:
        self._labels[key] = label

    def label(self, key: str) -> str | None:
        return self._labels.get(key)

    def in_edges(self, key: str) -> list[Edge]:
        return list(self._incoming.get(key, []))

    def vertices(self) -> list[Vertex]:
        return [Vertex(key, label) for key, label in self._labels.items()]

    def edges(self) -> list[Edge]:
        return list(self._edges)

    def __contains__(self, key: object) -> bool:
        return key in self._labels

    def __len__(self) -> int:
        return len(self._labels)

    def __repr__(self) -> str:
        return f"LinkGraph(vertices={len(self._labels)}, edges={len(self._edges)})"


def build_graph(records: Iterable[EpisodeRecord]) -> LinkGraph:
    graph = LinkGraph()
    for record in records:
        for link in record.links:
            # Anchors without href come through as None; they never become vertices.
            if not link:
                continue
            graph.add_edge(record.url, link)
        graph.label_vertex(record.url, record.title)
    return graph


def filter_by_pattern(graph: LinkGraph, predicate: Callable[[str], bool]) -> LinkGraph:
    filtered = LinkGraph()
    for edge in graph.edges():
        if predicate(edge.target):
            filtered.add_edge(edge.source, edge.target)
    for vertex in graph.vertices():
        if vertex.label is not None:
            filtered.label_vertex(vertex.key, vertex.label)
    return filtered


def _host(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def same_site(site_url: str) -> Callable[[str], bool]:
    site_host = _host(site_url)
    if not site_host:
        raise ValueError(f"Invalid site URL: {site_url}")

    def predicate(target: str) -> bool:
        return _host(target) == site_host

    return predicate


def backlink_count(graph: LinkGraph, key: str) -> int:
    return len(graph.in_edges(key))


def backlink_index(graph: LinkGraph) -> dict[str, int]:
    return {vertex.key: backlink_count(graph, vertex.key) for vertex in graph.vertices()}


def _escape_dot(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_dot(graph: LinkGraph, name: str = "EpisodeLinks") -> str:
    lines: list[str] = [f'digraph "{_escape_dot(name)}" {{']
    for vertex in graph.vertices():
        if vertex.label is None:
            continue
        lines.append(f'  "{_escape_dot(vertex.key)}" [label="{_escape_dot(vertex.label)}"];')
    # One statement per edge instance; duplicates are intentional.
    for edge in graph.edges():
        lines.append(f'  "{_escape_dot(edge.source)}" -> "{_escape_dot(edge.target)}";')
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_link_graph_dot(output_path: Path, graph: LinkGraph, name: str = "EpisodeLinks") -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(render_dot(graph, name), encoding="utf-8")


def render_graphviz(dot_path: Path, fmt: str, dot_binary: str = "dot") -> Path:
    out_path = dot_path.with_suffix(f".{fmt}")
    subprocess.run(
        [dot_binary, f"-T{fmt}", str(dot_path), "-o", str(out_path)],
        check=True,
        capture_output=True,
        text=True,
    )
    return out_path


def _fallback_episode_label(url: str) -> str:
    parsed = urlparse(url)
    parts = [part for part in parsed.path.split("/") if part]
    if parts:
        return parts[-1]
    return parsed.netloc or url


def build_title_lookup(records: Iterable[EpisodeRecord]) -> dict[str, str]:
    return {record.url: record.title for record in records}


def render_note(record: EpisodeRecord, titles: dict[str, str]) -> str:
    heading = record.title or _fallback_episode_label(record.url)
    lines = [f"# {heading}", ""]
    body = record.article_text.strip()
    if body:
        lines.extend([body, ""])
    lines.extend(["## Mentions", ""])
    for link in record.links:
        if not link:
            continue
        # Unknown targets and untitled episodes fall back to the raw link.
        ref = titles.get(link) or link
        lines.append(f"- [[{ref}]]")
    return "\n".join(lines).rstrip() + "\n"


def note_filename(title: str) -> str:
    cleaned = ILLEGAL_FILENAME_CHARS.sub("-", title)
    cleaned = " ".join(cleaned.split()).strip(" .")
    return cleaned or "untitled"


def write_notes(records: list[EpisodeRecord], output_dir: Path) -> list[Path]:
    titles = build_title_lookup(records)
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    used: dict[str, str] = {}
    for record in records:
        stem = note_filename(record.title or _fallback_episode_label(record.url))
        if stem.lower() in used:
            alt = f"{stem} ({record.id})"
            attempt = 2
            while alt.lower() in used:
                alt = f"{stem} ({record.id}-{attempt})"
                attempt += 1
            print(
                f"  Warning: note name {stem!r} for {record.url} collides with {used[stem.lower()]}; "
                f"writing {alt!r} instead",
                file=sys.stderr,
            )
            stem = alt
        used[stem.lower()] = record.url
        path = output_dir / f"{stem}.md"
        path.write_text(render_note(record, titles), encoding="utf-8")
        written.append(path)
    return written


def ensure_deps() -> tuple[Any, Any]:
    """Import the crawl-only libraries; graph building and exports work without them."""
    try:
        import requests
        from bs4 import BeautifulSoup
    except ImportError as exc:
        raise SystemExit(
            f"Crawling needs {exc.name or 'requests/beautifulsoup4'}. Install with "
            "`python3 -m pip install requests beautifulsoup4`, or use --from-episodes-json."
        ) from exc
    return requests, BeautifulSoup


def make_session(requests_module: Any, timeout: int, user_agent: str = DEFAULT_UA) -> Any:
    session = requests_module.Session()
    session.headers.update({"User-Agent": user_agent})
    send = session.request

    def request_with_timeout(method, url, **kwargs):
        kwargs.setdefault("timeout", timeout)
        return send(method, url, **kwargs)

    session.request = request_with_timeout
    return session


def _backoff_seconds(attempt: int, backoff_base: float, response: Any = None) -> float:
    wait = backoff_base * (2**attempt)
    header = response.headers.get("Retry-After") if response is not None else None
    if header:
        try:
            wait = float(header)
        except ValueError:
            # HTTP-date form of Retry-After; keep the exponential wait.
            pass
    return min(wait, 120.0)


def format_request_exception(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    if response is None:
        return str(exc)
    status = getattr(response, "status_code", None)
    if status is not None:
        return f"HTTP {status}: {exc}"
    return str(exc)


def http_get_with_retries(
    requests_module: Any,
    session: Any,
    url: str,
    max_retries: int,
    backoff_base: float,
    label: str = "request",
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    for attempt in range(max_retries + 1):
        try:
            res = session.get(url)
            status = res.status_code
            if status == 429 or status >= 500:
                if attempt >= max_retries:
                    res.raise_for_status()
                wait = _backoff_seconds(attempt, backoff_base, res)
                print(
                    f"  {label} rate/server limit (HTTP {status}); retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{max_retries})",
                    file=sys.stderr,
                )
                sleep(wait)
                continue
            return res
        except requests_module.exceptions.RequestException as e:
            if attempt >= max_retries:
                raise
            wait = _backoff_seconds(attempt, backoff_base)
            print(
                f"  {label} error ({format_request_exception(e)}); retrying in {wait:.1f}s "
                f"(attempt {attempt + 1}/{max_retries})",
                file=sys.stderr,
            )
            sleep(wait)
    raise RuntimeError(f"{label} failed without a response")


class HtmlCache:
    """Episode pages on disk, one file per URL named by a SHA-256 prefix."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, url: str) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        return self.cache_dir / f"{digest}.html"

    def get(self, url: str) -> str | None:
        path = self.path_for(url)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def put(self, url: str, html: str) -> None:
        self.path_for(url).write_text(html, encoding="utf-8")


def normalize_episode_url(url: str) -> str:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https"):
        return url.strip()
    path = parsed.path.rstrip("/")
    return urlunparse((parsed.scheme, parsed.netloc, path, parsed.params, parsed.query, ""))


def episode_id_from_url(url: str, fallback: int) -> int:
    numbers = [int(n) for n in re.findall(r"\d+", urlparse(url).path)]
    numbers = [n for n in numbers if n > 0]
    return numbers[-1] if numbers else fallback


def parse_json_from_script(script_text: str) -> Any | None:
    try:
        return json.loads(script_text)
    except ValueError:
        return None


def _find_article(soup: Any) -> Any:
    article = soup.find("article")
    if article is None:
        article = (
            soup.select_one('[class*="post-content"]')
            or soup.select_one('[class*="entry-content"]')
            or soup.find("main")
            or soup
        )
    return article


def _clean_article(soup: Any, bs4_class: Any) -> Any:
    # Work on a cloned subtree so removals do not affect other parsing.
    clone = bs4_class(str(_find_article(soup)), "html.parser")
    for selector in ARTICLE_STRIP_SELECTORS:
        for node in clone.select(selector):
            node.decompose()
    return clone


TITLE_META_SELECTORS = ['meta[property="og:title"]', 'meta[name="twitter:title"]']


def extract_title(soup: Any) -> str:
    for selector in TITLE_META_SELECTORS:
        tag = soup.select_one(selector)
        content = (tag.get("content") or "").strip() if tag else ""
        if content:
            return content
    for node in (soup.find("h1"), soup.title):
        text = node.get_text(" ", strip=True) if node else ""
        if text:
            return text
    return ""


def _parse_datetime(value: str) -> datetime | None:
    raw = " ".join(value.split())
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in ("%b %d, %Y", "%B %d, %Y", "%d %B %Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def _json_ld_date(data: Any) -> str | None:
    if isinstance(data, dict):
        raw = data.get("datePublished")
        if isinstance(raw, str):
            return raw
        graph = data.get("@graph")
        if isinstance(graph, list):
            return _json_ld_date(graph)
    elif isinstance(data, list):
        for item in data:
            found = _json_ld_date(item)
            if found:
                return found
    return None


def extract_published_at(soup: Any) -> datetime:
    candidates: list[str] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        payload = (script.string or script.get_text() or "").strip()
        if not payload:
            continue
        date_val = _json_ld_date(parse_json_from_script(payload))
        if date_val:
            candidates.append(date_val)

    for tag in soup.select('meta[property="article:published_time"], meta[itemprop="datePublished"]'):
        if tag.get("content"):
            candidates.append(tag["content"])

    for node in soup.select("time, [datetime]"):
        dt = node.get("datetime")
        if isinstance(dt, str) and dt.strip():
            candidates.append(dt)
        txt = node.get_text(" ", strip=True)
        if txt:
            candidates.append(txt)

    for raw in candidates:
        parsed = _parse_datetime(raw)
        if parsed is not None:
            return parsed
    raise ExtractionError("No parseable publish date found")


def extract_article_links(soup: Any, page_url: str) -> list[str | None]:
    links: list[str | None] = []
    for anchor in _find_article(soup).find_all("a"):
        href = anchor.get("href")
        if not isinstance(href, str) or not href.strip():
            links.append(None)
            continue
        href = href.strip()
        if href.startswith("#"):
            continue
        links.append(normalize_episode_url(urljoin(page_url, href)))
    return links


def extract_article_text(soup: Any, bs4_class: Any) -> str:
    clone = _clean_article(soup, bs4_class)
    blocks: list[str] = []
    for node in clone.select(ARTICLE_TEXT_SELECTOR):
        # Nested blocks (p inside li or blockquote) are collected through their parent.
        if node.find_parent(["li", "blockquote"]) is not None:
            continue
        txt = " ".join(node.get_text(" ", strip=True).split())
        # Repeated adjacent blocks (pull quotes, mirrored headings) are kept once.
        if txt and (not blocks or blocks[-1] != txt):
            blocks.append(txt)
    return "\n".join(blocks)


def extract_episode(html: str, url: str, episode_id: int, bs4_class: Any) -> EpisodeRecord:
    soup = bs4_class(html, "html.parser")
    return EpisodeRecord(
        id=episode_id,
        url=url,
        title=extract_title(soup),
        published_at=extract_published_at(soup),
        links=extract_article_links(soup, url),
        article_text=extract_article_text(soup, bs4_class),
    )


def collect_episodes(
    urls: list[str],
    fetch_html: Callable[[str], str],
    bs4_class: Any,
    sleep_seconds: float = 0.0,
) -> tuple[list[EpisodeRecord], list[tuple[str, str]]]:
    records: list[EpisodeRecord] = []
    failures: list[tuple[str, str]] = []
    unique_urls = list(dict.fromkeys(normalize_episode_url(u) for u in urls if u.strip()))
    for idx, url in enumerate(unique_urls, start=1):
        print(f"[{idx}/{len(unique_urls)}] Processing: {url}")
        try:
            html = fetch_html(url)
            records.append(extract_episode(html, url, episode_id_from_url(url, idx), bs4_class))
        except Exception as e:  # noqa: BLE001
            failures.append((url, str(e)))
            print(f"  Error: {e}", file=sys.stderr)
        if sleep_seconds > 0 and idx < len(unique_urls):
            time.sleep(sleep_seconds)
    return records, failures


def record_to_json(record: EpisodeRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "url": record.url,
        "title": record.title,
        "published_at": record.published_at.isoformat(),
        "links": list(record.links),
        "article_text": record.article_text,
    }


def _episode_id(raw: Any, url: str, position: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = 0
    return value if value > 0 else episode_id_from_url(url, position)


def record_from_json(item: dict[str, Any], position: int = 1) -> EpisodeRecord:
    url = item.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ExtractionError(f"Episode entry #{position} has no url")
    url = url.strip()
    published_at = _parse_datetime(str(item.get("published_at") or ""))
    if published_at is None:
        raise ExtractionError(f"Episode {url} has no parseable published_at")
    links = item.get("links") or []
    return EpisodeRecord(
        id=_episode_id(item.get("id"), url, position),
        url=url,
        title=str(item.get("title") or ""),
        published_at=published_at,
        links=[link if isinstance(link, str) and link else None for link in links],
        article_text=str(item.get("article_text") or ""),
    )


def write_episodes_json(output_path: Path, records: list[EpisodeRecord]) -> None:
    payload = {"episodes": [record_to_json(record) for record in records]}
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def load_episodes_json(input_path: Path) -> tuple[list[EpisodeRecord], list[tuple[str, str]]]:
    payload = json.loads(input_path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("episodes")
    if not isinstance(payload, list):
        raise SystemExit(f"Invalid episodes JSON (list of episodes expected): {input_path}")

    records: list[EpisodeRecord] = []
    failures: list[tuple[str, str]] = []
    seen: set[str] = set()
    for position, item in enumerate(payload, start=1):
        try:
            if not isinstance(item, dict):
                raise ExtractionError(f"Episode entry #{position} is not an object")
            record = record_from_json(item, position)
        except ValueError as e:
            url = item.get("url") if isinstance(item, dict) else None
            failures.append((url if isinstance(url, str) else f"#{position}", str(e)))
            print(f"  Error: {e}", file=sys.stderr)
            continue
        if record.url in seen:
            continue
        seen.add(record.url)
        records.append(record)
    return records, failures


def write_episodes_csv(output_path: Path, records: list[EpisodeRecord], graph: LinkGraph) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=EPISODE_CSV_COLUMNS)
        writer.writeheader()
        for record in records:
            writer.writerow(
                {
                    "id": record.id,
                    "url": record.url,
                    "title": record.title,
                    "published_at": record.published_at.isoformat(),
                    "link_count": sum(1 for link in record.links if link),
                    "backlinks": backlink_count(graph, record.url),
                }
            )


def load_urls_file(path: str) -> list[str]:
    urls_path = Path(path)
    if not urls_path.exists():
        raise SystemExit(f"URL file not found: {urls_path}")
    urls: list[str] = []
    for line in urls_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            urls.append(line)
    return urls


def urls_from_template(template: str, first: int, last: int) -> list[str]:
    if "{id}" not in template:
        raise SystemExit("--url-template must contain an {id} placeholder.")
    if first < 1 or last < first:
        raise SystemExit("Invalid --first/--last range.")
    return [template.replace("{id}", str(n)) for n in range(first, last + 1)]


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build a link graph from episode pages")
    parser.add_argument(
        "--episode-url",
        action="append",
        default=[],
        help="Episode page URL to process (repeatable)",
    )
    parser.add_argument("--urls-file", default="", help="Text file with one episode URL per line")
    parser.add_argument(
        "--url-template",
        default="",
        help="Episode URL pattern with an {id} placeholder, e.g. https://example.com/episode/{id}",
    )
    parser.add_argument("--first", type=int, default=1, help="First episode number for --url-template")
    parser.add_argument("--last", type=int, default=0, help="Last episode number for --url-template")
    parser.add_argument("--max-episodes", type=int, default=0, help="Limit number of episodes (0 = all)")
    parser.add_argument(
        "--from-episodes-json",
        default="",
        help="Load episodes from a previous --episodes-json dump instead of crawling",
    )
    parser.add_argument("--timeout", type=int, default=30, help="HTTP timeout in seconds")
    parser.add_argument("--sleep", type=float, default=0.3, help="Delay between page requests")
    parser.add_argument("--user-agent", default=DEFAULT_UA, help="User-Agent header for page requests")
    parser.add_argument(
        "--fetch-max-retries",
        type=int,
        default=6,
        help="Max retries for page fetches on 429/5xx and network errors",
    )
    parser.add_argument(
        "--fetch-backoff-base",
        type=float,
        default=2.0,
        help="Base backoff seconds for fetch retries",
    )
    parser.add_argument(
        "--cache-dir",
        default="",
        help="Directory for cached episode HTML (reused on future runs)",
    )
    parser.add_argument(
        "--refresh-cache",
        action="store_true",
        help="Ignore cached HTML and re-fetch pages before updating cache",
    )
    parser.add_argument(
        "--same-site-only",
        action="store_true",
        help="Keep only links whose host matches the episode site",
    )
    parser.add_argument(
        "--site-url",
        default="",
        help="Site used by --same-site-only (defaults to the first episode's host)",
    )
    parser.add_argument("--graph-dot", default="", help="Optional output path for a Graphviz DOT link graph")
    parser.add_argument("--graph-name", default="EpisodeLinks", help="Graph name used in the DOT output")
    parser.add_argument(
        "--render-format",
        default="",
        choices=["", "svg", "png", "pdf"],
        help="Run Graphviz `dot` on the DOT output to produce this format",
    )
    parser.add_argument("--notes-dir", default="", help="Optional directory for cross-linked markdown notes")
    parser.add_argument("--episodes-json", default="", help="Optional output path for extracted episode data")
    parser.add_argument("--episodes-csv", default="", help="Optional output path for an episode index CSV")
    parser.add_argument(
        "--top-backlinks",
        type=int,
        default=10,
        help="Print the N most linked-to vertices (0 = skip)",
    )
    return parser.parse_args(argv)


def select_episode_urls(args: argparse.Namespace) -> list[str]:
    if args.episode_url:
        urls = [url.strip() for url in args.episode_url if url.strip()]
    elif args.urls_file:
        urls = load_urls_file(args.urls_file)
    elif args.url_template:
        urls = urls_from_template(args.url_template, args.first, args.last)
    else:
        raise SystemExit("Provide --episode-url, --urls-file, --url-template, or --from-episodes-json.")
    urls = list(dict.fromkeys(urls))
    if args.max_episodes > 0:
        urls = urls[: args.max_episodes]
    return urls


def crawl_episodes(args: argparse.Namespace) -> tuple[list[EpisodeRecord], list[tuple[str, str]]]:
    urls = select_episode_urls(args)
    requests, BeautifulSoup = ensure_deps()
    session = make_session(requests, args.timeout, args.user_agent)
    cache = HtmlCache(Path(args.cache_dir)) if args.cache_dir else None

    def fetch_html(url: str) -> str:
        if cache is not None and not args.refresh_cache:
            cached = cache.get(url)
            if cached is not None:
                print("  Using cached HTML")
                return cached
        res = http_get_with_retries(
            requests_module=requests,
            session=session,
            url=url,
            max_retries=max(0, args.fetch_max_retries),
            backoff_base=max(0.1, args.fetch_backoff_base),
            label="Episode fetch",
        )
        res.raise_for_status()
        if cache is not None:
            cache.put(url, res.text)
        return res.text

    print(f"Found {len(urls)} episode URL(s).")
    return collect_episodes(urls, fetch_html, BeautifulSoup, sleep_seconds=max(0.0, args.sleep))


def print_top_backlinks(graph: LinkGraph, limit: int) -> None:
    counts = backlink_index(graph)
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    ranked = [(key, count) for key, count in ranked if count > 0][:limit]
    if not ranked:
        print("No backlinks found.")
        return
    print(f"Top {len(ranked)} linked vertices:")
    for key, count in ranked:
        label = graph.label(key) or key
        print(f"  {count:4d}  {label}")


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    outputs_requested = bool(args.graph_dot or args.notes_dir or args.episodes_json or args.episodes_csv)
    if args.render_format and not args.graph_dot:
        raise SystemExit("--render-format requires --graph-dot.")
    if args.from_episodes_json and args.episodes_json:
        if Path(args.from_episodes_json).resolve() == Path(args.episodes_json).resolve():
            raise SystemExit("--episodes-json must differ from --from-episodes-json.")

    failures: list[tuple[str, str]] = []
    if args.from_episodes_json:
        records, failures = load_episodes_json(Path(args.from_episodes_json))
        print(f"Loaded {len(records)} episode(s) from {args.from_episodes_json}")
    else:
        records, failures = crawl_episodes(args)

    if not records:
        print("No episodes extracted.", file=sys.stderr)
        return 2

    graph = build_graph(records)
    if args.same_site_only:
        site_url = args.site_url or records[0].url
        graph = filter_by_pattern(graph, same_site(site_url))
        print(f"Restricted links to site: {_host(site_url)}")
    print(f"Link graph stats: vertices={len(graph)}, edges={len(graph.edges())}")

    if args.episodes_json:
        json_path = Path(args.episodes_json)
        write_episodes_json(json_path, records)
        print(f"Wrote episodes JSON: {json_path}")
    if args.episodes_csv:
        csv_path = Path(args.episodes_csv)
        write_episodes_csv(csv_path, records, graph)
        print(f"Wrote episodes CSV: {csv_path}")
    if args.graph_dot:
        dot_path = Path(args.graph_dot)
        write_link_graph_dot(dot_path, graph, args.graph_name)
        print(f"Wrote link graph DOT: {dot_path}")
        if args.render_format:
            rendered = render_graphviz(dot_path, args.render_format)
            print(f"Rendered link graph: {rendered}")
    if args.notes_dir:
        written = write_notes(records, Path(args.notes_dir))
        print(f"Wrote {len(written)} note(s) to {args.notes_dir}")
    if args.top_backlinks > 0:
        print_top_backlinks(graph, args.top_backlinks)
    if not outputs_requested:
        print("No outputs requested; use --graph-dot, --notes-dir, --episodes-json, or --episodes-csv.")

    print(f"Done. episodes={len(records)}, failures={len(failures)}")
    return 0 if not failures else 2


if __name__ == "__main__":
    raise SystemExit(run())
