#!/usr/bin/env python3
"""Save a single web page and its static assets for offline viewing."""
import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union
from urllib.parse import urljoin, urlparse

import requests
import soupsieve
from bs4 import BeautifulSoup, FeatureNotFound
from bs4.element import Tag

# -------------------- Config --------------------

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; rv:124.0) Gecko/20100101 Firefox/124.0"
)

PAGE_FILENAME = "index.html"
DEFAULT_ASSET_NAME = "index.html"
DEFAULT_VIDEO_NAME = "video.mp4"

TEXT_CONTENT_HINTS = ("text/", "html", "xml", "json", "javascript")
SRI_ATTRS = ("integrity", "crossorigin", "referrerpolicy")
REWRITE_MODES = ("literal", "structural")


@dataclass(frozen=True)
class AssetCategory:
    name: str
    selector: str
    subdir: str
    default_name: str


STYLESHEET = AssetCategory("stylesheet", "link[rel='stylesheet']", "css", DEFAULT_ASSET_NAME)
SCRIPT = AssetCategory("script", "script[src]", "js", DEFAULT_ASSET_NAME)
IMAGE = AssetCategory("image", "img[src]", "img", DEFAULT_ASSET_NAME)
VIDEO = AssetCategory("video", "video[src], source[src]", "videos", DEFAULT_VIDEO_NAME)

# Processing order is significant: it fixes download order and replacement order.
CATEGORIES: Tuple[AssetCategory, ...] = (STYLESHEET, SCRIPT, IMAGE, VIDEO)


# -------------------- Settings --------------------


@dataclass
class Settings:
    user_agent: str = DEFAULT_USER_AGENT
    verify_tls: bool = True
    https_only: bool = False
    workers: int = 1
    rewrite_mode: str = "literal"  # literal | structural


# -------------------- Errors --------------------


class WebsiteDownloaderError(Exception):
    kind = "error"


class RequestError(WebsiteDownloaderError):
    kind = "request"


class ContentError(WebsiteDownloaderError):
    kind = "content"


class StorageError(WebsiteDownloaderError):
    kind = "io"


class UrlParseError(WebsiteDownloaderError):
    kind = "url"


class SelectorParseError(WebsiteDownloaderError):
    kind = "selector"


# -------------------- Models --------------------


@dataclass(frozen=True)
class AssetReference:
    original: str
    resolved_url: str
    category: AssetCategory
    file_name: str

    @property
    def local_path(self) -> str:
        return f"{self.category.subdir}/{self.file_name}"


@dataclass(frozen=True)
class Replacement:
    original: str
    replacement: str


# -------------------- HTTP --------------------


def build_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": settings.user_agent})
    s.verify = settings.verify_tls
    return s


class Fetcher:
    """Blocking GET client. Every failure surfaces as a WebsiteDownloaderError."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session if session is not None else build_session(settings)

    def _get(self, url: str) -> requests.Response:
        if self.settings.https_only and urlparse(url).scheme != "https":
            raise RequestError(f"refusing non-https request to {url}")
        logging.debug("GET %s", url)
        try:
            resp = self.session.get(url)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise RequestError(f"request error: GET {url}: {e}") from e
        return resp

    def fetch_text(self, url: str) -> str:
        resp = self._get(url)
        ct = (resp.headers.get("Content-Type") or "").lower()
        if ct and not any(hint in ct for hint in TEXT_CONTENT_HINTS):
            raise ContentError(f"expected a text response from {url}, got {ct}")
        if not resp.encoding or "charset" not in ct:
            resp.encoding = resp.apparent_encoding or "utf-8"
        return resp.text

    def fetch_bytes(self, url: str) -> bytes:
        return self._get(url).content

    def close(self) -> None:
        self.session.close()


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")


def serialize_html(soup: BeautifulSoup) -> str:
    return soup.decode(formatter="html")


def compile_selector(selector: str) -> soupsieve.SoupSieve:
    try:
        return soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as e:
        raise SelectorParseError(f"selector parse error: {selector!r}: {e}") from e


class Document:
    def __init__(self, text: str):
        self.text = text
        self.soup = bs4_parse(text)

    def query(self, selector: str) -> List[Tag]:
        return compile_selector(selector).select(self.soup)


def parse_document(text: str) -> Document:
    return Document(text)


# -------------------- Resolver --------------------


def reference_attribute(tag_name: str) -> str:
    return "href" if tag_name == "link" else "src"


def _check_url(u: str) -> None:
    try:
        p = urlparse(u)
        _ = p.port  # ValueError on a malformed port
    except ValueError as e:
        raise UrlParseError(f"URL parse error: {u!r}: {e}") from e
    if not p.scheme:
        raise UrlParseError(f"URL parse error: {u!r}: relative URL without a base")
    if p.scheme in ("http", "https") and not p.hostname:
        raise UrlParseError(f"URL parse error: {u!r}: empty host")


def resolve_url(base_url: str, reference: str) -> str:
    _check_url(base_url)
    try:
        resolved = urljoin(base_url, reference.strip())
    except ValueError as e:
        raise UrlParseError(f"URL parse error: {reference!r}: {e}") from e
    _check_url(resolved)
    return resolved


def local_file_name(resolved_url: str, default: str) -> str:
    name = urlparse(resolved_url).path.rsplit("/", 1)[-1]
    if name in ("", ".", ".."):
        return default
    return name


def iter_asset_references(
    document: Document,
    page_url: str,
    categories: Sequence[AssetCategory] = CATEGORIES,
) -> Iterator[AssetReference]:
    for category in categories:
        for element in document.query(category.selector):
            value = element.get(reference_attribute(element.name))
            if not value:
                continue
            resolved = resolve_url(page_url, value)
            yield AssetReference(
                original=value,
                resolved_url=resolved,
                category=category,
                file_name=local_file_name(resolved, category.default_name),
            )


# -------------------- Output --------------------


def prepare_destination(
    directory: Path, categories: Sequence[AssetCategory] = CATEGORIES
) -> None:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        for category in categories:
            (directory / category.subdir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"IO error: {e}") from e


def write_asset(directory: Path, ref: AssetReference, content: bytes) -> Path:
    target = directory / ref.category.subdir / ref.file_name
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as e:
        raise StorageError(f"IO error: {e}") from e
    logging.info("downloaded asset: %s -> %s", ref.resolved_url, target)
    return target


def write_page(directory: Path, text: str) -> Path:
    target = directory / PAGE_FILENAME
    try:
        target.write_bytes(text.encode("utf-8"))
    except OSError as e:
        raise StorageError(f"IO error: {e}") from e
    return target


def materialize_assets(
    fetcher: Fetcher,
    directory: Path,
    references: Iterable[AssetReference],
    workers: int = 1,
) -> List[Replacement]:
    replacements: List[Replacement] = []
    if workers <= 1:
        for ref in references:
            content = fetcher.fetch_bytes(ref.resolved_url)
            write_asset(directory, ref, content)
            replacements.append(Replacement(ref.original, ref.local_path))
        return replacements

    refs = list(references)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(fetcher.fetch_bytes, ref.resolved_url) for ref in refs]
        try:
            for ref, fut in zip(refs, futures):
                write_asset(directory, ref, fut.result())
                replacements.append(Replacement(ref.original, ref.local_path))
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise
    return replacements


# -------------------- Rewriters --------------------


class Rewriter:
    def apply(self, text: str, replacements: Sequence[Replacement]) -> str:
        raise NotImplementedError


class LiteralRewriter(Rewriter):
    # Unscoped and sequential: a pair also matches text produced by earlier pairs,
    # so a repeated original compounds ("logo.png" -> "img/logo.png" -> "img/videos/logo.png").
    def apply(self, text: str, replacements: Sequence[Replacement]) -> str:
        for r in replacements:
            text = text.replace(r.original, r.replacement)
        return text


class StructuralRewriter(Rewriter):
    """Rewrite only the reference attributes of matched elements."""

    def __init__(self, categories: Sequence[AssetCategory] = CATEGORIES):
        self.categories = categories

    def apply(self, text: str, replacements: Sequence[Replacement]) -> str:
        mapping: Dict[str, str] = {}
        for r in replacements:
            # Unlike literal mode, a repeated original keeps its first path.
            mapping.setdefault(r.original, r.replacement)
        document = parse_document(text)
        for category in self.categories:
            for element in document.query(category.selector):
                attr = reference_attribute(element.name)
                value = element.get(attr)
                if not value or value not in mapping:
                    continue
                element[attr] = mapping[value]
                for rm in SRI_ATTRS:
                    if rm in element.attrs:
                        del element.attrs[rm]
        return serialize_html(document.soup)


def get_rewriter(mode: str) -> Rewriter:
    if mode == "literal":
        return LiteralRewriter()
    if mode == "structural":
        return StructuralRewriter()
    raise ValueError(f"unknown rewrite mode: {mode!r} (expected one of {REWRITE_MODES})")


# -------------------- Main: single page --------------------


def save_website(
    url: str,
    directory: Union[str, Path],
    settings: Optional[Settings] = None,
    fetcher: Optional[Fetcher] = None,
) -> Path:
    settings = settings or Settings()
    rewriter = get_rewriter(settings.rewrite_mode)
    owns_fetcher = fetcher is None
    if fetcher is None:
        fetcher = Fetcher(settings)
    out = Path(directory)

    try:
        logging.info("saving %s -> %s", url, out)
        body = fetcher.fetch_text(url)
        prepare_destination(out)
        for category in CATEGORIES:
            compile_selector(category.selector)
        document = parse_document(body)

        references = iter_asset_references(document, url)
        replacements = materialize_assets(
            fetcher, out, references, workers=settings.workers
        )

        page_path = write_page(out, rewriter.apply(body, replacements))
        logging.info("saved %d assets, page -> %s", len(replacements), page_path)
        return page_path
    finally:
        if owns_fetcher:
            fetcher.close()


# -------------------- Host boundary --------------------


def _host_string(value: object) -> Optional[str]:
    if isinstance(value, bytes):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(value, str) or "\x00" in value:
        return None
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return None
    return value


def save_website_extern(url: object, directory: object) -> int:
    """Return 0 on success and -1 on any failure, with no detail."""
    u = _host_string(url)
    d = _host_string(directory)
    if u is None or d is None:
        logging.error("rejected malformed url/directory argument")
        return -1
    try:
        save_website(u, d)
    except WebsiteDownloaderError as e:
        logging.error("%s failed: %s", e.kind, e)
        return -1
    except Exception:
        logging.exception("unexpected failure saving %s", u)
        return -1
    return 0


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, bool]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            import tomli as tomllib  # backport
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Save a web page and its stylesheets, scripts, images and videos.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", help="http(s) URL")
    p.add_argument("output_folder", help="output directory")
    p.add_argument(
        "--user-agent", type=str, default=DEFAULT_USER_AGENT, help="User-Agent header"
    )
    p.add_argument(
        "--insecure", action="store_true", help="skip TLS certificate validation"
    )
    p.add_argument(
        "--https-only", action="store_true", help="refuse plaintext http requests"
    )
    p.add_argument("--workers", type=int, default=1, help="concurrent asset downloads")
    p.add_argument(
        "--rewrite-mode",
        type=str,
        choices=list(REWRITE_MODES),
        default="literal",
        help="literal text substitution or attribute-level rewriting",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = dict(cfg)
            for g in ("general", "http", "rewrite"):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**flat)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        sys.exit(1)

    settings = Settings(
        user_agent=args.user_agent,
        verify_tls=not args.insecure,
        https_only=args.https_only,
        workers=max(1, args.workers),
        rewrite_mode=args.rewrite_mode,
    )

    try:
        page_path = save_website(args.url, args.output_folder, settings)
    except WebsiteDownloaderError as e:
        logging.error("%s", e)
        sys.exit(1)
    print("Saving complete")
    print(f"Saved to: {page_path}")


if __name__ == "__main__":
    main()
