"""
Client for the document-search collaborator.

The search service indexes the knowledge bucket and answers
`GET /docs?q=&folder=&limit=&page=` with `{"docs": [...]}`. This client only
fans queries out, normalizes entries and merges them; it never fails a turn
because one lookup failed.
"""
import asyncio
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx
import structlog
from pydantic import ValidationError

from sales_copilot.models.chat import DocType, RecommendedDocument, SiteSnippet
from sales_copilot.services.config import Settings
from sales_copilot.utils.metrics import doc_lookup_failures

logger = structlog.get_logger()

MIN_LIMIT = 1
MAX_LIMIT = 50

VIDEO_EXTENSIONS = {"mp4", "mov", "webm"}
IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "webp"}


def clamp_limit(limit: int) -> int:
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return MIN_LIMIT
    return max(MIN_LIMIT, min(MAX_LIMIT, limit))


def merge_documents(*lists: Iterable[RecommendedDocument]) -> List[RecommendedDocument]:
    """Merge document lists keyed by path; first occurrence wins, order kept"""
    merged = []
    seen = set()
    for docs in lists:
        for doc in docs or []:
            key = (doc.path or "").strip()
            if not key or key in seen:
                continue
            seen.add(key)
            merged.append(doc)
    return merged


def _extension(path: str) -> str:
    match = re.search(r"\.([a-z0-9]+)$", path.lower())
    return match.group(1) if match else ""


def _title_case(s: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in s.split())


def doc_type_from_path(path: str) -> DocType:
    p = path.lower()
    ext = _extension(p)

    if "sales-sheet" in p:
        return DocType.SALES_SHEET
    if "product-data-sheet" in p:
        return DocType.PRODUCT_DATA_SHEET
    if "data-sheet" in p:
        return DocType.DATA_SHEET
    if "install-manual" in p:
        return DocType.INSTALL_MANUAL
    if "install-sheet" in p:
        return DocType.INSTALL_SHEET
    if "install-video" in p or ext in VIDEO_EXTENSIONS:
        return DocType.INSTALL_VIDEO
    if ext == "dwg":
        return DocType.CAD_DWG
    if ext in ("step", "stp"):
        return DocType.CAD_STEP
    if "product-drawing" in p:
        return DocType.PRODUCT_DRAWING
    if "product-image" in p or ext in IMAGE_EXTENSIONS:
        return DocType.PRODUCT_IMAGE
    if "render" in p:
        return DocType.RENDER
    if ext == "pdf":
        return DocType.ASSET
    return DocType.UNKNOWN


DOC_NAMES = (
    ("sales-sheet", "Sales Sheet"),
    ("product-data-sheet", "Product Data Sheet"),
    ("data-sheet", "Data Sheet"),
    ("install-manual", "Install Manual"),
    ("install-sheet", "Install Sheet"),
    ("install-video", "Install Video"),
    ("product-drawing", "Product Drawing"),
    ("product-image", "Product Image"),
    ("render", "Render"),
)


def title_from_path(path: str) -> str:
    """Human title built from the parent folder and the file name"""
    parts = [p for p in path.split("/") if p]
    base = re.sub(r"\.[a-z0-9]+$", "", (parts[-1] if parts else path), flags=re.IGNORECASE)
    lowered = base.lower()

    name = next((label for marker, label in DOC_NAMES if marker in lowered), None)
    if name is None:
        name = "CAD" if lowered == "cad" else _title_case(re.sub(r"[-_]+", " ", lowered))

    parent = parts[-2] if len(parts) >= 2 else ""
    if parent:
        return f"{_title_case(re.sub(r'[-_]+', ' ', parent))} — {name}"
    return name


def parse_document(raw: Any) -> Optional[RecommendedDocument]:
    """Normalize one search-service entry, or None when it has no path"""
    if not isinstance(raw, dict):
        return None
    path = str(raw.get("path") or "").strip()
    if not path:
        return None

    excerpt = raw.get("excerpt") or raw.get("snippet") or raw.get("summary")
    try:
        return RecommendedDocument(
            title=str(raw.get("title") or raw.get("name") or "").strip() or title_from_path(path),
            doc_type=raw.get("doc_type") or doc_type_from_path(path),
            path=path,
            url=raw.get("url") or None,
            excerpt=str(excerpt).strip() if excerpt else None,
        )
    except ValidationError as e:
        logger.warning("Skipping malformed document entry", path=path, error=str(e))
        return None


class DocumentSearchClient:
    """Fan-out client for the document-search service"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.base_url = settings.DOCS_SEARCH_URL
        self.http_client = http_client or httpx.AsyncClient(
            timeout=settings.DOCS_SEARCH_TIMEOUT,
            transport=httpx.AsyncHTTPTransport(retries=settings.DOCS_SEARCH_RETRIES),
        )

    async def lookup(
        self,
        query: Optional[str] = None,
        folder: Optional[str] = None,
        limit: int = 12,
        page: int = 0,
        with_text: bool = False,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Single lookup returning the raw `docs` entries.

        Any failure (transport error, timeout, non-2xx, bad JSON) yields [].
        """
        params = {"limit": str(clamp_limit(limit)), "page": str(max(0, page))}
        if query:
            params["q"] = query
        if folder:
            params["folder"] = folder
        if with_text:
            params["withText"] = "1"

        try:
            response = await self.http_client.get(self.base_url, params=params, headers=headers)
        except httpx.TimeoutException:
            logger.warning("Document lookup timed out", query=query, folder=folder)
            doc_lookup_failures.labels(reason="timeout").inc()
            return []
        except httpx.HTTPError as e:
            logger.warning("Document lookup failed", query=query, folder=folder, error=str(e))
            doc_lookup_failures.labels(reason="transport").inc()
            return []

        if response.status_code != 200:
            logger.warning(
                "Document lookup returned non-success",
                query=query,
                folder=folder,
                status=response.status_code
            )
            doc_lookup_failures.labels(reason="status").inc()
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Document lookup returned invalid JSON", query=query, folder=folder)
            doc_lookup_failures.labels(reason="decode").inc()
            return []

        docs = payload.get("docs") if isinstance(payload, dict) else None
        return docs if isinstance(docs, list) else []

    async def _documents(self, headers: Optional[Dict[str, str]] = None, **kwargs) -> List[RecommendedDocument]:
        raw_docs = await self.lookup(headers=headers, **kwargs)
        parsed = (parse_document(raw) for raw in raw_docs)
        return [doc for doc in parsed if doc is not None]

    async def search(
        self,
        queries: Sequence[str],
        limit_per_query: int = 12,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[RecommendedDocument]:
        """Run one lookup per query concurrently and merge the results by path"""
        queries = [q for q in queries if q and q.strip()]
        if not queries:
            return []
        results = await asyncio.gather(*[
            self._documents(query=q, limit=limit_per_query, headers=headers) for q in queries
        ])
        return merge_documents(*results)

    async def search_folders(
        self,
        folders: Sequence[str],
        limit_per_folder: int = 12,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[RecommendedDocument]:
        """Same fan-out keyed by folder prefix"""
        folders = [f for f in folders if f and f.strip()]
        if not folders:
            return []
        results = await asyncio.gather(*[
            self._documents(folder=f, limit=limit_per_folder, headers=headers) for f in folders
        ])
        return merge_documents(*results)

    async def snippets(
        self,
        query: str,
        limit: int = 8,
        headers: Optional[Dict[str, str]] = None,
    ) -> List[SiteSnippet]:
        """Text excerpts for grounding, from a withText lookup"""
        if not query or not query.strip():
            return []
        raw_docs = await self.lookup(query=query, limit=limit, with_text=True, headers=headers)

        snippets = []
        for raw in raw_docs:
            if not isinstance(raw, dict):
                continue
            title = str(raw.get("title") or raw.get("name") or "").strip()
            if not title:
                continue
            excerpt = raw.get("excerpt") or raw.get("snippet") or raw.get("summary") or ""
            snippets.append(SiteSnippet(
                title=title,
                url=str(raw.get("url") or "").strip(),
                excerpt=str(excerpt).strip(),
            ))
        return snippets[:clamp_limit(limit)]

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
