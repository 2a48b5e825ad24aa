"""HTTP clients for the organisation registries (ROR, EOSC, re3data).

Each client performs a single GET and decodes the answer into plain
`Organisation` dicts. A 404 from the registry becomes `NotFoundError`;
anything else that goes wrong becomes `RegistryError`.
"""

import logging
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

import requests

from ..config import settings
from ..errors import NotFoundError, RegistryError

logger = logging.getLogger("cat.registries")

ROR_PAGE_SIZE = 20
NOT_FOUND_MESSAGE = "Organisation Not Found."

SOURCES = [
    {"id": "ROR", "label": "Research Organization Registry", "url": "https://ror.org"},
    {"id": "EOSC", "label": "EOSC Providers", "url": "https://providers.eosc-portal.eu"},
    {"id": "RE3DATA", "label": "Registry of Research Data Repositories", "url": "https://www.re3data.org"},
]


def _get(source: str, url: str, params: Optional[dict] = None) -> requests.Response:
    try:
        response = requests.get(url, params=params, timeout=settings.REGISTRY_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        logger.warning("%s request failed: %s", source, exc)
        raise RegistryError(f"Communication with {source} failed.") from exc
    if response.status_code == 404:
        raise NotFoundError(NOT_FOUND_MESSAGE)
    if response.status_code >= 400:
        logger.warning("%s answered %s for %s", source, response.status_code, url)
        raise RegistryError(f"Communication with {source} failed.")
    return response


def _json(source: str, response: requests.Response) -> dict:
    try:
        return response.json()
    except ValueError as exc:
        raise RegistryError(f"Communication with {source} failed.") from exc


def _ror_name(item: dict) -> str:
    if item.get("name"):
        return item["name"]
    # ROR v2 schema: names[] with types such as "ror_display"
    names = item.get("names") or []
    for entry in names:
        if "ror_display" in (entry.get("types") or []):
            return entry.get("value", "")
    return names[0].get("value", "") if names else ""


def _ror_website(item: dict) -> Optional[str]:
    for link in item.get("links") or []:
        if isinstance(link, str):
            return link
        if isinstance(link, dict) and link.get("type", "website") == "website":
            return link.get("value")
    return None


def _ror_acronym(item: dict) -> Optional[str]:
    acronyms = item.get("acronyms")
    if acronyms:
        return acronyms[0]
    for entry in item.get("names") or []:
        if "acronym" in (entry.get("types") or []):
            return entry.get("value")
    return None


def ror_organisation(item: dict) -> Dict[str, Optional[str]]:
    return {
        "id": item.get("id", ""),
        "name": _ror_name(item),
        "website": _ror_website(item),
        "acronym": _ror_acronym(item),
    }


def search_ror(query: str, page: int = 1) -> Dict[str, object]:
    """Search ROR by id, name, acronym or alias.

    Returns `{"items": [...], "total": int}` where `items` holds one ROR
    result page (ROR serves 20 results per page).
    """
    response = _get("ROR", settings.ROR_URL, params={"query": query, "page": page})
    data = _json("ROR", response)
    items = [ror_organisation(item) for item in data.get("items") or []]
    return {"items": items, "total": int(data.get("number_of_results") or 0)}


def fetch_eosc_provider(provider_id: str) -> Dict[str, Optional[str]]:
    response = _get("EOSC", f"{settings.EOSC_URL.rstrip('/')}/{provider_id}")
    data = _json("EOSC", response)
    if not data or not data.get("id"):
        raise NotFoundError(NOT_FOUND_MESSAGE)
    return {
        "id": data["id"],
        "name": data.get("name") or "",
        "website": data.get("website"),
        "acronym": data.get("abbreviation"),
    }


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_text(root: ET.Element, name: str) -> Optional[str]:
    for el in root.iter():
        if _local(el.tag) == name and el.text and el.text.strip():
            return el.text.strip()
    return None


def fetch_re3data_repository(repository_id: str) -> Dict[str, Optional[str]]:
    """Fetch a repository record; re3data answers in XML."""
    response = _get("RE3DATA", f"{settings.RE3DATA_URL.rstrip('/')}/{repository_id}")
    try:
        root = ET.fromstring(response.content)
    except ET.ParseError as exc:
        raise RegistryError("Communication with RE3DATA failed.") from exc
    name = _find_text(root, "repositoryName")
    if not name:
        raise NotFoundError(NOT_FOUND_MESSAGE)
    return {
        "id": _find_text(root, "re3data.orgIdentifier") or repository_id,
        "name": name,
        "website": _find_text(root, "repositoryURL"),
        "acronym": _find_text(root, "additionalName"),
    }


def list_sources() -> List[Dict[str, str]]:
    return [dict(s) for s in SOURCES]
