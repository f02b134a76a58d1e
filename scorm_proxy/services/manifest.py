"""
SCORM package extraction and manifest parsing.

``extract_scorm_package`` is the only structural gate for uploaded packages:
the upload must be a zip archive and must contain ``imsmanifest.xml`` at its
root. ``parse_manifest`` turns the manifest into a :class:`ManifestData`.

SCORM version detection is best-effort: it looks for SCORM 2004 markers in
the namespace URIs and root attribute values and does not validate against
any schema.
"""

import io
import logging
import os
import shutil
import zipfile
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from ..models.schemas import ItemData, ManifestData, OrganizationData, ResourceData

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "imsmanifest.xml"
DEFAULT_TITLE = "Untitled Course"
DEFAULT_LAUNCH_PATH = "index.html"
SCORM_2004_MARKERS = ("adlcp_v1p3", "2004")


class InvalidPackageError(Exception):
    """Raised when an upload is not a usable SCORM package."""


def extract_scorm_package(archive_path: Union[str, Path], target_dir: Union[str, Path]) -> Path:
    """
    Extract a SCORM zip into ``target_dir`` and return the manifest path.

    Raises:
        InvalidPackageError: if the file is not a zip archive, a member would
            land outside the target directory, or no manifest was extracted
    """
    archive_path = Path(archive_path)
    target_dir = Path(target_dir)

    if not zipfile.is_zipfile(archive_path):
        raise InvalidPackageError("Invalid SCORM package: not a zip archive")

    target_dir.mkdir(parents=True, exist_ok=True)
    root = target_dir.resolve()

    try:
        with zipfile.ZipFile(archive_path) as archive:
            for member in archive.namelist():
                destination = (root / member).resolve()
                if destination != root and root not in destination.parents:
                    raise InvalidPackageError(
                        f"Invalid SCORM package: unsafe member path {member!r}"
                    )
            archive.extractall(root)
    except zipfile.BadZipFile as e:
        raise InvalidPackageError(f"Invalid SCORM package: {e}") from e

    manifest_path = root / MANIFEST_FILENAME
    if not manifest_path.is_file():
        raise InvalidPackageError(
            f"Invalid SCORM package: {MANIFEST_FILENAME} not found"
        )
    logger.info(f"Extracted SCORM package into {root}")
    return manifest_path


def remove_content_dir(path: Union[str, Path]) -> None:
    """Delete an extracted package directory, ignoring a missing one."""
    shutil.rmtree(path, ignore_errors=True)


def _local(tag: str) -> str:
    """Tag or attribute name without its ``{namespace}`` prefix."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


def _children(element: ET.Element, name: str) -> Iterator[ET.Element]:
    for child in element:
        if isinstance(child.tag, str) and _local(child.tag) == name:
            yield child


def _child(element: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if element is None:
        return None
    return next(_children(element, name), None)


def _attr(element: ET.Element, name: str) -> Optional[str]:
    """Attribute lookup by local name, case-insensitive."""
    wanted = name.lower()
    for key, value in element.attrib.items():
        if _local(key).lower() == wanted:
            return value
    return None


def _text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _read_document(source: bytes) -> Tuple[ET.Element, List[str]]:
    """Parse XML keeping the declared namespace URIs, which ElementTree
    otherwise drops from the root attributes."""
    namespaces: List[str] = []
    root = None
    for event, payload in ET.iterparse(io.BytesIO(source), events=("start-ns", "start")):
        if event == "start-ns":
            namespaces.append(payload[1])
        elif root is None:
            root = payload
    if root is None:
        raise ET.ParseError("empty document")
    return root, namespaces


def detect_scorm_version(root: ET.Element, namespaces: List[str]) -> str:
    values = list(namespaces) + list(root.attrib.values())
    if root.tag.startswith("{"):
        values.append(root.tag[1:].split("}", 1)[0])
    joined = " ".join(values)
    if any(marker in joined for marker in SCORM_2004_MARKERS):
        return "2004"
    return "1.2"


def _lom_title(root: ET.Element) -> str:
    general = _child(_child(_child(root, "metadata"), "lom"), "general")
    title = _child(general, "title")
    if title is None:
        return ""
    # LOM 1.2 binds <langstring>, the 2004 binding uses <string>
    return _text(_child(title, "langstring")) or _text(_child(title, "string"))


def _parse_items(parent: ET.Element) -> List[ItemData]:
    items = []
    for item in _children(parent, "item"):
        items.append(ItemData(
            identifier=item.get("identifier") or "unknown",
            title=_text(_child(item, "title")),
            resourceId=item.get("identifierref") or None,
            children=_parse_items(item),
        ))
    return items


def _parse_organizations(root: ET.Element) -> List[OrganizationData]:
    wrapper = _child(root, "organizations")
    if wrapper is None:
        return []
    return [
        OrganizationData(
            identifier=org.get("identifier") or "unknown",
            title=_text(_child(org, "title")),
            items=_parse_items(org),
        )
        for org in _children(wrapper, "organization")
    ]


def _parse_resources(root: ET.Element) -> List[ResourceData]:
    wrapper = _child(root, "resources")
    if wrapper is None:
        return []
    return [
        ResourceData(
            identifier=res.get("identifier") or "unknown",
            type=res.get("type") or "webcontent",
            href=res.get("href") or None,
            scormType=_attr(res, "scormtype"),
        )
        for res in _children(wrapper, "resource")
    ]


def _walk_items(items: List[ItemData]) -> Iterator[ItemData]:
    for item in items:
        yield item
        yield from _walk_items(item.children)


def find_launch_path(
    organizations: List[OrganizationData], resources: List[ResourceData]
) -> str:
    """
    Entry file of the package.

    Precedence: first item (document order) whose referenced resource has an
    href; then the first ``sco`` resource with an href; then any resource with
    an href; then ``index.html``.
    """
    by_id: Dict[str, ResourceData] = {}
    for resource in resources:
        by_id.setdefault(resource.identifier, resource)

    for org in organizations:
        for item in _walk_items(org.items):
            if item.resourceId:
                resource = by_id.get(item.resourceId)
                if resource is not None and resource.href:
                    return resource.href

    for resource in resources:
        if resource.href and (resource.scormType or "").lower() == "sco":
            return resource.href

    for resource in resources:
        if resource.href:
            return resource.href

    return DEFAULT_LAUNCH_PATH


def parse_manifest_bytes(source: bytes) -> ManifestData:
    try:
        root, namespaces = _read_document(source)
    except ET.ParseError as e:
        raise InvalidPackageError(f"Invalid manifest: {e}") from e

    if _local(root.tag) != "manifest":
        raise InvalidPackageError("Invalid manifest: missing manifest root element")

    organizations = _parse_organizations(root)
    resources = _parse_resources(root)

    title = _lom_title(root)
    if not title and organizations:
        title = organizations[0].title
    title = title or DEFAULT_TITLE

    return ManifestData(
        title=title,
        scormVersion=detect_scorm_version(root, namespaces),
        launchPath=find_launch_path(organizations, resources),
        identifier=root.get("identifier") or "unknown",
        organizations=organizations,
        resources=resources,
    )


def parse_manifest(manifest_path: Union[str, Path]) -> ManifestData:
    """Parse ``imsmanifest.xml`` from disk."""
    manifest_path = Path(manifest_path)
    if not manifest_path.is_file():
        raise InvalidPackageError(
            f"Invalid SCORM package: {MANIFEST_FILENAME} not found"
        )
    manifest = parse_manifest_bytes(manifest_path.read_bytes())
    logger.info(
        f"Parsed manifest {manifest.identifier}: "
        f"SCORM {manifest.scormVersion}, launch {manifest.launchPath}"
    )
    return manifest


def ingest_package(archive_path: Union[str, Path], target_dir: Union[str, Path]) -> ManifestData:
    """Extract then parse; a failed ingest leaves no content directory behind."""
    try:
        manifest_path = extract_scorm_package(archive_path, target_dir)
        return parse_manifest(manifest_path)
    except Exception:
        remove_content_dir(target_dir)
        raise


def content_dir_for(content_root: Union[str, Path], name: str) -> Path:
    return Path(os.path.abspath(content_root)) / name
