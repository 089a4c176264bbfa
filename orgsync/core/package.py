"""Package descriptor (``package.xml``) handling.

The descriptor scopes which metadata a project subscribes to. Each type maps
either to ``"*"`` (everything) or to an explicit list of member names.
"""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Iterable, Mapping, Union


logger = logging.getLogger(__name__)

METADATA_NS = "http://soap.sforce.com/2006/04/metadata"
DEFAULT_API_VERSION = "58.0"
WILDCARD = "*"

Members = Union[str, list[str]]
Subscription = Union[Mapping[str, Members], Iterable[str]]


class PackageError(Exception):
    """Raised when a package.xml cannot be read or parsed."""


def _tag(name: str) -> str:
    return f"{{{METADATA_NS}}}{name}"


def normalize_subscription(subscription: Subscription | None) -> dict[str, Members]:
    """Turn a list of type names or a type->members mapping into canonical form.

    A bare list of types subscribes to everything of each type. Members are
    de-duplicated, and ``"*"`` anywhere in a member list wins over explicit
    names.
    """
    result: dict[str, Members] = {}
    if subscription is None:
        return result

    if isinstance(subscription, Mapping):
        items = subscription.items()
    else:
        items = ((name, WILDCARD) for name in subscription)

    for type_name, members in items:
        if isinstance(members, str):
            members = [members]
        members = list(dict.fromkeys(members))
        if WILDCARD in members:
            result[type_name] = WILDCARD
        else:
            result[type_name] = members
    return dict(sorted(result.items()))


class PackageDescriptor:
    """In-memory view of a ``package.xml`` file."""

    def __init__(
        self,
        path: Path | None = None,
        subscription: Subscription | None = None,
        version: str = DEFAULT_API_VERSION,
    ) -> None:
        """Initialize descriptor.

        Args:
            path: Location of package.xml (needed for ``init``/``write``)
            subscription: Optional initial subscription
            version: API version written to the manifest
        """
        self.path = Path(path) if path else None
        self.subscription: dict[str, Members] = normalize_subscription(subscription)
        self.version = version

    def init(self) -> "PackageDescriptor":
        """Load the subscription from ``path``."""
        if self.path is None:
            raise PackageError("No package.xml path configured")
        if not self.path.exists():
            raise PackageError(f"package.xml not found: {self.path}")

        try:
            tree = ET.parse(self.path)
        except ET.ParseError as e:
            raise PackageError(f"Could not parse {self.path}: {e}") from e

        self._load_element(tree.getroot())
        logger.debug("loaded package.xml %s: %s", self.path, self.subscription)
        return self

    @classmethod
    def from_xml(cls, text: str, path: Path | None = None) -> "PackageDescriptor":
        """Build a descriptor from package.xml text."""
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise PackageError(f"Could not parse package.xml: {e}") from e
        pkg = cls(path=path)
        pkg._load_element(root)
        return pkg

    def _load_element(self, root: ET.Element) -> None:
        # tolerate manifests written without the metadata namespace
        ns = METADATA_NS if root.tag.startswith("{") else None

        def find_all(elem: ET.Element, name: str) -> list[ET.Element]:
            return elem.findall(_tag(name) if ns else name)

        raw: dict[str, list[str]] = {}
        for types_elem in find_all(root, "types"):
            name_elems = find_all(types_elem, "name")
            if not name_elems or not (name_elems[0].text or "").strip():
                continue
            type_name = name_elems[0].text.strip()
            members = [
                (m.text or "").strip()
                for m in find_all(types_elem, "members")
                if (m.text or "").strip()
            ]
            raw.setdefault(type_name, []).extend(members)

        self.subscription = normalize_subscription(raw)
        version_elems = find_all(root, "version")
        if version_elems and version_elems[0].text:
            self.version = version_elems[0].text.strip()

    def subscribe(self, type_name: str, member: str = WILDCARD) -> None:
        """Add a member (or ``*``) to the subscription."""
        current = self.subscription.get(type_name)
        if member == WILDCARD:
            self.subscription[type_name] = WILDCARD
        elif current == WILDCARD:
            return
        elif current is None:
            self.subscription[type_name] = [member]
        elif member not in current:
            current.append(member)
        self.subscription = dict(sorted(self.subscription.items()))

    def unsubscribe(self, type_name: str, member: str | None = None) -> None:
        """Remove a member, or the whole type when ``member`` is None."""
        current = self.subscription.get(type_name)
        if current is None:
            return
        if member is None or current == WILDCARD:
            del self.subscription[type_name]
            return
        if member in current:
            current.remove(member)
        if not current:
            del self.subscription[type_name]

    def types(self) -> list[str]:
        return list(self.subscription.keys())

    def to_xml(self) -> str:
        """Serialize to package.xml text."""
        ET.register_namespace("", METADATA_NS)
        root = ET.Element(_tag("Package"))
        for type_name, members in self.subscription.items():
            types_elem = ET.SubElement(root, _tag("types"))
            member_list = [WILDCARD] if members == WILDCARD else sorted(members)
            for member in member_list:
                ET.SubElement(types_elem, _tag("members")).text = member
            ET.SubElement(types_elem, _tag("name")).text = type_name
        ET.SubElement(root, _tag("version")).text = self.version

        ET.indent(root, space="    ")
        body = ET.tostring(root, encoding="unicode")
        return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"

    def write(self, path: Path | None = None) -> Path:
        """Write the manifest to disk."""
        target = Path(path) if path else self.path
        if target is None:
            raise PackageError("No package.xml path configured")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_xml(), encoding="utf-8")
        return target
