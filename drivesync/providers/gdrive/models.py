from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

PATH_PROPERTY = "path"
TAG_PROPERTY = "drivesync"

DEFAULT_FIELDS = ["id", "name", "mimeType", "starred", "description", "properties"]


class Tag(str, Enum):
    """Marker attached to special remote objects under one property key."""

    ROOT = "root"
    CONFIG = "config"

    def as_property(self) -> dict[str, str]:
        return {TAG_PROPERTY: self.value}

    @classmethod
    def from_properties(cls, properties: Optional[dict]) -> Optional["Tag"]:
        value = (properties or {}).get(TAG_PROPERTY)
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class RemoteObject:
    id: str
    name: str = ""
    mime_type: str = ""
    description: str = ""
    starred: bool = False
    properties: dict[str, str] = field(default_factory=dict)
    modified_time: str = ""
    md5_checksum: str = ""

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> "RemoteObject":
        props_raw = item.get("properties") or {}
        props = {str(k): str(v) for k, v in props_raw.items()} if isinstance(props_raw, dict) else {}
        return cls(
            id=str(item.get("id") or ""),
            name=item.get("name") or "",
            mime_type=item.get("mimeType") or "",
            description=item.get("description") or "",
            starred=bool(item.get("starred", False)),
            properties=props,
            modified_time=item.get("modifiedTime") or "",
            md5_checksum=item.get("md5Checksum") or "",
        )

    @property
    def path(self) -> Optional[str]:
        return self.properties.get(PATH_PROPERTY) or None

    @property
    def tag(self) -> Optional[Tag]:
        return Tag.from_properties(self.properties)

    @property
    def is_folder(self) -> bool:
        return self.mime_type == FOLDER_MIME_TYPE
