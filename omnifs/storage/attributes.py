"""
File and directory attributes

Attributes are immutable snapshots built fresh from every info/list call.
They serialize to a tagged dictionary:

    {
        "name"          : "a.png",
        "path"          : "images/a.png",
        "type"          : "file",
        "last_modified" : 1700000000,
        "visibility"    : "public",
        "file_size"     : 1024,          # files only
        "mime_type"     : "image/png"    # files only
    }
"""

import json

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from .errors import TypeMismatchError

#-----------------------------------------------------------------------------

class FileType(str, Enum):
    FILE        = "file"
    DIRECTORY   = "directory"


class Visibility(str, Enum):
    PUBLIC      = "public"
    PRIVATE     = "private"

#-----------------------------------------------------------------------------

def normalize_path(path: str) -> str:
    """Use / separators and drop leading slashes"""
    return (path or "").replace("\\", "/").lstrip("/")


def base_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]

#-----------------------------------------------------------------------------

@dataclass(frozen=True)
class Attribute:
    path            : str
    name            : str = ""
    visibility      : Visibility = Visibility.PUBLIC
    last_modified   : int = 0

    file_type: ClassVar[FileType]

    def __post_init__(self):
        object.__setattr__(self, "path", self._normalize(self.path))
        object.__setattr__(self, "visibility", Visibility(self.visibility or Visibility.PUBLIC))
        object.__setattr__(self, "last_modified", int(self.last_modified or 0))
        if not self.name:
            object.__setattr__(self, "name", base_name(self.path))

    @staticmethod
    def _normalize(path: str) -> str:
        return normalize_path(path)

    #-----------------------------------------------------

    @property
    def type(self) -> FileType:
        return self.file_type

    @property
    def is_file(self) -> bool:
        return self.file_type is FileType.FILE

    @property
    def is_dir(self) -> bool:
        return self.file_type is FileType.DIRECTORY

    #-----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "name"          : self.name,
            "path"          : self.path,
            "type"          : self.type.value,
            "last_modified" : self.last_modified,
            "visibility"    : self.visibility.value
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attribute":
        """
        Rebuild an attribute from its serialized form

        Raises:
            TypeMismatchError: The payload is tagged with another type, or is
                missing required fields.
        """
        if not isinstance(data, dict):
            raise TypeMismatchError(f"Attribute payload must be a mapping, got {type(data).__name__}")

        tag = data.get("type")
        if tag != cls.file_type.value:
            raise TypeMismatchError(f"Expected a {cls.file_type.value} attribute, got {tag!r}", data.get("path", ""))

        missing = [k for k in cls._required_fields() if k not in data]
        if missing:
            raise TypeMismatchError(f"Attribute payload is missing fields: {', '.join(missing)}", data.get("path", ""))

        try:
            return cls(**{k: data[k] for k in cls._fields() if k in data})
        except (TypeError, ValueError) as e:
            raise TypeMismatchError(f"Invalid attribute payload: {str(e)}", data.get("path", "")) from e

    @classmethod
    def from_json(cls, s: str | bytes) -> "Attribute":
        try:
            data = json.loads(s)
        except ValueError as e:
            raise TypeMismatchError(f"Invalid attribute JSON: {str(e)}") from e
        return cls.from_dict(data)

    @classmethod
    def _fields(cls) -> tuple[str, ...]:
        return ("name", "path", "visibility", "last_modified")

    @classmethod
    def _required_fields(cls) -> tuple[str, ...]:
        return ("path", "last_modified", "visibility")

#-----------------------------------------------------------------------------

@dataclass(frozen=True)
class FileAttribute(Attribute):
    file_size   : int = 0
    mime_type   : str = ""

    file_type: ClassVar[FileType] = FileType.FILE

    def __post_init__(self):
        super().__post_init__()
        if int(self.file_size) < 0:
            raise ValueError(f"file_size must not be negative: {self.file_size}")
        object.__setattr__(self, "file_size", int(self.file_size))
        object.__setattr__(self, "mime_type", self.mime_type or "")

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["file_size"] = self.file_size
        d["mime_type"] = self.mime_type
        return d

    @classmethod
    def _fields(cls) -> tuple[str, ...]:
        return super()._fields() + ("file_size", "mime_type")

    @classmethod
    def _required_fields(cls) -> tuple[str, ...]:
        return super()._required_fields() + ("file_size",)

#-----------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectoryAttribute(Attribute):

    file_type: ClassVar[FileType] = FileType.DIRECTORY

    @staticmethod
    def _normalize(path: str) -> str:
        return normalize_path(path).rstrip("/")

#-----------------------------------------------------------------------------

def deserialize(data: dict[str, Any] | str | bytes) -> Attribute:
    """Rebuild a file or directory attribute, dispatching on its type tag"""
    if isinstance(data, str | bytes):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise TypeMismatchError(f"Invalid attribute JSON: {str(e)}") from e

    if not isinstance(data, dict):
        raise TypeMismatchError(f"Attribute payload must be a mapping, got {type(data).__name__}")

    tag = data.get("type")
    if tag == FileType.FILE.value:
        return FileAttribute.from_dict(data)
    if tag == FileType.DIRECTORY.value:
        return DirectoryAttribute.from_dict(data)

    raise TypeMismatchError(f"Unknown attribute type: {tag!r}", data.get("path", ""))

#-----------------------------------------------------------------------------
