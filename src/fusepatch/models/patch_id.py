import dataclasses
import functools
import pathlib
import re
import typing
import urllib.parse

from fusepatch import constants, errors

_version_pattern = re.compile(r"[0-9][A-Za-z0-9_\-]*(\.[A-Za-z0-9_\-]+)*")

# A hyphen followed by a digit is where an id splits into name and version
_split_pattern = re.compile(r"-(?=[0-9])")


def _component_key(component: str) -> tuple[int, int | str]:
    # Numeric components sort before alphanumeric ones at the same position
    if component.isdigit():
        return (0, int(component))
    return (1, component)


@functools.total_ordering
@dataclasses.dataclass(frozen=True, eq=False)
class Version:
    """
    A dotted version such as `1.10` or `2.4.0.redhat-630`.

    Equality and ordering are structural over the dot separated components, numeric
    components compare numerically and the rest compare lexicographically. `str()` gives
    back the text the version was parsed from.
    """

    text: str

    def __post_init__(self) -> None:
        if not _version_pattern.fullmatch(self.text):
            raise errors.MalformedId(f"Invalid version: {self.text!r}")

    @functools.cached_property
    def components(self) -> tuple[tuple[int, int | str], ...]:
        return tuple(_component_key(component) for component in self.text.split("."))

    def __str__(self) -> str:
        return self.text

    def __hash__(self) -> int:
        return hash(self.components)

    def __eq__(self, rhs: object) -> bool:
        if not isinstance(rhs, Version):
            return NotImplemented
        return self.components == rhs.components

    def __lt__(self, rhs: object) -> bool:
        if not isinstance(rhs, Version):
            return NotImplemented
        return self.components < rhs.components


def version_compare(v1: Version, v2: Version) -> int:
    """
    Compare two versions.
    Returns:
        -1 if v1 < v2
         0 if v1 == v2
         1 if v1 > v2
    """
    if v1 < v2:
        return -1
    if v1 > v2:
        return 1
    return 0


@functools.total_ordering
@dataclasses.dataclass(frozen=True, eq=False)
class PatchId:
    """
    Identifies a patch by name and version, printed as `<name>-<version>`.
    """

    name: str
    version: Version

    def __post_init__(self) -> None:
        # Commas separate ids in metadata properties
        if (
            self.name == ""
            or self.name in (".", "..")
            or any(c.isspace() or c in "/\\," for c in self.name)
        ):
            raise errors.MalformedId(f"Invalid patch name: {self.name!r}")

        # The canonical form must split back into the same name and version
        if _split_pattern.search(self.version.text):
            raise errors.MalformedId(
                f"Version {self.version} of {self.name} contains a hyphen followed by a digit"
            )

    @classmethod
    def create(cls, name: str, version: str) -> typing.Self:
        return cls(name, Version(version))

    @classmethod
    def from_string(cls, spec: str) -> typing.Self:
        """
        Parses `<name>-<version>`, splitting on the last hyphen that is followed by a digit.
        """
        matches = list(_split_pattern.finditer(spec))
        if not matches:
            raise errors.MalformedId(f"Cannot obtain patch id from: {spec!r}")

        split = matches[-1].start()
        return cls(spec[:split], Version(spec[split + 1 :]))

    @classmethod
    def from_url(cls, url: str | pathlib.PurePath) -> typing.Self:
        """
        Derives a patch id from the last path segment of a URL or path, ignoring a trailing
        `.zip` or `.metadata`.
        """
        if isinstance(url, pathlib.PurePath):
            segment = url.name
        else:
            segment = urllib.parse.urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
            segment = urllib.parse.unquote(segment)

        for suffix in (constants.archive_suffix, constants.metadata_suffix):
            if segment.endswith(suffix):
                segment = segment.removesuffix(suffix)
                break

        return cls.from_string(segment)

    def __str__(self) -> str:
        return f"{self.name}-{self.version}"

    def __hash__(self) -> int:
        return hash((self.name, self.version))

    def __eq__(self, rhs: object) -> bool:
        if not isinstance(rhs, PatchId):
            return NotImplemented
        return self.name == rhs.name and self.version == rhs.version

    def __lt__(self, rhs: object) -> bool:
        if not isinstance(rhs, PatchId):
            return NotImplemented
        return patch_id_compare(self, rhs) < 0


def patch_id_compare(a: PatchId, b: PatchId) -> int:
    """
    Default ordering of patch ids: by name, then by version.
    Returns -1, 0 or 1.
    """
    if a.name != b.name:
        return -1 if a.name < b.name else 1
    return version_compare(a.version, b.version)


def patch_id_list_validator(input: list[str] | list[PatchId]) -> list[PatchId]:
    return [PatchId.from_string(spec) if isinstance(spec, str) else spec for spec in input]


def optional_patch_id_validator(input: str | PatchId | None) -> PatchId | None:
    if isinstance(input, str):
        return PatchId.from_string(input)
    return input
