"""Target framework monikers — read them out of a .nupkg and reduce them to short names."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
import zipfile
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import unquote

# Package folders whose first sub-directory names a target framework
_FRAMEWORK_FOLDERS = frozenset({"lib", "content", "tools", "build"})

# Long framework identifier (lower-cased) -> short prefix
_SHORT_IDENTIFIERS = {
    ".netframework": "net",
    ".netmicroframework": "netmf",
    ".netportable": "portable",
    ".netcore": "netcore",
    ".netstandard": "netstandard",
    ".netcoreapp": "netcoreapp",
    "silverlight": "sl",
    "windows": "win",
    "windowsphone": "wp",
    "windowsphoneapp": "wpa",
    "uap": "uap",
    "monoandroid": "monoandroid",
    "monotouch": "monotouch",
    "monomac": "monomac",
    "xamarin.ios": "xamarinios",
    "xamarin.mac": "xamarinmac",
    "native": "native",
}

# Families whose short names keep the dotted version (netstandard1.3)
_DOTTED_VERSIONS = frozenset({"netstandard", "netcoreapp", "uap"})

_LONG_NAME_RE = re.compile(r"^(?P<ident>[A-Za-z.]+?)\s*(?P<version>v?\d+(?:\.\d+)*)?$")

# identifier, optional version, optional profile: net45, netstandard1.3, net40-client
_FOLDER_NAME_RE = re.compile(
    r"^(?P<ident>\.?[A-Za-z]+(?:\.[A-Za-z]+)*?)(?P<version>v?\d+(?:\.\d+)*)?"
    r"(?:-(?P<profile>[A-Za-z0-9]+))?$"
)

# Identifiers a package folder may be named after; anything else (Scripts,
# App_Start, images) is ordinary content
_FOLDER_IDENTIFIERS = frozenset(
    {
        *_SHORT_IDENTIFIERS,
        *(ident.lstrip(".") for ident in _SHORT_IDENTIFIERS),
        *_SHORT_IDENTIFIERS.values(),
        "winrt",
        "dotnet",
        "dnx",
        "dnxcore",
        "aspnet",
        "aspnetcore",
        "tizen",
        "xamarintvos",
        "xamarinwatchos",
    }
)


def _is_long_name(moniker: str) -> bool:
    head = moniker.split(",", 1)[0].strip().lower()
    if "," in moniker or moniker.startswith("."):
        return True
    match = _LONG_NAME_RE.match(head)
    return bool(match) and match.group("ident") in _SHORT_IDENTIFIERS and (
        match.group("ident") not in _SHORT_IDENTIFIERS.values()
    )


def _format_version(prefix: str, version: str) -> str:
    parts = [p for p in version.lstrip("v").split(".") if p.isdigit()]
    if not parts or all(int(p) == 0 for p in parts):
        return ""
    if prefix in _DOTTED_VERSIONS:
        if len(parts) == 1:
            parts.append("0")
        return ".".join(parts)
    return "".join(parts)


def _long_to_short(moniker: str) -> str | None:
    """Convert ``.NETFramework,Version=v4.5,Profile=Client`` style names."""
    pieces = [p.strip() for p in moniker.split(",") if p.strip()]
    if not pieces:
        return None
    match = _LONG_NAME_RE.match(pieces[0])
    if match is None:
        return pieces[0].lower()
    ident = match.group("ident").lower()
    version = match.group("version") or ""
    profile = ""
    for piece in pieces[1:]:
        key, _, value = piece.partition("=")
        key = key.strip().lower()
        if key == "version":
            version = value.strip()
        elif key == "profile":
            profile = value.strip()

    prefix = _SHORT_IDENTIFIERS.get(ident, ident.replace(".", ""))
    short = prefix + _format_version(prefix, version)
    if profile:
        short += "-" + profile.lower()
    return short


def to_short_name(moniker: str | None) -> str | None:
    """Return the short framework name for *moniker*, or None when unspecified.

    Short names are passed through lower-cased; long names are converted.
    """
    if moniker is None:
        return None
    moniker = moniker.strip()
    if not moniker:
        return None
    if _is_long_name(moniker):
        return _long_to_short(moniker)
    return moniker.lower()


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def nuspec_frameworks(content: bytes | str) -> list[str | None]:
    """Return the raw targetFramework values declared in a nuspec document."""
    root = ET.fromstring(content)
    found: list[str | None] = []
    for element in root.iter():
        name = _local(element.tag)
        if name == "dependencies":
            found.extend(
                child.get("targetFramework") for child in element if _local(child.tag) == "group"
            )
        elif name == "frameworkAssembly":
            value = element.get("targetFramework")
            if value:
                found.extend(part.strip() for part in value.split(","))
            else:
                found.append(None)
    return found


def is_framework_folder(name: str) -> bool:
    """True if *name* parses as a framework identifier with optional version and profile."""
    if name.lower().startswith("portable-"):
        return len(name) > len("portable-")
    match = _FOLDER_NAME_RE.match(name)
    return bool(match) and match.group("ident").lower() in _FOLDER_IDENTIFIERS


def folder_framework(entry_name: str) -> str | None:
    """Return the framework folder of a package entry, e.g. ``lib/net45/a.dll`` -> ``net45``.

    Files directly under a framework folder (``lib/a.dll``) and sub-folders that
    are not framework names (``content/Scripts/jquery.js``) return None.
    """
    parts = unquote(entry_name.replace("\\", "/")).split("/")
    if len(parts) < 3 or parts[0].lower() not in _FRAMEWORK_FOLDERS:
        return None
    if not is_framework_folder(parts[1]):
        return None
    return parts[1]


def normalize(monikers: Iterable[str | None]) -> list[str]:
    """Reduce raw monikers to sorted, distinct short names; unspecified ones are dropped."""
    result = {short for short in (to_short_name(m) for m in monikers) if short}
    return sorted(result)


def read_package_frameworks(path: Path) -> list[str]:
    """Open a .nupkg without extracting it and return its declared short framework names.

    Raises ``ValueError`` if the archive has no nuspec, ``zipfile.BadZipFile``
    if it is not a zip, and ``xml.etree.ElementTree.ParseError`` for a broken
    nuspec.
    """
    monikers: list[str | None] = []
    with zipfile.ZipFile(path) as archive:
        names = archive.namelist()
        nuspecs = [n for n in names if "/" not in n and n.lower().endswith(".nuspec")]
        if not nuspecs:
            raise ValueError(f"{path.name} does not contain a .nuspec manifest")
        monikers.extend(nuspec_frameworks(archive.read(nuspecs[0])))
        for name in names:
            if name.endswith("/"):
                continue
            monikers.append(folder_framework(name))
    return normalize(monikers)
