"""Build candidate unit records from raw module contents.

License classification and documentation rendering are collaborators behind
small interfaces; the defaults here are keyword- and comment-based and are
pure functions of their inputs.
"""

from __future__ import annotations

import html
import logging
import posixpath
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .config import DOC_GOARCH, DOC_GOOS, MANIFEST_FILE
from .errors import ExtractionFailed, ManifestSyntaxError
from .fetch import ModuleContents
from .modfile import parse_modfile
from .models import (
    Documentation,
    LicenseMetadata,
    ManifestInfo,
    ModuleRecord,
    Readme,
    SourceInfo,
    UnitRecord,
)

logger = logging.getLogger(__name__)

LICENSE_FILE_NAMES = {"license", "license.md", "license.txt", "licence", "licence.md", "copying", "copying.md"}
README_FILE_NAMES = ("readme.md", "readme.markdown", "readme.rst", "readme.txt", "readme")
SKIP_DIRS = {"vendor", "testdata"}
UNKNOWN_LICENSE = "UNKNOWN"

REDISTRIBUTABLE_LICENSES = {
    "MIT",
    "Apache-2.0",
    "BSD-2-Clause",
    "BSD-3-Clause",
    "ISC",
    "MPL-2.0",
    "GPL-2.0",
    "GPL-3.0",
    "LGPL-3.0",
    "Unlicense",
}

# (license type, phrases that must all appear), most specific first
_LICENSE_SIGNATURES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Apache-2.0", ("apache license", "version 2.0")),
    ("MPL-2.0", ("mozilla public license", "version 2.0")),
    ("LGPL-3.0", ("gnu lesser general public license", "version 3")),
    ("GPL-3.0", ("gnu general public license", "version 3")),
    ("GPL-2.0", ("gnu general public license", "version 2")),
    ("BSD-3-Clause", ("redistribution and use", "neither the name")),
    ("BSD-2-Clause", ("redistribution and use", "this list of conditions")),
    ("MIT", ("permission is hereby granted, free of charge",)),
    ("ISC", ("permission to use, copy, modify, and/or distribute",)),
    ("Unlicense", ("this is free and unencumbered software",)),
]

_PACKAGE_RE = re.compile(r"^package\s+([A-Za-z_][A-Za-z0-9_]*)")
_DECL_RE = re.compile(r"^(func|type|const|var)\s+(?:\([^)]*\)\s*)?([A-Z][A-Za-z0-9_]*)")
_WS_RE = re.compile(r"\s+")

_CODE_HOSTS = ("github.com/", "gitlab.com/", "bitbucket.org/")


# ===================================================================
# Collaborator interfaces
# ===================================================================

class LicenseClassifier(ABC):
    @abstractmethod
    def classify(self, file_path: str, contents: str) -> List[LicenseMetadata]:
        """Return the licenses found in one license file."""
        ...


class DocRenderer(ABC):
    @abstractmethod
    def render(self, package_name: str, files: Dict[str, str]) -> Tuple[str, str]:
        """Return ``(synopsis, html)`` for a package given its source files."""
        ...


class KeywordLicenseClassifier(LicenseClassifier):
    """Classify license files by well-known phrases."""

    def classify(self, file_path: str, contents: str) -> List[LicenseMetadata]:
        text = _WS_RE.sub(" ", contents.lower())
        types = [name for name, phrases in _LICENSE_SIGNATURES if all(p in text for p in phrases)]
        return [LicenseMetadata(types=types[:1] or [UNKNOWN_LICENSE], file_path=file_path)]


class CommentDocRenderer(DocRenderer):
    """Render package docs from Go doc comments.

    The synopsis is the first sentence of the package comment; the body lists
    exported top-level declarations with their doc comments.
    """

    def render(self, package_name: str, files: Dict[str, str]) -> Tuple[str, str]:
        package_doc = ""
        sections: List[str] = []
        for name in sorted(files, key=lambda n: (n != "doc.go", n)):
            lines = files[name].splitlines()
            comment: List[str] = []
            for line in lines:
                stripped = line.strip()
                if stripped.startswith("//"):
                    comment.append(stripped[2:].strip())
                    continue
                if _PACKAGE_RE.match(stripped):
                    if comment and not package_doc:
                        package_doc = " ".join(comment)
                else:
                    decl = _DECL_RE.match(stripped)
                    if decl:
                        sections.append(_render_decl(decl.group(1), decl.group(2), comment))
                comment = []

        body = [f"<p>{html.escape(package_doc)}</p>"] if package_doc else []
        body.extend(sections)
        return synopsis(package_doc), "\n".join(body)


def _render_decl(kind: str, name: str, comment: List[str]) -> str:
    parts = [f'<h3 id="{name}">{kind} {html.escape(name)}</h3>']
    if comment:
        parts.append(f"<p>{html.escape(' '.join(comment))}</p>")
    return "\n".join(parts)


def synopsis(doc: str) -> str:
    """First sentence of *doc*, with whitespace collapsed."""
    text = _WS_RE.sub(" ", doc).strip()
    match = re.search(r"\.(\s|$)", text)
    if match:
        text = text[: match.start() + 1]
    return text


# ===================================================================
# Extractor
# ===================================================================

class MetadataExtractor:
    """Turn :class:`ModuleContents` into a candidate :class:`ModuleRecord`."""

    def __init__(
        self,
        license_classifier: Optional[LicenseClassifier] = None,
        renderer: Optional[DocRenderer] = None,
        goos: str = DOC_GOOS,
        goarch: str = DOC_GOARCH,
    ) -> None:
        self.license_classifier = license_classifier or KeywordLicenseClassifier()
        self.renderer = renderer or CommentDocRenderer()
        self.goos = goos
        self.goarch = goarch

    def extract(self, contents: ModuleContents) -> Tuple[ModuleRecord, Optional[ManifestInfo]]:
        """Build the unit records and the parsed manifest.

        Raises:
            ExtractionFailed: when the go.mod is malformed or declares another
                module, or when a file the extractor needs is not UTF-8.
        """
        module_path, version = contents.module_path, contents.version
        manifest = self._manifest(contents)
        files = self._module_files(contents)

        go_files = {p: d for p, d in files.items() if p.endswith(".go") and not p.endswith("_test.go")}
        by_dir: Dict[str, Dict[str, str]] = {}
        for path, data in go_files.items():
            by_dir.setdefault(posixpath.dirname(path), {})[posixpath.basename(path)] = self._decode(contents, path, data)

        licenses = self._licenses(contents, files)
        readmes = {
            posixpath.dirname(p): p
            for p in sorted(files, key=_readme_rank)
            if posixpath.basename(p).lower() in README_FILE_NAMES
        }
        source_info = source_info_for(module_path, version)

        units: List[UnitRecord] = []
        for directory in sorted(by_dir):
            name = self._package_name(module_path, directory, by_dir[directory])
            if name is None:
                continue
            unit_path = module_path if not directory else f"{module_path}/{directory}"
            unit_licenses = [lic for lic in licenses if _applies_to(lic.file_path, directory)]
            redistributable = bool(unit_licenses) and all(
                t in REDISTRIBUTABLE_LICENSES for lic in unit_licenses for t in lic.types
            )

            unit = UnitRecord(
                path=unit_path,
                name=name,
                commit_time=contents.commit_time,
                is_redistributable=redistributable,
                source_info=source_info,
                licenses=unit_licenses,
            )
            if redistributable:
                readme_path = _nearest(readmes, directory)
                if readme_path is not None:
                    unit.readme = Readme(readme_path, self._decode(contents, readme_path, files[readme_path]))
                syn, body = self.renderer.render(name, by_dir[directory])
                unit.documentation = Documentation(syn, body, self.goos, self.goarch)
            units.append(unit)

        record = ModuleRecord(
            module_path=module_path,
            version=version,
            commit_time=contents.commit_time,
            has_go_mod=manifest is not None,
            source_file_count=len(go_files),
            units=units,
        )
        logger.debug(
            "Extracted %d units from %d Go files for %s@%s",
            len(units), len(go_files), module_path, version,
        )
        return record, manifest

    def _manifest(self, contents: ModuleContents) -> Optional[ManifestInfo]:
        data = contents.manifest
        if data is None:
            return None
        try:
            mod_file = parse_modfile(data, filename=MANIFEST_FILE)
        except ManifestSyntaxError as exc:
            raise ExtractionFailed(str(exc), contents.module_path, contents.version) from exc
        if mod_file.module is None:
            raise ExtractionFailed("go.mod has no module statement", contents.module_path, contents.version)
        if mod_file.module.path != contents.module_path:
            raise ExtractionFailed(
                f"go.mod declares module {mod_file.module.path!r}",
                contents.module_path, contents.version,
            )
        return ManifestInfo(contents.module_path, contents.version, mod_file)

    def _module_files(self, contents: ModuleContents) -> Dict[str, bytes]:
        """Files belonging to this module: no vendored, test-data or nested-module trees."""
        nested = {
            posixpath.dirname(p)
            for p in contents.files
            if posixpath.basename(p) == MANIFEST_FILE and p != MANIFEST_FILE
        }
        kept: Dict[str, bytes] = {}
        for path, data in contents.files.items():
            parts = path.split("/")[:-1]
            if any(part in SKIP_DIRS or part.startswith((".", "_")) for part in parts):
                continue
            if any(path.startswith(n + "/") for n in nested):
                continue
            kept[path] = data
        return kept

    def _licenses(self, contents: ModuleContents, files: Dict[str, bytes]) -> List[LicenseMetadata]:
        found: List[LicenseMetadata] = []
        for path in sorted(files):
            if posixpath.basename(path).lower() in LICENSE_FILE_NAMES:
                found.extend(self.license_classifier.classify(path, self._decode(contents, path, files[path])))
        return found

    def _package_name(self, module_path: str, directory: str, files: Dict[str, str]) -> Optional[str]:
        names = set()
        for source in files.values():
            for line in source.splitlines():
                match = _PACKAGE_RE.match(line.strip())
                if match:
                    names.add(match.group(1))
                    break
        if len(names) != 1:
            logger.warning(
                "Skipping %s/%s: expected one package clause, found %s",
                module_path, directory, sorted(names) or "none",
            )
            return None
        return names.pop()

    @staticmethod
    def _decode(contents: ModuleContents, path: str, data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ExtractionFailed(f"{path} is not valid UTF-8", contents.module_path, contents.version) from exc


def source_info_for(module_path: str, version: str) -> Optional[SourceInfo]:
    """Repository location for modules hosted on well-known code hosts."""
    if not module_path.startswith(_CODE_HOSTS):
        return None
    parts = module_path.split("/")
    if len(parts) < 3:
        return None
    return SourceInfo(
        repo_url="https://" + "/".join(parts[:3]),
        module_dir="/".join(parts[3:]),
        commit=version,
    )


def _applies_to(license_path: str, directory: str) -> bool:
    license_dir = posixpath.dirname(license_path)
    return license_dir == "" or directory == license_dir or directory.startswith(license_dir + "/")


def _nearest(by_dir: Dict[str, str], directory: str) -> Optional[str]:
    current = directory
    while True:
        if current in by_dir:
            return by_dir[current]
        if not current:
            return None
        current = posixpath.dirname(current)


def _readme_rank(path: str) -> Tuple[int, str]:
    # Later entries win in the dict built from this ordering
    name = posixpath.basename(path).lower()
    rank = README_FILE_NAMES.index(name) if name in README_FILE_NAMES else len(README_FILE_NAMES)
    return (-rank, path)
