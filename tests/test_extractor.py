"""Tests for MetadataExtractor and its default collaborators."""

from datetime import datetime, timezone

import pytest

from conftest import BAR_GO, MIT_LICENSE, MODULE_PATH, VERSION
from modindex_cli.errors import ExtractionFailed
from modindex_cli.extractor import (
    CommentDocRenderer,
    KeywordLicenseClassifier,
    MetadataExtractor,
    source_info_for,
    synopsis,
)
from modindex_cli.fetch import ModuleContents
from modindex_cli.models import LicenseMetadata, SourceInfo

COMMIT_TIME = datetime(2019, 1, 30, tzinfo=timezone.utc)


def _contents(files, module_path=MODULE_PATH, version=VERSION) -> ModuleContents:
    return ModuleContents(
        module_path=module_path,
        version=version,
        commit_time=COMMIT_TIME,
        files={p: d.encode("utf-8") if isinstance(d, str) else d for p, d in files.items()},
    )


class TestMetadataExtractor:
    """Tests for MetadataExtractor.extract."""

    def test_extracts_packages_with_full_metadata(self, foobar_files):
        record, manifest = MetadataExtractor().extract(_contents(foobar_files))

        assert record.unit_paths == [MODULE_PATH + "/bar", MODULE_PATH + "/foo"]
        assert record.has_go_mod is True
        assert record.source_file_count == 2
        assert manifest.mod_file.module.path == MODULE_PATH

        bar = record.units[0]
        assert bar.name == "bar"
        assert bar.commit_time == COMMIT_TIME
        assert bar.is_redistributable is True
        assert bar.licenses == [LicenseMetadata(types=["MIT"], file_path="LICENSE")]
        assert bar.source_info == SourceInfo("https://" + MODULE_PATH, "", VERSION)
        assert bar.readme.file_path == "README.md"
        assert bar.readme.contents == "This is a readme"
        assert bar.documentation.synopsis == "Package bar"
        assert bar.documentation.goos == "linux"
        assert bar.documentation.goarch == "amd64"
        assert "Bar returns the string &quot;bar&quot;." in bar.documentation.html

    def test_root_package_uses_module_path(self):
        files = {"go.mod": f"module {MODULE_PATH}\n", "lib.go": "package lib\n", "LICENSE": MIT_LICENSE}
        record, _ = MetadataExtractor().extract(_contents(files))
        assert [(u.path, u.name) for u in record.units] == [(MODULE_PATH, "lib")]

    def test_without_license_units_are_not_redistributable(self):
        files = {"go.mod": f"module {MODULE_PATH}\n", "bar/bar.go": BAR_GO, "README.md": "hi"}
        record, _ = MetadataExtractor().extract(_contents(files))

        unit = record.units[0]
        assert unit.is_redistributable is False
        assert unit.readme is None
        assert unit.documentation is None

    def test_nested_license_applies_only_below_its_directory(self):
        files = {
            "go.mod": f"module {MODULE_PATH}\n",
            "bar/bar.go": BAR_GO,
            "bar/LICENSE": MIT_LICENSE,
            "foo/foo.go": "package foo\n",
        }
        record, _ = MetadataExtractor().extract(_contents(files))
        by_path = {u.path: u for u in record.units}

        assert by_path[MODULE_PATH + "/bar"].is_redistributable is True
        assert by_path[MODULE_PATH + "/foo"].licenses == []

    def test_skips_tests_vendor_testdata_and_nested_modules(self, foo_files):
        files = {
            **foo_files,
            "foo/foo_test.go": "package foo_test\n",
            "vendor/x/x.go": "package x\n",
            "testdata/t.go": "package t\n",
            "_tools/tools.go": "package tools\n",
            "sub/go.mod": f"module {MODULE_PATH}/sub\n",
            "sub/sub.go": "package sub\n",
        }
        record, _ = MetadataExtractor().extract(_contents(files))
        assert record.unit_paths == [MODULE_PATH + "/foo"]
        assert record.source_file_count == 1

    def test_conflicting_package_clauses_skip_directory(self, foo_files):
        files = {**foo_files, "foo/other.go": "package other\n"}
        record, _ = MetadataExtractor().extract(_contents(files))
        assert record.units == []
        assert record.source_file_count == 2

    def test_without_go_mod(self):
        files = {"a/a.go": "package a\n", "LICENSE": MIT_LICENSE}
        record, manifest = MetadataExtractor().extract(_contents(files))
        assert manifest is None
        assert record.has_go_mod is False
        assert record.unit_paths == [MODULE_PATH + "/a"]

    def test_malformed_go_mod_fails(self, foo_files):
        files = {**foo_files, "go.mod": f"module {MODULE_PATH}\nretract nonsense\n"}
        with pytest.raises(ExtractionFailed, match="invalid retracted version"):
            MetadataExtractor().extract(_contents(files))

    def test_go_mod_for_other_module_fails(self, foo_files):
        files = {**foo_files, "go.mod": "module example.com/elsewhere\n"}
        with pytest.raises(ExtractionFailed, match="declares module"):
            MetadataExtractor().extract(_contents(files))

    def test_go_mod_without_module_statement_fails(self, foo_files):
        files = {**foo_files, "go.mod": "go 1.21\n"}
        with pytest.raises(ExtractionFailed, match="no module statement"):
            MetadataExtractor().extract(_contents(files))

    def test_non_utf8_source_fails(self, foo_files):
        files = {**foo_files, "foo/foo.go": b"package foo\n\xff\xfe"}
        with pytest.raises(ExtractionFailed, match="not valid UTF-8"):
            MetadataExtractor().extract(_contents(files))

    def test_custom_collaborators_are_used(self, foo_files):
        class OneLicense(KeywordLicenseClassifier):
            def classify(self, file_path, contents):
                return [LicenseMetadata(types=["Apache-2.0"], file_path=file_path)]

        class FixedRenderer(CommentDocRenderer):
            def render(self, package_name, files):
                return "fixed", "<p>fixed</p>"

        extractor = MetadataExtractor(OneLicense(), FixedRenderer(), goos="darwin", goarch="arm64")
        record, _ = extractor.extract(_contents(foo_files))

        unit = record.units[0]
        assert unit.licenses[0].types == ["Apache-2.0"]
        assert unit.documentation.synopsis == "fixed"
        assert (unit.documentation.goos, unit.documentation.goarch) == ("darwin", "arm64")


class TestKeywordLicenseClassifier:
    """Tests for the default license classifier."""

    def test_mit(self):
        assert KeywordLicenseClassifier().classify("LICENSE", MIT_LICENSE)[0].types == ["MIT"]

    def test_bsd3_beats_bsd2(self):
        text = (
            "Redistribution and use in source and binary forms are permitted provided that\n"
            "this list of conditions is retained. Neither the name of the copyright holder\n"
        )
        assert KeywordLicenseClassifier().classify("LICENSE", text)[0].types == ["BSD-3-Clause"]

    def test_unknown(self):
        result = KeywordLicenseClassifier().classify("COPYING", "All rights reserved.")
        assert result == [LicenseMetadata(types=["UNKNOWN"], file_path="COPYING")]


class TestCommentDocRenderer:
    """Tests for the default documentation renderer."""

    def test_synopsis_and_exported_declarations(self):
        files = {
            "a.go": "// Package a does things. More detail here.\npackage a\n\n// Run runs.\nfunc Run() {}\n\nfunc hidden() {}\n",
        }
        syn, body = CommentDocRenderer().render("a", files)

        assert syn == "Package a does things."
        assert '<h3 id="Run">func Run</h3>' in body
        assert "<p>Run runs.</p>" in body
        assert "hidden" not in body

    def test_doc_go_comment_preferred(self):
        files = {
            "a.go": "// Package a from a.go.\npackage a\n",
            "doc.go": "// Package a from doc.go.\npackage a\n",
        }
        syn, _ = CommentDocRenderer().render("a", files)
        assert syn == "Package a from doc.go."

    def test_no_package_comment(self):
        syn, body = CommentDocRenderer().render("a", {"a.go": "package a\n"})
        assert syn == ""
        assert body == ""


def test_synopsis_collapses_whitespace():
    assert synopsis("Package x\n  handles   things. Then more.") == "Package x handles things."


@pytest.mark.parametrize(
    "module_path, expected",
    [
        ("github.com/a/b", SourceInfo("https://github.com/a/b", "", "v1.0.0")),
        ("github.com/a/b/sub/dir", SourceInfo("https://github.com/a/b", "sub/dir", "v1.0.0")),
        ("example.com/a/b", None),
        ("github.com/a", None),
    ],
)
def test_source_info_for(module_path, expected):
    assert source_info_for(module_path, "v1.0.0") == expected
