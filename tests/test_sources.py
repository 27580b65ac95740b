"""
Source selection tests: directories, ZIP archives, exclusions and ordering.
"""

import zipfile

import pytest

from auditflow.engine.errors import InvalidScanConfiguration
from auditflow.models import SourceFile
from auditflow.sources import (
    collect_source_files,
    detect_language,
    extension_for_language,
    is_candidate,
    is_system_excluded,
    matches_exclude_pattern,
    order_for_analysis,
)


@pytest.fixture
def repo(tmp_path):
    """A small checkout with code, noise and a nested package."""
    files = {
        "main.py": "print('hi')\n",
        "README.md": "# readme\n",
        "src/app.ts": "export const a = 1;\n",
        "src/util/helpers.js": "module.exports = {};\n",
        "src/util/helpers.min.js": "x\n",
        "src/generated/schema.py": "SCHEMA = {}\n",
        "node_modules/lib/index.js": "module.exports = 1;\n",
        ".git/config.yml": "core: {}\n",
        ".hidden.py": "secret = 1\n",
        "package-lock.json": "{}\n",
        "config/settings.yaml": "debug: true\n",
    }
    for rel_path, content in files.items():
        path = tmp_path / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    (tmp_path / "binary.py").write_bytes(b"\xff\xfe\x00invalid")
    return tmp_path


def test_collect_from_directory_filters_noise(repo):
    files = collect_source_files(repo)
    paths = [f.path for f in files]

    assert set(paths) == {
        "main.py",
        "binary.py",
        "src/app.ts",
        "src/util/helpers.js",
        "src/generated/schema.py",
        "config/settings.yaml",
    }
    languages = {f.path: f.language for f in files}
    assert languages["src/app.ts"] == "typescript"
    assert languages["config/settings.yaml"] == "yaml"


def test_collect_orders_shortest_paths_first(repo):
    paths = [f.path for f in collect_source_files(repo)]

    assert paths == sorted(paths, key=lambda p: (len(p), p))
    assert paths[0] == "main.py"


def test_exclude_patterns_and_max_depth(repo):
    files = collect_source_files(repo, exclude_patterns=["src/generated/**", "*.yaml"], max_depth=1)

    assert {f.path for f in files} == {"main.py", "binary.py", "src/app.ts"}


def test_oversized_files_are_dropped(repo):
    (repo / "big.py").write_text("x = 1\n" * 100, encoding="utf-8")

    files = collect_source_files(repo, max_file_size_bytes=64)

    assert "big.py" not in {f.path for f in files}
    assert "main.py" in {f.path for f in files}


def test_collection_reads_metadata_only(repo):
    files = {f.path: f for f in collect_source_files(repo)}

    assert not any(f.is_loaded for f in files.values())
    assert files["main.py"].size_bytes == len("print('hi')\n")
    assert files["main.py"].load() == "print('hi')\n"
    assert files["main.py"].is_loaded
    with pytest.raises(UnicodeDecodeError):
        files["binary.py"].load()


def test_large_checkout_is_listed_without_reading_content(tmp_path):
    for i in range(200):
        (tmp_path / f"module_{i:03d}.py").write_text(f"value = {i}\n", encoding="utf-8")

    files = collect_source_files(tmp_path)

    assert len(files) == 200
    assert not any(f.is_loaded for f in files)


def test_collect_from_zip_strips_single_root_folder(tmp_path):
    archive = tmp_path / "repo.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("project-main/app.py", "a = 1\nb = 2\n")
        zf.writestr("project-main/lib/core.go", "package core\n")
        zf.writestr("project-main/node_modules/x/index.js", "1\n")
        zf.writestr("project-main/logo.png", "not really a png")

    files = collect_source_files(archive)

    assert [f.path for f in files] == ["app.py", "lib/core.go"]
    assert files[0].line_count == 3
    assert files[1].language == "go"


def test_zip_without_common_root_keeps_paths(tmp_path):
    archive = tmp_path / "flat.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("a.py", "a = 1\n")
        zf.writestr("pkg/b.py", "b = 2\n")

    assert [f.path for f in collect_source_files(archive)] == ["a.py", "pkg/b.py"]


def test_missing_source_is_rejected(tmp_path):
    with pytest.raises(InvalidScanConfiguration):
        collect_source_files(tmp_path / "does-not-exist")


def test_non_zip_file_is_rejected(tmp_path):
    plain = tmp_path / "notes.txt"
    plain.write_text("hello", encoding="utf-8")

    with pytest.raises(InvalidScanConfiguration):
        collect_source_files(plain)


@pytest.mark.parametrize(
    "path,pattern,expected",
    [
        ("src/generated/a.py", "src/generated/**", True),
        ("lib/src/generated/a.py", "src/generated/**", True),
        ("src/generatedx/a.py", "src/generated/**", False),
        ("src/app.test.ts", "*.test.ts", True),
        ("src/deep/app.test.ts", "src/*.ts", True),
        ("src/app.ts", "fixtures", False),
        ("tests/fixtures/a.py", "fixtures", True),
        ("src/app.ts", "   ", False),
    ],
)
def test_matches_exclude_pattern(path, pattern, expected):
    assert matches_exclude_pattern(path, pattern) is expected


@pytest.mark.parametrize(
    "path,expected",
    [
        ("node_modules/a.js", True),
        ("src/__pycache__/a.py", True),
        (".env", True),
        (".gitignore", False),
        ("dist/bundle.js", True),
        ("web/app.min.js", True),
        ("src/app.py", False),
    ],
)
def test_is_system_excluded(path, expected):
    assert is_system_excluded(path) is expected


def test_is_candidate_requires_text_extension():
    assert is_candidate("src/app.py")
    assert not is_candidate("docs/guide.md")
    assert not is_candidate("src/app.py", exclude_patterns=["src/**"])


def test_language_helpers():
    assert detect_language("a/b/C.PY") == "python"
    assert detect_language("Makefile") == "text"
    assert extension_for_language("Python") == ".py"
    assert extension_for_language("brainfuck") == ".txt"


def test_order_for_analysis_is_stable_for_equal_lengths():
    files = [SourceFile(path=p, content="") for p in ["b.py", "a.py", "long/path.py"]]

    assert [f.path for f in order_for_analysis(files)] == ["a.py", "b.py", "long/path.py"]


def test_unreadable_directory_entry_is_rejected(tmp_path):
    (tmp_path / "ok.py").write_text("a = 1\n", encoding="utf-8")
    (tmp_path / "dangling.py").symlink_to(tmp_path / "missing.py")

    with pytest.raises(InvalidScanConfiguration):
        collect_source_files(tmp_path)


def test_corrupt_archive_is_rejected(tmp_path, monkeypatch):
    archive = tmp_path / "repo.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("a.py", "a = 1\n")

    def corrupt(*args, **kwargs):
        raise zipfile.BadZipFile("Bad magic number for central directory")

    monkeypatch.setattr(zipfile, "ZipFile", corrupt)

    with pytest.raises(InvalidScanConfiguration):
        collect_source_files(archive)


def test_archive_member_read_errors_surface_as_os_errors(tmp_path):
    archive = tmp_path / "repo.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("a.py", "a = 1\n")
    files = collect_source_files(archive)

    archive.write_bytes(b"no longer a zip archive")

    with pytest.raises(OSError):
        files[0].load()
