"""Unit tests for the QA source inventory."""

import re

import pytest

from scpbuild.qa.source_inventory import default_exclude_patterns, inventory


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "scp"
    files = [
        "CMakeLists.txt",
        "cmake/Toolchain.cmake",
        "readme.md",
        "doc/build.md",
        ".github/ci.yml",
        "tools/config.yaml",
        "framework/src/fwk_module.c",
        "framework/include/fwk_module.h",
        "tools/host/main.cpp",
        "product/juno/scp_romfw/firmware.ini",
        "contrib/cmsis/git/core.c",
        "contrib/run-clang-format/git/readme.md",
        "build/obj/generated.c",
    ]
    for name in files:
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("")
    return root


def names(paths):
    return sorted(path.name for path in paths)


class TestInventory:
    """Tests for inventory()."""

    def test_type_sets(self, tree):
        result = inventory([tree], default_exclude_patterns(tree, tree / "build"))

        assert names(result.get("cmake")) == ["CMakeLists.txt", "Toolchain.cmake"]
        assert names(result.get("markdown")) == ["build.md", "readme.md"]
        assert names(result.get("yaml")) == ["ci.yml", "config.yaml"]
        assert names(result.get("c")) == ["fwk_module.c", "fwk_module.h", "main.cpp"]
        assert result.get("config") == []
        assert result.total() == 9

    def test_excludes_third_party(self, tree):
        result = inventory([tree], default_exclude_patterns(tree))

        paths = [p.as_posix() for p in result.get("c")]
        assert not any("contrib/cmsis" in p for p in paths)
        assert any(p.endswith("build/obj/generated.c") for p in paths)

    def test_declared_type_without_files(self, tmp_path):
        result = inventory([tmp_path], [], {"yaml": ["*.yml"]})
        assert result.tags() == ["yaml"]
        assert result.get("yaml") == []
        assert result.get("c") == []

    def test_missing_root_is_skipped(self, tree, tmp_path):
        result = inventory([tmp_path / "missing", tree], [], {"cmake": ["CMakeLists.txt"]})
        assert names(result.get("cmake")) == ["CMakeLists.txt"]

    def test_overlapping_roots_do_not_duplicate(self, tree):
        result = inventory([tree, tree / "framework"], [], {"c": ["*.c"]})
        assert len([p for p in result.get("c") if p.name == "fwk_module.c"]) == 1

    def test_invalid_exclude_pattern(self, tree):
        with pytest.raises(re.error):
            inventory([tree], ["("])

    def test_recomputed_on_every_call(self, tree):
        before = inventory([tree], [], {"markdown": ["*.md"]})
        (tree / "new.md").write_text("")
        after = inventory([tree], [], {"markdown": ["*.md"]})
        assert len(after.get("markdown")) == len(before.get("markdown")) + 1
