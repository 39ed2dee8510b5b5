"""Tests for library path containment and file naming rules."""

import os

import pytest

from vidshelf.core.errors import PathTraversalError, ValidationError
from vidshelf.library.paths import (
    is_media_file,
    is_partial_file,
    is_within,
    resolve_within,
    sanitize_filename,
)


class TestResolveWithin:
    @pytest.mark.parametrize(
        "requested",
        [
            "../etc/passwd",
            "../../secret",
            "videos/../../outside.mp4",
            "..",
            "./../sibling",
        ],
    )
    def test_rejects_paths_that_escape_root(self, library_dir, requested):
        with pytest.raises(PathTraversalError):
            resolve_within(library_dir, requested)

    @pytest.mark.parametrize(
        "requested, expected",
        [
            ("", ""),
            (".", ""),
            ("clip.mp4", "clip.mp4"),
            ("sub/clip.mp4", os.path.join("sub", "clip.mp4")),
            ("sub/../clip.mp4", "clip.mp4"),
        ],
    )
    def test_accepts_paths_inside_root(self, library_dir, requested, expected):
        resolved = resolve_within(library_dir, requested)
        root = os.path.abspath(library_dir)
        assert resolved == os.path.normpath(os.path.join(root, expected))
        assert resolved == root or resolved.startswith(root + os.sep)

    def test_absolute_request_is_treated_as_relative(self, library_dir):
        resolved = resolve_within(library_dir, "/etc/passwd")
        assert resolved == os.path.join(os.path.abspath(library_dir), "etc", "passwd")

    def test_prefix_sibling_is_not_inside(self, tmp_path):
        root = tmp_path / "lib"
        root.mkdir()
        (tmp_path / "lib-other").mkdir()
        with pytest.raises(PathTraversalError):
            resolve_within(root, "../lib-other/file.mp4")

    def test_rejects_nul_byte(self, library_dir):
        with pytest.raises(ValidationError):
            resolve_within(library_dir, "clip\x00.mp4")

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_rejects_symlink_leading_outside(self, tmp_path, library_dir):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.mp4").write_bytes(b"x")
        os.symlink(outside, library_dir / "escape")

        with pytest.raises(PathTraversalError):
            resolve_within(library_dir, "escape/secret.mp4")


class TestIsWithin:
    def test_absolute_path_inside(self, library_dir):
        assert is_within(library_dir, os.path.join(library_dir, "a", "b.mp4"))

    def test_absolute_path_outside(self, library_dir, tmp_path):
        assert not is_within(library_dir, str(tmp_path / "elsewhere.mp4"))

    def test_empty_path(self, library_dir):
        assert not is_within(library_dir, "")

    def test_sibling_with_same_prefix(self, library_dir, tmp_path):
        assert not is_within(library_dir, str(tmp_path / f"{library_dir.name}-other" / "a.mp4"))

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlinked_file_leading_outside(self, library_dir, tmp_path):
        target = tmp_path / "secret.mp4"
        target.write_bytes(b"x")
        os.symlink(target, library_dir / "linked.mp4")
        assert not is_within(library_dir, library_dir / "linked.mp4")


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("Demo Clip", "Demo Clip"),
            ("a/b\\c", "a_b_c"),
            ('what? "quoted" <tag>|pipe*', "what_ _quoted_ _tag__pipe_"),
            ("time 10:30", "time 10_30"),
            ("../../etc/passwd", "____etc_passwd"),
            ("dots...", "dots_."),
            ("  padded  ", "padded"),
            ("tab\there", "tab_here"),
        ],
    )
    def test_replaces_unsafe_characters(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_result_never_contains_separators_or_parent_refs(self):
        result = sanitize_filename("..../..\\x")
        assert "/" not in result
        assert "\\" not in result
        assert ".." not in result


class TestFileClassification:
    @pytest.mark.parametrize("filename", ["a.mp4", "B.MKV", "c.webm", "d.m4v", "e.mov"])
    def test_media_files(self, filename):
        assert is_media_file(filename)

    @pytest.mark.parametrize("filename", ["a.mp4.part", "a.f137.mp4.ytdl", "a.temp.mp4", "a.jpg", "notes.txt"])
    def test_non_media_files(self, filename):
        assert not is_media_file(filename)

    def test_partial_markers(self):
        assert is_partial_file("clip.mp4.part")
        assert is_partial_file("clip.mp4.ytdl")
        assert not is_partial_file("clip.mp4")
