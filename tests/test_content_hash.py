"""Unit tests for content fingerprints and fingerprint-bearing file names."""

import re

import pytest

from story_orchestrator.common.content_hash import (
    FINGERPRINT_LENGTH,
    canonicalize_settings,
    extract_fingerprint,
    find_artifact,
    fingerprint,
    fingerprint_filename,
    is_fingerprint,
)
from story_orchestrator.common.schema_job_record import JobKind

# ============================================================================
# Fingerprint Tests
# ============================================================================


class TestFingerprint:
    def test_fingerprint_format(self):
        """Fingerprint is 64 lowercase hex characters."""
        fp = fingerprint("a dragon over the hills", {"style": "watercolor"})
        assert len(fp) == FINGERPRINT_LENGTH
        assert re.fullmatch(r"[0-9a-f]{64}", fp)

    def test_fingerprint_is_deterministic(self):
        """Same inputs always yield the same fingerprint."""
        settings = {"style": "watercolor", "size": [512, 512]}
        assert fingerprint("prompt", settings) == fingerprint("prompt", settings)

    def test_settings_key_order_does_not_matter(self):
        """Key order, including nested mappings, never changes the fingerprint."""
        first = {"voice": "alloy", "options": {"speed": 1.0, "pitch": 0}}
        second = {"options": {"pitch": 0, "speed": 1.0}, "voice": "alloy"}
        assert fingerprint("hello", first) == fingerprint("hello", second)

    def test_content_change_changes_fingerprint(self):
        assert fingerprint("hello", {"voice": "alloy"}) != fingerprint(
            "hello!", {"voice": "alloy"}
        )

    def test_settings_change_changes_fingerprint(self):
        assert fingerprint("hello", {"voice": "alloy"}) != fingerprint(
            "hello", {"voice": "echo"}
        )

    def test_text_and_bytes_content_agree(self):
        """Text content is hashed as its UTF-8 bytes."""
        assert fingerprint("héllo", {}) == fingerprint("héllo".encode("utf-8"), {})

    def test_missing_settings_equal_empty_settings(self):
        assert fingerprint(b"abc") == fingerprint(b"abc", {})

    def test_content_settings_boundary_is_unambiguous(self):
        """Moving bytes between content and settings never collides."""
        assert fingerprint('ab{"', {}) != fingerprint("ab", None)
        assert canonicalize_settings({"b": 1, "a": 2}) == b'{"a":2,"b":1}'


# ============================================================================
# File Name Tests
# ============================================================================


class TestFingerprintFilename:
    def test_filename_embeds_fingerprint(self):
        fp = fingerprint("page one", {"style": "ink"})
        assert fingerprint_filename("image", fp, "jpg") == f"image_{fp}.jpg"

    def test_filename_accepts_kind_enum_and_dotted_extension(self):
        fp = fingerprint("page one")
        assert fingerprint_filename(JobKind.speech, fp, ".mp3") == f"speech_{fp}.mp3"

    def test_filename_rejects_non_fingerprint(self):
        with pytest.raises(ValueError, match="Not a content fingerprint"):
            fingerprint_filename("image", "abc123", "jpg")

    def test_is_fingerprint(self):
        assert is_fingerprint("a" * 64)
        assert is_fingerprint("A" * 64)
        assert not is_fingerprint("a" * 63)
        assert not is_fingerprint("g" * 64)


# ============================================================================
# Extraction Tests
# ============================================================================


class TestExtractFingerprint:
    @pytest.mark.parametrize(
        "template",
        [
            "{fp}",
            "image_{fp}.jpg",
            "stories/12/pages/3/image_{fp}.jpg",
            "C:\\media\\speech_{fp}.mp3",
            "video-{fp}-final.mp4",
        ],
    )
    def test_extract_from_generated_names(self, template: str):
        """A fingerprint put into a path is recovered from it."""
        fp = fingerprint("a story page", {"style": "ink"})
        assert extract_fingerprint(template.format(fp=fp)) == fp

    def test_extract_lowercases(self):
        fp = fingerprint("x")
        assert extract_fingerprint(f"image_{fp.upper()}.png") == fp

    @pytest.mark.parametrize(
        "path",
        [None, "", "image.jpg", "stories/12/image_abc123.jpg", "x" * 64 + ".jpg"],
    )
    def test_extract_without_fingerprint(self, path: str | None):
        assert extract_fingerprint(path) is None

    def test_extract_ignores_longer_hex_runs(self):
        """A 65-character hex segment is not a fingerprint."""
        assert extract_fingerprint("image_" + "a" * 65 + ".jpg") is None


class TestFindArtifact:
    def test_find_matching_artifact(self):
        fp = fingerprint("page two", {"style": "ink"})
        other = fingerprint("page three", {"style": "ink"})
        paths = [None, f"image_{other}.jpg", f"stories/1/image_{fp}.jpg"]
        assert find_artifact(paths, fp) == f"stories/1/image_{fp}.jpg"

    def test_find_artifact_miss(self):
        fp = fingerprint("page two")
        assert find_artifact(["image.jpg", None], fp) is None
        assert find_artifact([], fp) is None
