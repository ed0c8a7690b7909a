"""Tests for CollisionResolver."""

from __future__ import annotations

import re

import pytest

from safeupload.core.uploads import (
    AllowedPolicy,
    CollisionResolver,
    CollisionStrategy,
    CustomStrategy,
)


@pytest.fixture
def upload_dir(tmp_path):
    directory = tmp_path / "dest"
    directory.mkdir()
    return directory


def touch(directory, *names):
    for name in names:
        (directory / name).write_bytes(b"x")


class TestIsUnique:

    def test_free_name(self, upload_dir):
        assert CollisionResolver().is_unique(upload_dir, "photo")

    def test_taken_under_other_extension(self, upload_dir):
        touch(upload_dir, "photo.jpg")
        assert not CollisionResolver().is_unique(upload_dir, "photo", extension="png")

    def test_taken_in_batch_case_insensitive(self, upload_dir):
        assert not CollisionResolver().is_unique(upload_dir, "Photo", used_in_batch=["PHOTO.png"])

    def test_unknown_extension_is_checked_too(self, upload_dir):
        touch(upload_dir, "notes.xyz")
        resolver = CollisionResolver()

        assert resolver.is_unique(upload_dir, "notes")
        assert not resolver.is_unique(upload_dir, "notes", extension="xyz")

    def test_restricted_universe(self, upload_dir):
        touch(upload_dir, "photo.jpg")
        assert CollisionResolver(extensions=["pdf"]).is_unique(upload_dir, "photo")


class TestIncrement:

    def test_free_name_unchanged(self, upload_dir):
        assert CollisionResolver().resolve(upload_dir, "photo.png") == "photo.png"

    def test_existing_file(self, upload_dir):
        touch(upload_dir, "photo.png")
        assert CollisionResolver().resolve(upload_dir, "photo.png") == "photo_1.png"

    def test_existing_stem_with_other_extension(self, upload_dir):
        touch(upload_dir, "photo.jpg", "photo_1.pdf")
        assert CollisionResolver().resolve(upload_dir, "photo.png") == "photo_2.png"

    def test_keeps_original_extension_case(self, upload_dir):
        touch(upload_dir, "scan.pdf")
        assert CollisionResolver().resolve(upload_dir, "scan.PDF") == "scan_1.PDF"

    def test_batch(self, upload_dir):
        resolved = CollisionResolver().resolve_many(upload_dir, ["photo.png", "photo.png", "photo.jpg"])
        assert resolved == ["photo.png", "photo_1.png", "photo_2.jpg"]

    def test_exhausted_attempts_fall_back_to_random(self, upload_dir):
        touch(upload_dir, "photo.png", "photo_1.png")
        resolver = CollisionResolver(max_increment_attempts=2)

        assert re.fullmatch(r"photo_[0-9a-f]{8}\.png", resolver.resolve(upload_dir, "photo.png"))


class TestOtherStrategies:

    def test_uuid(self, upload_dir):
        touch(upload_dir, "photo.png")
        resolver = CollisionResolver(CollisionStrategy.UUID)

        assert re.fullmatch(r"photo_[0-9a-f]{8}\.png", resolver.resolve(upload_dir, "photo.png"))

    def test_strategy_from_string(self):
        assert CollisionResolver("uuid").strategy is CollisionStrategy.UUID

    def test_timestamp(self, upload_dir):
        touch(upload_dir, "report.pdf")
        resolver = CollisionResolver(CollisionStrategy.TIMESTAMP, clock=lambda: 1700000000.25)

        assert resolver.resolve(upload_dir, "report.pdf") == "report_1700000000.pdf"

    def test_timestamp_same_second_adds_counter(self, upload_dir):
        touch(upload_dir, "report.pdf", "report_1700000000.pdf")
        sleeps = []
        resolver = CollisionResolver(
            CollisionStrategy.TIMESTAMP, clock=lambda: 1700000000.5, sleep=sleeps.append)

        assert resolver.resolve(upload_dir, "report.pdf") == "report_1700000000_1.pdf"
        assert sleeps == [0.001]

    def test_timestamp_new_second_restarts(self, upload_dir):
        touch(upload_dir, "report.pdf", "report_100.pdf")
        ticks = iter([100.0, 101.0])
        resolver = CollisionResolver(
            CollisionStrategy.TIMESTAMP, clock=lambda: next(ticks), sleep=lambda _: None)

        assert resolver.resolve(upload_dir, "report.pdf") == "report_101.pdf"

    def test_custom_strategy(self, upload_dir):
        touch(upload_dir, "photo.png")
        calls = []

        def generate(base, directory, extensions, used):
            calls.append((base, directory, used))
            return f"{base}-copy"

        resolver = CollisionResolver(CustomStrategy(generate))
        result = resolver.resolve(upload_dir, "photo.png", ["other.png"])

        assert result == "photo-copy.png"
        assert calls == [("photo", upload_dir, frozenset({"other.png"}))]


class TestConfiguration:

    def test_for_policy_limits_extensions(self, upload_dir):
        touch(upload_dir, "photo.jpg")
        resolver = CollisionResolver().for_policy(AllowedPolicy.from_tokens(["pdf"]))

        assert resolver.extensions == ("pdf",)
        assert resolver.resolve(upload_dir, "photo.pdf") == "photo.pdf"

    def test_from_settings(self):
        class Settings:
            strategy = "timestamp"
            high_performance = False
            filter_by_policy = True
            max_increment_attempts = 5
            max_uuid_attempts = 6
            max_timestamp_attempts = 7

        resolver = CollisionResolver.from_settings(Settings(), AllowedPolicy.from_tokens(["cad"]))

        assert resolver.strategy is CollisionStrategy.TIMESTAMP
        assert resolver.max_timestamp_attempts == 7
        assert "dwg" in resolver.extensions
        assert "png" not in resolver.extensions

    def test_high_performance_forces_uuid(self):
        class Settings:
            strategy = "increment"
            high_performance = True
            filter_by_policy = False
            max_increment_attempts = 1000
            max_uuid_attempts = 100
            max_timestamp_attempts = 1000

        assert CollisionResolver.from_settings(Settings()).strategy is CollisionStrategy.UUID


def test_resolving_free_name_is_stable(upload_dir):
    touch(upload_dir, "photo.png")
    resolver = CollisionResolver()

    assert resolver.resolve(upload_dir, "photo.png") == resolver.resolve(upload_dir, "photo.png")
