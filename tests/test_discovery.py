"""Tests for profile discovery."""

import pytest

from reprovision.capture import ArtifactMetadata, ProfileKind, discover, write_artifact
from reprovision.errors import ProfileNotFoundError


def _archive(path):
    metadata = ArtifactMetadata(captured_at_utc="", source_machine_id="m")
    return write_artifact(path, {"version": 1, "packages": ["git"]}, metadata)


def test_archive_beats_directory_beats_manifest(context, tmp_path, write_yaml):
    write_yaml(tmp_path / "work.yaml", {"version": 1})
    assert discover("work", context, cwd=tmp_path).kind == ProfileKind.MANIFEST

    write_yaml(tmp_path / "work" / "manifest.yaml", {"version": 1})
    assert discover("work", context, cwd=tmp_path).kind == ProfileKind.DIRECTORY

    _archive(tmp_path / "work.zip")
    profile = discover("work", context, cwd=tmp_path)
    assert profile.kind == ProfileKind.ARCHIVE
    assert profile.path == tmp_path / "work.zip"


def test_directory_without_manifest_is_ignored(context, tmp_path):
    (tmp_path / "work").mkdir()
    with pytest.raises(ProfileNotFoundError):
        discover("work", context, cwd=tmp_path)


def test_extensionless_file_is_not_a_profile(context, tmp_path, write_yaml):
    write_yaml(tmp_path / "work", {"version": 1})
    with pytest.raises(ProfileNotFoundError):
        discover("work", context, cwd=tmp_path)


def test_explicit_file_names(context, tmp_path, write_yaml):
    write_yaml(tmp_path / "m.yml", {"version": 1})
    assert discover("m.yml", context, cwd=tmp_path).kind == ProfileKind.MANIFEST
    _archive(tmp_path / "snap.zip")
    assert discover(str(tmp_path / "snap.zip"), context).kind == ProfileKind.ARCHIVE


def test_profiles_dir_is_searched_after_cwd(context, tmp_path, write_yaml):
    write_yaml(context.profiles_dir / "laptop.yaml", {"version": 1})
    profile = discover("laptop", context, cwd=tmp_path / "elsewhere")
    assert profile.path == context.profiles_dir / "laptop.yaml"

    write_yaml(tmp_path / "laptop.yaml", {"version": 1})
    assert discover("laptop", context, cwd=tmp_path).path == tmp_path / "laptop.yaml"


def test_not_found_lists_candidates(context, tmp_path):
    with pytest.raises(ProfileNotFoundError) as exc:
        discover("ghost", context, cwd=tmp_path)
    tried = exc.value.detail["tried"]
    assert str(tmp_path / "ghost.zip") in tried
    assert str(context.profiles_dir / "ghost.json") in tried


def test_archive_open_extracts_and_cleans_up(context, tmp_path):
    _archive(tmp_path / "snap.zip")
    profile = discover("snap", context, cwd=tmp_path)

    with profile.open() as manifest_path:
        assert manifest_path.name == "manifest.yaml"
        assert manifest_path.is_file()
        extracted = manifest_path.parent
    assert not extracted.exists()
