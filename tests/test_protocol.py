"""
Tests for the reference protocol.

Tests cover:
- URL normalization and base URLs
- Ref creation, parsing and resolution
- Repository identifiers and branch extraction
- List names, hashes, storage and display names
"""

import pytest

from gitsocial.protocol import (
    base_url,
    create_ref,
    is_repository_location,
    display_name,
    extract_branch_from_remote,
    is_my_repository,
    normalize_hash,
    normalize_url,
    parse_ref,
    parse_repository_id,
    resolve_ref,
    storage_name,
    storage_name_to_url,
    validate_hash,
    validate_list_name,
    validate_ref,
    validate_url,
)


class TestNormalizeUrl:
    """Tests for normalize_url."""

    def test_ssh_becomes_https(self):
        """SSH shorthand is rewritten to https."""
        assert normalize_url("git@github.com:user/repo.git") == "https://github.com/user/repo"

    def test_host_lowercased_path_kept(self):
        """Scheme and host are lowercased, the path keeps its case."""
        assert normalize_url("HTTPS://GitHub.com/User/Repo") == "https://github.com/User/Repo"

    def test_trailing_git_and_slash_removed(self):
        assert normalize_url("https://github.com/user/repo.git/") == "https://github.com/user/repo"
        assert normalize_url("https://github.com/user/repo/") == "https://github.com/user/repo"

    def test_idempotent(self):
        """Normalizing twice changes nothing."""
        once = normalize_url("git@GitLab.com:Group/Project.git")
        assert normalize_url(once) == once

    def test_non_url_is_trimmed(self):
        assert normalize_url("  myrepository  ") == "myrepository"

    def test_empty_passthrough(self):
        assert normalize_url("") == ""
        assert normalize_url(None) is None

    def test_base_url_drops_fragment(self):
        assert base_url("https://GitHub.com/u/r#branch:main") == "https://github.com/u/r"
        assert base_url("") == ""


class TestValidateUrl:
    """Tests for validate_url."""

    @pytest.mark.parametrize("url", [
        "https://github.com/user/repo",
        "git@github.com:user/repo.git",
        "http://example.com/a/b/c",
    ])
    def test_valid(self, url):
        assert validate_url(url)

    @pytest.mark.parametrize("url", [
        "",
        "github.com/user/repo",
        "https://github.com/user",
        "ftp://github.com/user/repo",
    ])
    def test_invalid(self, url):
        assert not validate_url(url)

    @pytest.mark.parametrize("url,expected", [
        ("https://github.com/user/repo", True),
        ("/srv/git/repo.git", True),
        ("file:///srv/git/repo", True),
        ("repo", False),
        ("github.com/user/repo", False),
        ("", False),
    ])
    def test_repository_location(self, url, expected):
        """Local paths are accepted as repository locations but not as hosted URLs."""
        assert is_repository_location(url) is expected


class TestRefs:
    """Tests for create_ref / parse_ref / resolve_ref."""

    def test_create_commit_ref_truncates_hash(self):
        """Commit values are lowercased and cut to 12 characters."""
        ref = create_ref("commit", "ABCDEF1234567890", "https://GitHub.com/u/r")
        assert ref == "https://github.com/u/r#commit:abcdef123456"

    def test_create_local_ref(self):
        assert create_ref("list", "reading") == "#list:reading"

    def test_parse_absolute_ref(self):
        parsed = parse_ref("https://github.com/u/r#list:reading")
        assert parsed.type == "list"
        assert parsed.value == "reading"
        assert parsed.repository == "https://github.com/u/r"
        assert not parsed.is_local

    def test_parse_local_ref(self):
        parsed = parse_ref("#commit:abcdef123456")
        assert parsed.type == "commit"
        assert parsed.repository == ""
        assert parsed.is_local

    def test_parse_unknown(self):
        parsed = parse_ref("not-a-ref")
        assert parsed.type == "unknown"
        assert parsed.value == "not-a-ref"

    def test_round_trip(self):
        ref = "https://github.com/u/r#branch:feature/x"
        assert parse_ref(ref).to_string() == ref

    def test_resolve_local_commit_ref(self):
        """A local commit ref becomes absolute against its repository."""
        resolved = resolve_ref("#commit:abcdef123456", "https://github.com/u/r")
        assert resolved == "https://github.com/u/r#commit:abcdef123456"

    def test_resolve_keeps_absolute_ref(self):
        ref = "https://github.com/other/r#commit:abcdef123456"
        assert resolve_ref(ref, "https://github.com/u/r") == ref

    def test_validate_ref(self):
        assert validate_ref("https://github.com/u/r#commit:abcdef123456", "commit")
        assert validate_ref("#list:reading", "list")
        assert not validate_ref("#commit:xyz", "commit")
        assert not validate_ref("", None)


class TestRepositoryId:
    """Tests for parse_repository_id and branch helpers."""

    def test_with_branch(self):
        parsed = parse_repository_id("https://GitHub.com/u/r#branch:develop")
        assert parsed.repository == "https://github.com/u/r"
        assert parsed.branch == "develop"
        assert parsed.to_string() == "https://github.com/u/r#branch:develop"

    def test_without_branch_defaults_to_main(self):
        parsed = parse_repository_id("https://github.com/u/r")
        assert parsed.branch == "main"

    @pytest.mark.parametrize("remote_branch,expected", [
        ("remotes/origin/feature/x", "feature/x"),
        ("origin/main", "main"),
        ("main", "main"),
    ])
    def test_extract_branch_from_remote(self, remote_branch, expected):
        assert extract_branch_from_remote(remote_branch) == expected

    def test_is_my_repository(self):
        my_url = "https://github.com/me/repo"
        assert is_my_repository("", my_url)
        assert is_my_repository("#commit:abcdef123456", my_url)
        assert is_my_repository("https://GitHub.com/me/repo#commit:abcdef123456", my_url)
        assert not is_my_repository("https://github.com/other/repo", my_url)
        assert is_my_repository("/work/repo", my_url, workdir="/work/repo")


class TestNamesAndHashes:
    """Tests for list names, hashes and derived names."""

    def test_list_name_limits(self):
        assert validate_list_name("a" * 40)
        assert not validate_list_name("a" * 41)
        assert not validate_list_name("")
        assert not validate_list_name("has space")
        assert validate_list_name("reading_list-2")

    def test_normalize_hash(self):
        assert normalize_hash("ABCDEF1234567890") == "abcdef123456"
        with pytest.raises(ValueError):
            normalize_hash("not-hex")

    def test_validate_hash(self):
        assert validate_hash("abcdef123456")
        assert not validate_hash("abcdef")

    def test_storage_name(self):
        assert storage_name("https://github.com/user/repo#branch:main") == "github-com-user-repo"
        assert storage_name("git@github.com:user/repo.git") == "github-com-user-repo"
        assert storage_name("") == "workspace"

    def test_storage_name_reverse_for_known_hosts(self):
        assert storage_name_to_url("github-com-user-repo") == "https://github.com/user/repo"
        assert storage_name_to_url("workspace") == ""

    def test_display_name(self):
        assert display_name("https://github.com/user/repo.git") == "user/repo"
        assert display_name("/tmp/remotes/alice") == "remotes/alice"
        assert display_name("") == "unknown"
