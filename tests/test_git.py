"""Tests for git context resolution."""

import tempfile
from pathlib import Path

import pytest

from agent_transcripts.git import (
    derive_relative_cwd,
    infer_git_context,
    parse_git_remote_url,
    resolve_git_context,
)
from agent_transcripts.models import GitContext


@pytest.fixture
def repo_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir) / "widgets"
        (root / ".git").mkdir(parents=True)
        (root / ".git" / "config").write_text(
            '[core]\n\tbare = false\n[remote "origin"]\n\turl = git@github.com:acme/widgets.git\n'
        )
        (root / ".git" / "HEAD").write_text("ref: refs/heads/develop\n")
        (root / "pkg" / "sub").mkdir(parents=True)
        yield root


class TestParseGitRemoteUrl:
    def test_ssh(self):
        assert parse_git_remote_url("git@github.com:acme/widgets.git") == "github.com/acme/widgets"

    def test_https(self):
        assert parse_git_remote_url("https://gitlab.com/group/sub/proj.git") == "gitlab.com/group/sub/proj"
        assert parse_git_remote_url("https://bitbucket.org/team/repo") == "bitbucket.org/team/repo"

    def test_unrecognized(self):
        assert parse_git_remote_url("not a url") is None


class TestResolveGitContext:
    def test_repo_root(self, repo_dir):
        git = resolve_git_context(str(repo_dir))
        assert git == GitContext(relative_cwd="", branch="develop", repo="github.com/acme/widgets")

    def test_subdirectory_and_recorded_branch(self, repo_dir):
        git = resolve_git_context(str(repo_dir / "pkg" / "sub"), "feature/x")
        assert git.relative_cwd == "pkg/sub"
        assert git.branch == "feature/x"

    def test_outside_repository(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            git = resolve_git_context(tmpdir, "main")
        assert git.repo is None
        assert git.branch == "main"

    def test_missing_directory(self):
        assert resolve_git_context("/nonexistent/dir/for/test", "main") == GitContext(branch="main")

    def test_no_cwd(self):
        assert resolve_git_context(None) is None


class TestInferGitContext:
    def test_hosting_segment(self):
        git = infer_git_context("/home/dev/src/github.com/acme/widgets/pkg", "main")
        assert git == GitContext(relative_cwd="pkg", branch="main", repo="github.com/acme/widgets")

    def test_repo_root(self):
        assert infer_git_context("/src/gitlab/acme/widgets").relative_cwd == ""

    def test_no_hosting_segment(self):
        assert infer_git_context("/tmp/scratch", "main") == GitContext(branch="main")


class TestDeriveRelativeCwd:
    def test_below_repo_segment(self):
        assert derive_relative_cwd("/code/widgets/pkg/sub", "widgets") == "pkg/sub"

    def test_at_repo_root(self):
        assert derive_relative_cwd("/code/widgets", "widgets") == "."

    def test_unknown(self):
        assert derive_relative_cwd("/code/other", "widgets") is None
        assert derive_relative_cwd(None, "widgets") is None
