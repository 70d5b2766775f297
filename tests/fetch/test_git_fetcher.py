import shutil
import subprocess

import pytest

from rmm_build.errors import DependencyFetchError
from rmm_build.fetch import GitFetcher
from rmm_build.models import DependencySpec

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd, *args) -> str:
    completed = subprocess.run(
        ["git", "-c", "user.name=rmm", "-c", "user.email=rmm@example.invalid", *args],
        cwd=cwd, check=True, text=True, capture_output=True,
    )
    return completed.stdout.strip()


@pytest.fixture
def upstream(tmp_path):
    """Local repository with two commits, the first one tagged v1.0"""
    repo = tmp_path / "upstream"
    repo.mkdir()
    _git(repo, "init", "--quiet")

    (repo / "include").mkdir()
    (repo / "include" / "lib.h").write_text("#pragma once\n", encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "first")
    _git(repo, "tag", "v1.0")
    first = _git(repo, "rev-parse", "HEAD")

    (repo / "include" / "lib.h").write_text("#pragma once\n// v2\n", encoding="utf-8")
    _git(repo, "commit", "--quiet", "-am", "second")
    second = _git(repo, "rev-parse", "HEAD")
    return repo, first, second


def test_shallow_fetch_of_tag(tmp_path, upstream):
    repo, first, _ = upstream
    spec = DependencySpec(name="lib", repository=repo.as_uri(), revision="v1.0", shallow=True)

    commit = GitFetcher(retries=1).fetch(spec, tmp_path / "lib-src")

    assert commit == first
    assert (tmp_path / "lib-src" / "include" / "lib.h").read_text(encoding="utf-8") == "#pragma once\n"


def test_fetch_of_commit_checks_out_exact_revision(tmp_path, upstream):
    repo, first, second = upstream
    spec = DependencySpec(name="lib", repository=repo.as_uri(), revision=first, shallow=True)

    commit = GitFetcher(retries=1).fetch(spec, tmp_path / "lib-src")

    assert commit == first
    assert commit != second


def test_unknown_commit_fails_without_retry(tmp_path, upstream):
    repo, _, _ = upstream
    delays = []
    spec = DependencySpec(name="lib", repository=repo.as_uri(), revision="f" * 40)

    with pytest.raises(DependencyFetchError) as exc_info:
        GitFetcher(retries=3, sleep=delays.append).fetch(spec, tmp_path / "lib-src")

    assert "not found" in str(exc_info.value)
    assert delays == []


def test_unreachable_repository_retried_then_fails(tmp_path):
    delays = []
    spec = DependencySpec(
        name="lib", repository=(tmp_path / "missing").as_uri(), revision="v1.0", shallow=True)

    with pytest.raises(DependencyFetchError) as exc_info:
        GitFetcher(retries=3, retry_delay=0.5, sleep=delays.append).fetch(spec, tmp_path / "lib-src")

    assert delays == [0.5, 1.0]
    assert exc_info.value.context["attempts"] == "3"
    assert not (tmp_path / "lib-src").exists()


def test_missing_git_executable(tmp_path):
    spec = DependencySpec(name="lib", repository="https://example.invalid/lib.git", revision="v1.0")

    with pytest.raises(DependencyFetchError) as exc_info:
        GitFetcher(git="git-does-not-exist").fetch(spec, tmp_path / "lib-src")

    assert "git executable not found" in str(exc_info.value)
