from pathlib import Path

import pytest

from tbridge import project
from tbridge.project import detect_project, parse_git_remote, path_structure, project_slug


@pytest.mark.parametrize(
    "url,org,name",
    [
        ("git@github.com:acme/widgets.git", "acme", "widgets"),
        ("git@github.com:acme/widgets", "acme", "widgets"),
        ("https://github.com/acme/widgets.git", "acme", "widgets"),
        ("https://github.com/acme/widgets", "acme", "widgets"),
        ("https://gitlab.com/acme/platform/widgets.git", "platform", "widgets"),
    ],
)
def test_parse_git_remote(url, org, name):
    info = parse_git_remote(url)
    assert (info.organization, info.name) == (org, name)


def test_unparseable_remote_keeps_url():
    info = parse_git_remote("file:///srv/repo")
    assert info.url == "file:///srv/repo"
    assert info.name is None


def test_path_structure():
    assert path_structure(Path("/home/me/Projects/acme/widgets")) == ("widgets", "acme")
    assert path_structure(Path("/src/github.com/acme/widgets")) == ("widgets", "acme")
    assert path_structure(Path("/tmp/scratch")) == ("scratch", None)


def test_project_slug():
    assert project_slug("Acme Inc", "My_Widgets!") == "acme-inc-my-widgets"
    assert project_slug(None, None) == "default"


class TestDetectProject:
    def test_manifest_name(self, project_dir):
        ctx = detect_project(project_dir)

        assert ctx.project_id == "acme-widgets"
        assert ctx.organization == "acme"
        assert ctx.project_name == "widgets"
        assert ctx.project_type == "directory"
        assert ctx.group_id == "project-acme-widgets"
        assert ctx.project_path == str(project_dir.resolve())

    def test_plain_directory(self, tmp_path):
        (tmp_path / "scratch").mkdir()
        ctx = detect_project(tmp_path / "scratch", group_id="team")

        assert ctx.project_id == "scratch"
        assert ctx.group_id == "team"

    def test_group_id_from_env(self, project_dir, monkeypatch):
        monkeypatch.setenv("GROUP_ID", "shared")
        assert detect_project(project_dir).group_id == "shared"

    def test_git_remote_wins(self, project_dir, monkeypatch):
        (project_dir / ".git").mkdir()
        monkeypatch.setattr(project, "git_output", lambda args, cwd: "git@github.com:octo/gadgets.git")

        ctx = detect_project(project_dir / "src")

        assert ctx.project_type == "git"
        assert ctx.project_path == str(project_dir.resolve())
        assert (ctx.organization, ctx.project_name) == ("octo", "gadgets")
        assert ctx.git_remote == "git@github.com:octo/gadgets.git"

    def test_git_without_remote_falls_back(self, project_dir, monkeypatch):
        (project_dir / ".git").mkdir()
        monkeypatch.setattr(project, "git_output", lambda args, cwd: None)

        ctx = detect_project(project_dir)

        assert ctx.project_type == "git"
        assert ctx.project_id == "acme-widgets"
        assert ctx.git_remote is None
