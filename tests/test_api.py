"""Tests for init / uninit / status / sync lifecycle operations."""

import os
import re
import shutil
from pathlib import Path

import pytest

from thoughts.api import Thoughts, default_sync_message
from thoughts.config import ProfileConfig, RepoMapping
from thoughts.errors import (
    AlreadyInitialized,
    NotInitialized,
    OverlayConflict,
    ProfileNotFound,
    StoreUnavailable,
)
from thoughts.types import EntryState

from conftest import FakeVcs, write


def _snapshot(root: Path) -> dict:
    """Every path under ``root`` with its link target or inode."""
    snap = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            p = Path(dirpath) / name
            if p.is_symlink():
                snap[str(p.relative_to(root))] = ("link", os.readlink(p))
            elif p.is_file():
                snap[str(p.relative_to(root))] = ("file", os.lstat(p).st_ino)
            else:
                snap[str(p.relative_to(root))] = ("dir", None)
    return snap


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------

class TestInit:
    """init binds a directory and materializes its overlay."""

    def test_worked_example(self, th, config_store, store_root, workdir):
        result = th.init(workdir)

        assert result.slug == "proj"
        t = workdir / "thoughts"
        assert os.readlink(t / "user") == str(store_root / "repos" / "proj" / "alice")
        assert os.readlink(t / "shared") == str(store_root / "repos" / "proj" / "shared")
        assert os.readlink(t / "global") == str(store_root / "global")
        for d in ("repos/proj/alice", "repos/proj/shared", "global/alice", "global/shared"):
            assert (store_root / d).is_dir()
        assert config_store.config.repo_mappings[str(workdir)] == RepoMapping("proj")

    def test_searchable_populated_from_store(self, th, store_root, workdir):
        src = write(store_root / "repos" / "proj" / "shared" / "plan.md")
        write(store_root / "global" / "shared" / "team.md")
        th.init(workdir)

        searchable = workdir / "thoughts" / "searchable"
        assert os.lstat(searchable / "shared" / "plan.md").st_ino == os.lstat(src).st_ino
        assert (searchable / "global" / "shared" / "team.md").is_file()

    def test_idempotent(self, th, store_root, workdir):
        write(store_root / "repos" / "proj" / "alice" / "a.md")
        th.init(workdir)
        before = _snapshot(workdir)

        result = th.init(workdir)
        assert _snapshot(workdir) == before
        assert all(link.action == "unchanged" for link in result.report.links)
        assert result.report.mirror.created == 0

    def test_store_repository_created_once(self, th, fake_vcs, store_root, workdir):
        assert th.init(workdir).repository_created
        assert not th.init(workdir).repository_created
        assert fake_vcs.repos == {store_root}

    def test_same_basename_gets_distinct_slugs(self, th, make_workdir, store_root):
        a = th.init(make_workdir("a/proj"))
        b = th.init(make_workdir("b/proj"))
        assert a.slug != b.slug
        assert (store_root / "repos" / a.slug).is_dir()
        assert (store_root / "repos" / b.slug).is_dir()
        assert th.status(a.working_dir).slug == a.slug
        assert th.status(b.working_dir).slug == b.slug

    def test_different_slug_requires_force(self, th, config_store, workdir):
        th.init(workdir)
        with pytest.raises(AlreadyInitialized):
            th.init(workdir, slug="other")

        result = th.init(workdir, slug="other", force=True)
        assert result.slug == "other"
        assert config_store.config.repo_mappings[str(workdir)].repo == "other"

    def test_profile(self, config_store, fake_vcs, tmp_path, workdir):
        cfg = config_store.load()
        cfg.profiles["work"] = ProfileConfig(thoughts_repo=str(tmp_path / "work-store"))
        config_store.save(cfg)
        th = Thoughts(config_store, fake_vcs, install_hooks=False, ops_log=False)

        result = th.init(workdir, profile="work")
        assert result.profile == "work"
        assert os.readlink(workdir / "thoughts" / "global") == str(tmp_path / "work-store" / "global")
        assert config_store.config.repo_mappings[str(workdir)] == RepoMapping("proj", profile="work")

        # Re-running without --profile keeps the mapped profile
        assert th.init(workdir).profile == "work"

    def test_unknown_profile(self, th, config_store, workdir):
        with pytest.raises(ProfileNotFound):
            th.init(workdir, profile="nope")
        assert config_store.saves == 0

    def test_conflict_leaves_config_untouched(self, th, config_store, workdir, tmp_path):
        (workdir / "thoughts").mkdir()
        os.symlink(tmp_path, workdir / "thoughts" / "global")

        with pytest.raises(OverlayConflict):
            th.init(workdir)
        assert config_store.saves == 0
        assert os.readlink(workdir / "thoughts" / "global") == str(tmp_path)

    def test_reserved_user_rejected(self, config_store, fake_vcs, workdir):
        cfg = config_store.load()
        cfg.user = "global"
        config_store.save(cfg)
        th = Thoughts(config_store, fake_vcs, install_hooks=False, ops_log=False)
        with pytest.raises(ValueError):
            th.init(workdir)

    def test_global_dir_at_store_root_rejected(self, config_store, fake_vcs, store_root, workdir):
        cfg = config_store.load()
        cfg.global_dir = "."
        config_store.save(cfg)
        th = Thoughts(config_store, fake_vcs, install_hooks=False, ops_log=False)
        with pytest.raises(ValueError):
            th.init(workdir)
        assert not store_root.exists()

    def test_store_path_is_a_file(self, th, store_root, workdir):
        store_root.parent.mkdir(parents=True, exist_ok=True)
        store_root.write_text("not a directory")
        with pytest.raises(StoreUnavailable):
            th.init(workdir)

    def test_installs_hooks_when_in_git_repo(self, config_store, tmp_path, workdir):
        hooks_dir = tmp_path / "hooks"
        th = Thoughts(config_store, FakeVcs(hooks_dir=hooks_dir), ops_log=False)
        result = th.init(workdir)
        assert result.hooks == ["pre-commit", "post-commit"]
        assert (hooks_dir / "pre-commit").is_file()


# ---------------------------------------------------------------------------
# uninit
# ---------------------------------------------------------------------------

class TestUninit:
    """uninit removes the overlay and never store content."""

    def test_removes_overlay_keeps_store(self, th, config_store, store_root, workdir):
        note = write(store_root / "repos" / "proj" / "alice" / "keep.md", "precious")
        th.init(workdir)

        result = th.uninit(workdir)
        assert sorted(result.removed) == ["global", "searchable", "shared", "user"]
        assert not (workdir / "thoughts").exists()
        assert note.read_text() == "precious"
        assert (store_root / "repos" / "proj" / "shared").is_dir()
        assert str(workdir) not in config_store.config.repo_mappings

    def test_real_directory_left_alone(self, th, workdir):
        th.init(workdir)
        (workdir / "thoughts" / "shared").unlink()
        mine = write(workdir / "thoughts" / "shared" / "mine.md")

        result = th.uninit(workdir)
        assert result.left == ["shared"]
        assert mine.exists()

    def test_not_initialized(self, th, workdir):
        with pytest.raises(NotInitialized):
            th.uninit(workdir)

    def test_force_is_noop_success(self, th, workdir):
        result = th.uninit(workdir, force=True)
        assert result.removed == []
        assert not result.mapping_removed

    def test_unmapped_overlay_needs_force(self, th, config_store, workdir):
        th.init(workdir)
        cfg = config_store.load()
        cfg.repo_mappings.clear()
        config_store.save(cfg)

        with pytest.raises(NotInitialized):
            th.uninit(workdir)
        assert "user" in th.uninit(workdir, force=True).removed


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------

class TestStatus:
    """status is read-only and reuses the synchronizer's comparisons."""

    def test_unmapped(self, th, workdir):
        report = th.status(workdir)
        assert not report.mapped
        assert report.entries == []
        assert not (workdir / "thoughts").exists()

    def test_healthy_after_init(self, th, store_root, workdir):
        write(store_root / "global" / "alice" / "x.md")
        th.init(workdir)
        report = th.status(workdir)
        assert report.slug == "proj"
        assert report.healthy
        assert [e.state for e in report.entries] == [EntryState.OK] * 3
        assert report.vcs.is_repo

    def test_reports_drift_without_fixing(self, th, store_root, workdir):
        th.init(workdir)
        (workdir / "thoughts" / "user").unlink()
        write(store_root / "repos" / "proj" / "shared" / "new.md")

        report = th.status(workdir)
        states = {e.category: e.state for e in report.entries}
        assert states["user"] is EntryState.MISSING
        assert report.mirror.create == ["shared/new.md"]
        assert not report.healthy
        # Nothing was repaired
        assert not os.path.lexists(workdir / "thoughts" / "user")
        assert not (workdir / "thoughts" / "searchable" / "shared" / "new.md").exists()


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------

class TestSync:
    """sync reconciles first, then hands the store to the VCS."""

    def test_reconciles_then_commits(self, th, fake_vcs, store_root, workdir):
        th.init(workdir)
        write(store_root / "repos" / "proj" / "alice" / "later.md")

        result = th.sync(workdir, message="checkpoint")
        assert (workdir / "thoughts" / "searchable" / "user" / "later.md").exists()
        assert fake_vcs.commits == [(store_root, "checkpoint")]
        assert result.vcs.committed

    def test_default_message(self, th, fake_vcs, workdir):
        th.init(workdir)
        th.sync(workdir)
        message = fake_vcs.commits[0][1]
        assert re.fullmatch(r"Sync thoughts - \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", message)
        assert default_sync_message().startswith("Sync thoughts - ")

    def test_unmapped(self, th, workdir):
        with pytest.raises(NotInitialized):
            th.sync(workdir)

    def test_overlay_removed(self, th, workdir):
        th.init(workdir)
        th.uninit(workdir)
        with pytest.raises(NotInitialized):
            th.sync(workdir)

    def test_store_missing(self, th, store_root, workdir):
        th.init(workdir)
        shutil.rmtree(store_root)
        with pytest.raises(StoreUnavailable):
            th.sync(workdir)


# ---------------------------------------------------------------------------
# Config maintenance
# ---------------------------------------------------------------------------

class TestMaintenance:

    def test_prune_mappings(self, th, config_store, make_workdir, tmp_path):
        live = make_workdir("live/proj")
        th.init(live)
        cfg = config_store.load()
        cfg.repo_mappings[str(tmp_path / "gone")] = RepoMapping("gone")
        config_store.save(cfg)

        assert th.prune_mappings() == [str(tmp_path / "gone")]
        assert list(config_store.config.repo_mappings) == [str(live)]

    def test_profile_roundtrip(self, th, config_store):
        assert th.create_profile("client a", thoughts_repo="/tmp/client") == "client_a"
        assert "client_a" in config_store.config.profiles
        th.delete_profile("client_a")
        assert config_store.config.profiles == {}
