"""Tests for the mirror synchronizer: symlinks, hard-link mirror, degradation."""

import errno
import os
from pathlib import Path

import pytest

from thoughts.config import EffectiveConfig
from thoughts.errors import OverlayConflict
from thoughts.mirror import MirrorSynchronizer, diff_mirror, scan_mirror
from thoughts.planner import plan
from thoughts.types import EntryState, FileIdentity

from conftest import write


@pytest.fixture
def store(tmp_path):
    root = tmp_path / "store"
    for d in ("repos/proj/alice", "repos/proj/shared", "global/alice", "global/shared"):
        (root / d).mkdir(parents=True)
    return root


@pytest.fixture
def wd(tmp_path):
    path = tmp_path / "work" / "proj"
    path.mkdir(parents=True)
    return path


def _plan(store, wd):
    eff = EffectiveConfig(thoughts_repo=store, repos_dir="repos", global_dir="global", user="alice")
    return plan("proj", eff, wd)


def _apply(store, wd, force=False):
    return MirrorSynchronizer().apply(_plan(store, wd), force=force)


def _ino(path: Path) -> int:
    return os.lstat(path).st_ino


# ---------------------------------------------------------------------------
# Pure diff
# ---------------------------------------------------------------------------

class TestDiffMirror:
    """diff_mirror is a pure set difference."""

    def test_all_four_buckets(self):
        same = FileIdentity(1, 10, 5, 100)
        desired = {
            "keep.md": same,
            "new.md": FileIdentity(1, 11, 5, 100),
            "stale.md": FileIdentity(1, 12, 5, 100),
            "dir-in-the-way": FileIdentity(1, 13, 5, 100),
        }
        actual = {
            "keep.md": same,
            "stale.md": FileIdentity(1, 99, 5, 100),
            "dir-in-the-way": None,
            "extra.md": FileIdentity(1, 14, 5, 100),
        }
        d = diff_mirror(desired, actual)
        assert d.create == ["new.md"]
        assert d.remove == ["extra.md"]
        assert d.replace == ["dir-in-the-way", "stale.md"]
        assert d.unchanged == ["keep.md"]
        assert not d.in_sync

    def test_empty_is_in_sync(self):
        assert diff_mirror({}, {}).in_sync

    def test_cross_device_copy_current_by_size_and_mtime(self):
        source = FileIdentity(dev=1, ino=10, size=5, mtime_ns=100)
        assert FileIdentity(2, 77, 5, 100).is_current_for(source)
        assert not FileIdentity(2, 77, 6, 100).is_current_for(source)
        assert not FileIdentity(1, 77, 5, 100).is_current_for(source)


# ---------------------------------------------------------------------------
# Applying a plan
# ---------------------------------------------------------------------------

class TestApply:
    """Symlinks then mirror; every run converges to the plan."""

    def test_creates_symlinks_and_hardlinks(self, store, wd):
        src = write(store / "repos" / "proj" / "alice" / "todo.md", "do things")
        report = _apply(store, wd)

        assert [link.action for link in report.links] == ["created"] * 3
        assert os.readlink(wd / "thoughts" / "user") == str(store / "repos" / "proj" / "alice")
        mirrored = wd / "thoughts" / "searchable" / "user" / "todo.md"
        assert _ino(mirrored) == _ino(src)
        assert report.mirror.created == 1
        assert report.mirror.errors == []

    def test_second_run_changes_nothing(self, store, wd):
        write(store / "global" / "alice" / "idea.md")
        _apply(store, wd)
        report = _apply(store, wd)
        assert [link.action for link in report.links] == ["unchanged"] * 3
        assert report.mirror.created == report.mirror.removed == report.mirror.replaced == 0
        assert report.mirror.unchanged == 1

    def test_added_and_deleted_files_converge(self, store, wd):
        first = write(store / "repos" / "proj" / "shared" / "a" / "one.md")
        _apply(store, wd)

        first.unlink()
        (store / "repos" / "proj" / "shared" / "a").rmdir()
        write(store / "repos" / "proj" / "shared" / "two.md")
        report = _apply(store, wd)

        searchable = wd / "thoughts" / "searchable"
        assert report.mirror.removed == 1
        assert report.mirror.created == 1
        assert not (searchable / "shared" / "a").exists()  # empty dir pruned
        assert (searchable / "shared" / "two.md").exists()

    def test_replaced_source_is_relinked(self, store, wd):
        src = write(store / "repos" / "proj" / "alice" / "note.md", "v1")
        _apply(store, wd)
        mirrored = wd / "thoughts" / "searchable" / "user" / "note.md"

        # Editors save by writing a new file and renaming it over the old one
        tmp = write(src.with_name("note.md.swp"), "v2")
        os.replace(tmp, src)
        assert _ino(mirrored) != _ino(src)

        diff = MirrorSynchronizer().inspect_mirror(_plan(store, wd))
        assert diff.replace == ["user/note.md"]

        report = _apply(store, wd)
        assert report.mirror.replaced == 1
        assert _ino(mirrored) == _ino(src)
        assert mirrored.read_text() == "v2"

    def test_stale_temporaries_are_cleaned(self, store, wd):
        _apply(store, wd)
        leftover = write(wd / "thoughts" / "searchable" / "user" / ".thoughts-tmp-123-note.md")
        _apply(store, wd)
        assert not leftover.exists()

    def test_store_content_untouched_by_mirror_removal(self, store, wd):
        src = write(store / "repos" / "proj" / "alice" / "keep.md", "precious")
        _apply(store, wd)
        write(wd / "thoughts" / "searchable" / "user" / "junk.md")
        _apply(store, wd)
        assert src.read_text() == "precious"


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------

class TestConflicts:
    """Occupied destinations stop the run before anything is changed."""

    def test_wrong_symlink_conflicts_without_force(self, store, wd, tmp_path):
        (wd / "thoughts").mkdir()
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        os.symlink(elsewhere, wd / "thoughts" / "shared")

        with pytest.raises(OverlayConflict) as exc:
            _apply(store, wd)
        assert str(wd / "thoughts" / "shared") in str(exc.value)
        # Preflight failed, so nothing was created
        assert not os.path.lexists(wd / "thoughts" / "user")
        assert not (wd / "thoughts" / "searchable").exists()

    def test_force_replaces_wrong_symlink(self, store, wd, tmp_path):
        (wd / "thoughts").mkdir()
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        os.symlink(elsewhere, wd / "thoughts" / "shared")

        report = _apply(store, wd, force=True)
        actions = {link.category: link.action for link in report.links}
        assert actions["shared"] == "replaced"
        assert elsewhere.is_dir()

    def test_real_directory_is_moved_aside_under_force(self, store, wd):
        notes = write(wd / "thoughts" / "user" / "mine.md", "local notes")
        with pytest.raises(OverlayConflict):
            _apply(store, wd)

        _apply(store, wd, force=True)
        assert (wd / "thoughts" / "user").is_symlink()
        assert (wd / "thoughts" / "user.bak" / "mine.md").read_text() == "local notes"
        assert not notes.exists()

    def test_inspect_symlink_states(self, store, wd, tmp_path):
        p = _plan(store, wd)
        sync = MirrorSynchronizer()
        user = p.symlinks[0]
        assert sync.inspect_symlink(user) is EntryState.MISSING

        sync.apply(p)
        assert sync.inspect_symlink(user) is EntryState.OK

        user.dest.unlink()
        os.symlink(tmp_path, user.dest)
        assert sync.inspect_symlink(user) is EntryState.WRONG_TARGET

        user.dest.unlink()
        user.dest.mkdir()
        assert sync.inspect_symlink(user) is EntryState.NOT_A_LINK


# ---------------------------------------------------------------------------
# Degradation and error isolation
# ---------------------------------------------------------------------------

class TestDegradation:
    """Hard-link failures degrade to copies or per-file errors."""

    def test_cross_device_falls_back_to_copy(self, store, wd, monkeypatch):
        write(store / "repos" / "proj" / "alice" / "a.md", "alpha")
        write(store / "global" / "alice" / "b.md", "beta")

        def no_link(src, dst, *args, **kwargs):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(os, "link", no_link)
        report = _apply(store, wd)

        searchable = wd / "thoughts" / "searchable"
        assert report.mirror.copied == 2
        assert report.mirror.errors == []
        assert (searchable / "user" / "a.md").read_text() == "alpha"
        assert (searchable / "global" / "alice" / "b.md").read_text() == "beta"

    def test_one_bad_file_does_not_abort(self, store, wd, monkeypatch):
        write(store / "repos" / "proj" / "alice" / "bad.md")
        write(store / "repos" / "proj" / "alice" / "good.md")
        real_link = os.link

        def flaky_link(src, dst, *args, **kwargs):
            if Path(src).name == "bad.md":
                raise OSError(errno.EIO, "Input/output error")
            return real_link(src, dst, *args, **kwargs)

        monkeypatch.setattr(os, "link", flaky_link)
        report = _apply(store, wd)

        assert report.mirror.created == 1
        assert [rel for rel, _ in report.mirror.errors] == ["user/bad.md"]
        assert (wd / "thoughts" / "searchable" / "user" / "good.md").exists()

    def test_existing_link_with_right_inode_is_success(self, store, wd):
        src = write(store / "repos" / "proj" / "alice" / "race.md")
        dest = wd / "thoughts" / "searchable" / "user" / "race.md"
        dest.parent.mkdir(parents=True)
        os.link(src, dest)

        outcome = MirrorSynchronizer()._hardlink(src, dest, FileIdentity.of(src), replace=False)
        assert outcome == "unchanged"

    def test_existing_entry_with_wrong_inode_is_relinked(self, store, wd):
        src = write(store / "repos" / "proj" / "alice" / "race.md", "from store")
        dest = write(wd / "thoughts" / "searchable" / "user" / "race.md", "left by another writer")
        assert _ino(dest) != _ino(src)

        outcome = MirrorSynchronizer()._hardlink(src, dest, FileIdentity.of(src), replace=False)
        assert outcome == "linked"
        assert _ino(dest) == _ino(src)
        assert dest.read_text() == "from store"

    def test_scan_reports_symlinks_as_foreign(self, tmp_path):
        root = tmp_path / "searchable"
        write(root / "user" / "real.md")
        os.symlink(root / "user" / "real.md", root / "user" / "link.md")
        found = scan_mirror(root)
        assert found["user/link.md"] is None
        assert found["user/real.md"] is not None
