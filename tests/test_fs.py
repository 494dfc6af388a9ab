import threading
import time

import pytest

from intent_warden.fs import Workspace, WorkspaceViolation
from intent_warden.locking import PathLockTable


class TestWorkspace:
    def test_relative_forms(self, tmp_path):
        ws = Workspace.from_path(tmp_path)
        assert ws.relative("src/./a/../b.ts") == "src/b.ts"
        assert ws.relative(str(tmp_path / "x" / "y.txt")) == "x/y.txt"

    @pytest.mark.parametrize("path", ["../a", "src/../../a", "/etc/passwd"])
    def test_escapes_rejected(self, tmp_path, path):
        ws = Workspace.from_path(tmp_path)
        with pytest.raises(WorkspaceViolation):
            ws.resolve_rel(path)
        assert ws.contains(path) is False

    def test_symlinks_resolve_to_their_target(self, tmp_path):
        ws = Workspace.from_path(tmp_path)
        (tmp_path / "src" / "utils").mkdir(parents=True)
        (tmp_path / "src" / "utils" / "helper.ts").write_text("x")
        (tmp_path / "src" / "auth").mkdir()
        (tmp_path / "src" / "auth" / "link.ts").symlink_to(tmp_path / "src" / "utils" / "helper.ts")
        assert ws.relative("src/auth/link.ts") == "src/utils/helper.ts"
        assert ws.resolve_rel("src/auth/link.ts") == ws.resolve_rel("src/utils/helper.ts")

    def test_symlink_out_of_workspace(self, tmp_path):
        root = tmp_path / "ws"
        root.mkdir()
        (tmp_path / "secret.txt").write_text("s")
        (root / "leak.txt").symlink_to(tmp_path / "secret.txt")
        ws = Workspace.from_path(root)
        with pytest.raises(WorkspaceViolation):
            ws.resolve_rel("leak.txt")
        assert ws.contains("leak.txt") is False

    def test_read_bytes(self, tmp_path):
        ws = Workspace.from_path(tmp_path)
        assert ws.read_bytes("missing.txt") is None
        (tmp_path / "f.bin").write_bytes(b"\x00\x01")
        assert ws.read_bytes("f.bin") == b"\x00\x01"


class TestPathLockTable:
    def test_locks_are_dropped_after_use(self):
        table = PathLockTable()
        with table.hold(["/b", "/a", "/a"]) as keys:
            assert keys == ["/a", "/b"]
            assert table.held_count() == 2
        assert table.held_count() == 0

    def test_same_path_is_serialized(self):
        table = PathLockTable()
        inside = []
        overlap = []

        def worker():
            with table.hold(["/same"]):
                inside.append(1)
                if len(inside) > 1:
                    overlap.append(True)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlap == []
        assert table.held_count() == 0

    def test_overlapping_sets_do_not_deadlock(self):
        table = PathLockTable()
        done = []

        def worker(keys):
            for _ in range(50):
                with table.hold(keys):
                    pass
            done.append(keys)

        a = threading.Thread(target=worker, args=(["/x", "/y"],))
        b = threading.Thread(target=worker, args=(["/y", "/x"],))
        a.start()
        b.start()
        a.join(5)
        b.join(5)
        assert len(done) == 2

    def test_released_on_exception(self):
        table = PathLockTable()
        with pytest.raises(RuntimeError):
            with table.hold(["/k"]):
                raise RuntimeError("boom")
        assert table.held_count() == 0
