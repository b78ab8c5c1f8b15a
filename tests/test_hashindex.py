import hashlib
import os
import threading

from mcfetch.hashindex import ContentHashIndex, sha1_of


def _sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def test_sha1_of_matches_hashlib(tmp_path):
    path = tmp_path / "a.jar"
    path.write_bytes(b"x" * 3_000_000)
    assert sha1_of(path) == _sha1(b"x" * 3_000_000)


def test_lazy_scan_only_indexes_archives(tmp_path):
    (tmp_path / "a.jar").write_bytes(b"alpha")
    (tmp_path / "b.zip").write_bytes(b"beta")
    (tmp_path / "notes.txt").write_bytes(b"gamma")

    index = ContentHashIndex()
    assert index.contains(tmp_path, _sha1(b"alpha"))
    assert index.contains(tmp_path, _sha1(b"beta").upper())
    assert not index.contains(tmp_path, _sha1(b"gamma"))
    assert not index.contains(tmp_path, None)


def test_missing_directory_is_empty(tmp_path):
    index = ContentHashIndex()
    assert not index.contains(tmp_path / "mods", _sha1(b"anything"))


def test_install_then_delete(tmp_path):
    mods = tmp_path / "mods"
    mods.mkdir()
    index = ContentHashIndex()
    digest = _sha1(b"content")
    assert not index.contains(mods, digest)

    path = mods / "mod.jar"
    path.write_bytes(b"content")
    index.record_install(path)
    assert index.contains(mods, digest)

    index.record_delete(path)
    assert not path.exists()
    assert not index.contains(mods, digest)


def test_same_hash_is_scoped_per_directory(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    first.mkdir()
    second.mkdir()
    (first / "mod.jar").write_bytes(b"shared")

    index = ContentHashIndex()
    digest = _sha1(b"shared")
    assert index.contains(first, digest)
    assert not index.contains(second, digest)


def test_external_change_triggers_rescan(tmp_path):
    index = ContentHashIndex()
    assert not index.contains(tmp_path, _sha1(b"late"))

    path = tmp_path / "late.jar"
    path.write_bytes(b"late")
    # Force a distinct directory mtime even on coarse-grained filesystems.
    stat = tmp_path.stat()
    os.utime(tmp_path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
    assert index.contains(tmp_path, _sha1(b"late"))


def test_invalidate_forces_rebuild(tmp_path):
    index = ContentHashIndex()
    (tmp_path / "a.jar").write_bytes(b"one")
    assert index.contains(tmp_path, _sha1(b"one"))
    index.invalidate(tmp_path)
    (tmp_path / "a.jar").unlink()
    assert not index.contains(tmp_path, _sha1(b"one"))


def test_concurrent_adds_are_all_kept(tmp_path):
    index = ContentHashIndex()
    digests = [_sha1(str(i).encode()) for i in range(200)]

    def worker(chunk):
        for digest in chunk:
            index.add(tmp_path, digest)

    threads = [threading.Thread(target=worker, args=(digests[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert index.hashes(tmp_path) == set(digests)


def test_deleting_one_of_two_identical_files_keeps_the_hash(tmp_path):
    (tmp_path / "a.jar").write_bytes(b"same")
    (tmp_path / "b.jar").write_bytes(b"same")
    digest = _sha1(b"same")

    index = ContentHashIndex()
    assert index.contains(tmp_path, digest)
    index.record_delete(tmp_path / "a.jar")
    assert (tmp_path / "b.jar").exists()
    assert index.contains(tmp_path, digest)

    index.record_delete(tmp_path / "b.jar")
    assert not index.contains(tmp_path, digest)


def test_recording_the_same_install_twice_counts_once(tmp_path):
    index = ContentHashIndex()
    path = tmp_path / "mod.jar"
    path.write_bytes(b"content")
    index.record_install(path)
    index.record_install(path)
    index.record_delete(path)
    assert not index.contains(tmp_path, _sha1(b"content"))


def test_reinstall_with_new_content_replaces_old_hash(tmp_path):
    index = ContentHashIndex()
    path = tmp_path / "mod.jar"
    path.write_bytes(b"v1")
    index.record_install(path)
    path.write_bytes(b"v2")
    index.record_install(path)
    assert index.contains(tmp_path, _sha1(b"v2"))
    assert not index.contains(tmp_path, _sha1(b"v1"))
