from __future__ import annotations

import errno
import io
import os
import stat

import pytest

from fileroot.services import file_store
from fileroot.services.errors import (
    AccessDenied,
    AlreadyExists,
    IsADirectory,
    NotADirectory,
    NotFound,
    StorageIOError,
    from_os_error,
)
from fileroot.services.file_store import FileStore
from fileroot.services.path_resolver import PathResolver


@pytest.fixture
def env(tmp_path):
    root = tmp_path / 'root'
    root.mkdir()
    resolver = PathResolver(root)
    return resolver, FileStore(resolver.root)


def test_write_then_read_round_trips_bytes(env):
    resolver, store = env
    payload = 'héllo\nworld\x00\xff'.encode('utf-8')

    store.write(resolver.resolve('notes/today.txt'), payload)

    assert store.read_content(resolver.resolve('notes/today.txt'), encoding=None) == payload


def test_write_creates_missing_parents(env):
    resolver, store = env

    store.write(resolver.resolve('a/b/c.txt'), b'hello')

    assert (resolver.root / 'a' / 'b').is_dir()
    assert store.read_content(resolver.resolve('a/b/c.txt')) == 'hello'


def test_write_replaces_existing_content_and_keeps_mode(env):
    resolver, store = env
    target = resolver.root / 'conf.ini'
    target.write_text('old')
    os.chmod(target, 0o640)

    store.write(resolver.resolve('conf.ini'), b'new')

    assert target.read_text() == 'new'
    assert stat.S_IMODE(target.stat().st_mode) == 0o640


def test_write_fsyncs_file_and_parent_directory(monkeypatch, env):
    resolver, store = env

    original_fsync = os.fsync
    calls = {'file': 0, 'dir': 0}

    def tracking_fsync(fd: int):
        mode = os.fstat(fd).st_mode
        if stat.S_ISDIR(mode):
            calls['dir'] += 1
        else:
            calls['file'] += 1
        return original_fsync(fd)

    monkeypatch.setattr(file_store.os, 'fsync', tracking_fsync)

    store.write(resolver.resolve('value.txt'), b'value')

    assert calls['file'] >= 1
    assert calls['dir'] >= 1


def test_interrupted_write_keeps_original_and_leaves_no_temp_file(monkeypatch, env):
    resolver, store = env
    target = resolver.root / 'doc.txt'
    target.write_bytes(b'original')

    def crash_before_rename(_src, _dst):
        raise OSError(errno.EIO, 'Input/output error')

    monkeypatch.setattr(file_store.os, 'replace', crash_before_rename)

    with pytest.raises(StorageIOError) as exc:
        store.write(resolver.resolve('doc.txt'), b'replacement')

    assert str(resolver.root) not in exc.value.message
    assert target.read_bytes() == b'original'
    assert [p.name for p in resolver.root.iterdir()] == ['doc.txt']


def test_write_into_directory_is_rejected(env):
    resolver, store = env
    (resolver.root / 'folder').mkdir()

    with pytest.raises(IsADirectory):
        store.write(resolver.resolve('folder'), b'x')


def test_write_below_a_file_is_rejected(env):
    resolver, store = env
    (resolver.root / 'plain.txt').write_text('x')

    with pytest.raises(NotADirectory):
        store.write(resolver.resolve('plain.txt/child.txt'), b'x')


def test_list_fresh_directory_is_empty(env):
    resolver, store = env
    (resolver.root / 'empty').mkdir()

    assert store.list_dir(resolver.resolve('empty')) == []


def test_list_reports_entries(env):
    resolver, store = env
    (resolver.root / 'sub').mkdir()
    (resolver.root / 'file.bin').write_bytes(b'12345')

    entries = {e.name: e for e in store.list_dir(resolver.resolve(''))}

    assert entries['sub'].is_directory is True
    assert entries['sub'].path == 'sub'
    assert entries['file.bin'].is_directory is False
    assert entries['file.bin'].size == 5
    assert entries['file.bin'].modified.tzinfo is not None


def test_list_missing_and_file_targets(env):
    resolver, store = env
    (resolver.root / 'file.txt').write_text('x')

    with pytest.raises(NotFound):
        store.list_dir(resolver.resolve('nope'))
    with pytest.raises(NotADirectory):
        store.list_dir(resolver.resolve('file.txt'))


def test_list_does_not_describe_symlink_targets_outside_root(tmp_path, env):
    resolver, store = env
    outside = tmp_path / 'outside'
    outside.mkdir()
    (outside / 'big.bin').write_bytes(b'x' * 4096)
    os.symlink(outside / 'big.bin', resolver.root / 'link.bin')
    os.symlink(outside, resolver.root / 'link-dir')
    (resolver.root / 'inner').mkdir()
    os.symlink(resolver.root / 'inner', resolver.root / 'inner-alias')

    entries = {e.name: e for e in store.list_dir(resolver.resolve(''))}

    assert entries['link.bin'].size != 4096
    assert entries['link-dir'].is_directory is False
    assert entries['inner-alias'].is_directory is True


def test_read_directory_and_missing_file(env):
    resolver, store = env
    (resolver.root / 'folder').mkdir()

    with pytest.raises(IsADirectory):
        store.read_content(resolver.resolve('folder'))
    with pytest.raises(NotFound):
        store.read_content(resolver.resolve('ghost.txt'))


def test_read_undecodable_file_is_io_error(env):
    resolver, store = env
    (resolver.root / 'blob.bin').write_bytes(b'\xff\xfe\xfa')

    with pytest.raises(StorageIOError):
        store.read_content(resolver.resolve('blob.bin'))


def test_read_refuses_symlink_swapped_in_after_resolution(tmp_path, env):
    resolver, store = env
    target = resolver.root / 'swap.txt'
    target.write_text('mine')
    resolved = resolver.resolve('swap.txt')

    secret = tmp_path / 'secret.txt'
    secret.write_text('theirs')
    target.unlink()
    os.symlink(secret, target)

    with pytest.raises(AccessDenied):
        store.read_content(resolved)


def test_delete_file_and_directory_tree(env):
    resolver, store = env
    (resolver.root / 'a.txt').write_text('a')
    (resolver.root / 'tree' / 'leaf').mkdir(parents=True)
    (resolver.root / 'tree' / 'leaf' / 'x.txt').write_text('x')

    store.delete(resolver.resolve('a.txt'))
    store.delete(resolver.resolve('tree'))

    assert list(resolver.root.iterdir()) == []


def test_delete_missing_is_not_found_unless_opted_in(env):
    resolver, store = env

    with pytest.raises(NotFound):
        store.delete(resolver.resolve('ghost'))

    store.delete(resolver.resolve('ghost'), missing_ok=True)


def test_delete_root_is_denied(env):
    resolver, store = env

    with pytest.raises(AccessDenied):
        store.delete(resolver.resolve(''))


def test_move_into_without_overwrite_refuses_existing(env):
    resolver, store = env
    (resolver.root / 'final.txt').write_text('keep')
    staged = store.stage(resolver.resolve('final.txt'), io.BytesIO(b'incoming'))

    with pytest.raises(AlreadyExists):
        store.move_into(staged, resolver.resolve('final.txt'), overwrite=False)

    assert (resolver.root / 'final.txt').read_text() == 'keep'
    store.discard(staged)
    assert [p.name for p in resolver.root.iterdir()] == ['final.txt']


def test_move_into_creates_parents_and_overwrites(env):
    resolver, store = env
    staged = store.stage(resolver.resolve('up.txt'), io.BytesIO(b'first'))
    store.move_into(staged, resolver.resolve('deep/dir/up.txt'), overwrite=True)

    (resolver.root / 'deep' / 'dir' / 'up.txt').write_text('old')
    staged = store.stage(resolver.resolve('deep/dir/up.txt'), io.BytesIO(b'second'))
    store.move_into(staged, resolver.resolve('deep/dir/up.txt'), overwrite=True)

    assert (resolver.root / 'deep' / 'dir' / 'up.txt').read_text() == 'second'
    assert sorted(p.name for p in (resolver.root / 'deep' / 'dir').iterdir()) == ['up.txt']
    assert [p.name for p in resolver.root.iterdir()] == ['deep']


def test_store_rejects_raw_paths(env):
    resolver, store = env

    with pytest.raises(TypeError):
        store.read_content(resolver.root / 'x.txt')


def test_delete_symlink_to_directory_removes_only_the_link(env):
    resolver, store = env
    (resolver.root / 'data').mkdir()
    (resolver.root / 'data' / 'precious.txt').write_text('keep')
    (resolver.root / 'shortcut').symlink_to(resolver.root / 'data')

    store.delete(resolver.resolve_entry('shortcut'))

    assert not os.path.lexists(resolver.root / 'shortcut')
    assert (resolver.root / 'data' / 'precious.txt').read_text() == 'keep'


def test_delete_symlink_pointing_outside_removes_only_the_link(tmp_path, env):
    resolver, store = env
    outside = tmp_path / 'outside'
    outside.mkdir()
    (outside / 'secret.txt').write_text('secret')
    (resolver.root / 'away').symlink_to(outside)

    store.delete(resolver.resolve_entry('away'))

    assert not os.path.lexists(resolver.root / 'away')
    assert (outside / 'secret.txt').read_text() == 'secret'


def test_move_into_replaces_symlink_to_directory(env):
    resolver, store = env
    (resolver.root / 'data').mkdir()
    (resolver.root / 'link').symlink_to(resolver.root / 'data')
    staged = store.stage(resolver.resolve_entry('link'), io.BytesIO(b'fresh'))

    store.move_into(staged, resolver.resolve_entry('link'), overwrite=True)

    assert not (resolver.root / 'link').is_symlink()
    assert (resolver.root / 'link').read_bytes() == b'fresh'
    assert list((resolver.root / 'data').iterdir()) == []


def test_unmapped_errno_becomes_io_error():
    assert isinstance(from_os_error(OSError(errno.ENOTEMPTY, 'Directory not empty'), 'tree'), StorageIOError)
    assert isinstance(from_os_error(OSError(errno.EEXIST, 'File exists'), 'tree'), AlreadyExists)
