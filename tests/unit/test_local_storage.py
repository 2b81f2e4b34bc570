"""Unit tests for LocalStorage."""

import os

import pytest
from PIL import Image

from omnifs.storage import (
    DirectoryAttribute,
    FileAttribute,
    InvalidUrlError,
    LocalOptions,
    LocalStorage,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
)

skip_if_root = pytest.mark.skipif(
    hasattr(os, "geteuid") and os.geteuid() == 0,
    reason="permission bits are not enforced for root",
)

# ------------------------------------------------------------------
# Construction
# ------------------------------------------------------------------


@pytest.mark.unit
def test_base_path_is_created(tmp_path):
    root = tmp_path / "a" / "b"
    storage = LocalStorage(LocalOptions(base_path=str(root)))

    assert root.is_dir()
    assert storage.base_path == root.resolve()
    assert storage.get_storage_type() == "local"


# ------------------------------------------------------------------
# info / has_file / has_dir
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_info_of_file(local_storage, storage_root, sample_png):
    (storage_root / "img").mkdir()
    (storage_root / "img" / "a.png").write_bytes(sample_png)

    attr = await local_storage.info("/img/a.png")

    assert isinstance(attr, FileAttribute)
    assert attr.path == "img/a.png"
    assert attr.name == "a.png"
    assert attr.file_size == len(sample_png)
    assert attr.mime_type == "image/png"
    assert attr.last_modified > 0


@pytest.mark.unit
async def test_info_sniffs_content_not_extension(local_storage, storage_root, sample_png):
    (storage_root / "picture.dat").write_bytes(sample_png)

    attr = await local_storage.info("picture.dat")
    assert attr.mime_type == "image/png"


@pytest.mark.unit
async def test_info_falls_back_to_extension_for_text(local_storage, storage_root):
    (storage_root / "notes.md").write_text("# Title\n\nbody\n")

    attr = await local_storage.info("notes.md")
    assert attr.mime_type == "text/markdown"


@pytest.mark.unit
async def test_info_of_directory(local_storage, storage_root):
    (storage_root / "docs").mkdir()

    attr = await local_storage.info("docs/")

    assert isinstance(attr, DirectoryAttribute)
    assert attr.path == "docs"


@pytest.mark.unit
async def test_info_of_missing_file(local_storage):
    with pytest.raises(NotFoundError):
        await local_storage.info("nope.txt")


@pytest.mark.unit
async def test_has_file_and_has_dir(local_storage, storage_root):
    (storage_root / "docs").mkdir()
    (storage_root / "docs" / "a.txt").write_bytes(b"a")

    assert await local_storage.has_file("docs/a.txt")
    assert not await local_storage.has_file("docs")
    assert not await local_storage.has_file("missing.txt")
    assert not await local_storage.has_file("docs/a.txt/")
    assert await local_storage.has_dir("docs")
    assert not await local_storage.has_dir("docs/a.txt")
    assert not await local_storage.has_dir("missing")


@pytest.mark.unit
async def test_path_traversal_is_refused(local_storage):
    with pytest.raises(PermissionDeniedError, match="escapes the storage root"):
        await local_storage.info("../outside.txt")

    assert not await local_storage.has_file("../../etc/passwd")


@pytest.mark.unit
@skip_if_root
async def test_unreadable_file_is_permission_denied(local_storage, storage_root):
    secret = storage_root / "secret.txt"
    secret.write_bytes(b"x")
    secret.chmod(0o000)

    try:
        with pytest.raises(PermissionDeniedError):
            await local_storage.read("secret.txt")
    finally:
        secret.chmod(0o644)


# ------------------------------------------------------------------
# read / save
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_save_then_read(local_storage, storage_root):
    await local_storage.save("a/b/c.txt", b"hello world")

    assert (storage_root / "a" / "b" / "c.txt").read_bytes() == b"hello world"

    async with await local_storage.read("a/b/c.txt") as stream:
        assert await stream.read(5) == b"hello"
        assert await stream.read() == b" world"

    assert stream.closed


@pytest.mark.unit
async def test_save_overwrites(local_storage):
    await local_storage.save("a.txt", b"first version")
    await local_storage.save("a.txt", b"second")

    assert await local_storage.read_bytes("a.txt") == b"second"


@pytest.mark.unit
async def test_save_from_file_object_and_async_iterable(local_storage, tmp_path):
    source = tmp_path / "source.bin"
    source.write_bytes(b"0123456789" * 1000)

    with open(source, "rb") as f:
        await local_storage.save("from_file.bin", f)

    async def chunks():
        yield b"chunk1"
        yield b"chunk2"

    await local_storage.save("from_stream.bin", chunks())

    assert await local_storage.read_bytes("from_file.bin") == b"0123456789" * 1000
    assert await local_storage.read_bytes("from_stream.bin") == b"chunk1chunk2"


@pytest.mark.unit
async def test_save_refuses_directory_target(local_storage, storage_root):
    (storage_root / "docs").mkdir()

    with pytest.raises(StorageError, match="Cannot overwrite a directory"):
        await local_storage.save("docs", b"x")


@pytest.mark.unit
async def test_read_missing_file(local_storage):
    with pytest.raises(NotFoundError):
        await local_storage.read("missing.txt")


# ------------------------------------------------------------------
# copy / move / delete
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_copy_creates_parents(local_storage, storage_root):
    await local_storage.save("a.txt", b"data")

    await local_storage.copy("a.txt", "backup/2024/a.txt")

    assert (storage_root / "a.txt").read_bytes() == b"data"
    assert (storage_root / "backup" / "2024" / "a.txt").read_bytes() == b"data"


@pytest.mark.unit
async def test_copy_missing_source(local_storage):
    with pytest.raises(NotFoundError):
        await local_storage.copy("missing.txt", "b.txt")


@pytest.mark.unit
async def test_move(local_storage, storage_root):
    await local_storage.save("a.txt", b"data")

    await local_storage.move("a.txt", "moved/a.txt")

    assert not (storage_root / "a.txt").exists()
    assert (storage_root / "moved" / "a.txt").read_bytes() == b"data"


@pytest.mark.unit
async def test_delete(local_storage, storage_root):
    await local_storage.save("a.txt", b"data")

    await local_storage.delete("a.txt")

    assert not (storage_root / "a.txt").exists()
    with pytest.raises(NotFoundError):
        await local_storage.delete("a.txt")


@pytest.mark.unit
@skip_if_root
async def test_delete_in_read_only_directory(local_storage, storage_root):
    locked = storage_root / "locked"
    locked.mkdir()
    (locked / "a.txt").write_bytes(b"x")
    locked.chmod(0o555)

    try:
        with pytest.raises(PermissionDeniedError):
            await local_storage.delete("locked/a.txt")
    finally:
        locked.chmod(0o755)


@pytest.mark.unit
async def test_delete_multiple(local_storage, storage_root):
    for name in ("a.txt", "b.txt", "c.txt"):
        await local_storage.save(name, b"x")

    with pytest.raises(NotFoundError):
        await local_storage.delete_multiple(["a.txt", "missing.txt"])
    assert (storage_root / "a.txt").exists()

    await local_storage.delete_multiple(["a.txt", "b.txt"])

    assert sorted(p.name for p in storage_root.iterdir()) == ["c.txt"]


# ------------------------------------------------------------------
# Directories
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_mk_dir_and_delete_dir(local_storage, storage_root):
    await local_storage.mk_dir("x/y/z")
    assert (storage_root / "x" / "y" / "z").is_dir()

    # Existing directories are fine.
    await local_storage.mk_dir("x/y/z")

    await local_storage.delete_dir("x/y/z")
    assert not (storage_root / "x" / "y" / "z").exists()
    assert (storage_root / "x" / "y").is_dir()


@pytest.mark.unit
async def test_delete_dir_errors(local_storage, storage_root):
    with pytest.raises(NotFoundError):
        await local_storage.delete_dir("missing")

    await local_storage.save("full/a.txt", b"x")
    with pytest.raises(StorageError, match="not empty"):
        await local_storage.delete_dir("full")

    with pytest.raises(PermissionDeniedError, match="storage root"):
        await local_storage.delete_dir("")


# ------------------------------------------------------------------
# list
# ------------------------------------------------------------------


@pytest.fixture
async def populated(local_storage):
    await local_storage.save("b.txt", b"bb")
    await local_storage.save("a.png", b"a")
    await local_storage.save("docs/readme.md", b"# readme")
    await local_storage.save("docs/sub/deep.txt", b"deep")
    await local_storage.mk_dir("empty")
    return local_storage


@pytest.mark.unit
async def test_list_is_sorted_and_shallow(populated):
    entries = [attr async for attr in populated.list()]

    assert [(e.path, e.type.value) for e in entries] == [
        ("a.png", "file"),
        ("b.txt", "file"),
        ("docs", "directory"),
        ("empty", "directory"),
    ]
    assert entries[0].mime_type == "image/png"
    assert entries[1].file_size == 2


@pytest.mark.unit
async def test_list_recursive(populated):
    paths = [attr.path async for attr in populated.list("", recursive=True)]

    assert paths == [
        "a.png",
        "b.txt",
        "docs",
        "empty",
        "docs/readme.md",
        "docs/sub",
        "docs/sub/deep.txt",
    ]


@pytest.mark.unit
async def test_list_subdirectory(populated):
    paths = [attr.path async for attr in populated.list("/docs/")]
    assert paths == ["docs/readme.md", "docs/sub"]


@pytest.mark.unit
async def test_list_missing_directory(local_storage):
    with pytest.raises(NotFoundError):
        async for _ in local_storage.list("missing"):
            pass


@pytest.mark.unit
async def test_list_does_not_follow_symlinks(local_storage, storage_root, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_bytes(b"x")
    (storage_root / "link").symlink_to(outside, target_is_directory=True)

    entries = [attr async for attr in local_storage.list(recursive=True)]

    assert [(e.path, e.is_dir) for e in entries] == [("link", False)]


# ------------------------------------------------------------------
# Prefix
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_prefix_is_hidden_from_callers(storage_root):
    storage = LocalStorage(LocalOptions(base_path=str(storage_root), base_url="http://files.test/files", prefix="tenant-1"))

    await storage.save("docs/a.txt", b"x")

    assert (storage_root / "tenant-1" / "docs" / "a.txt").exists()
    assert [attr.path async for attr in storage.list(recursive=True)] == ["docs", "docs/a.txt"]
    assert await storage.full_path("docs/a.txt") == "http://files.test/files/tenant-1/docs/a.txt"
    assert storage.original_path("http://files.test/files/tenant-1/docs/a.txt") == "docs/a.txt"


# ------------------------------------------------------------------
# URLs
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_full_path_and_original_path(local_storage):
    url = await local_storage.full_path("/img/a.png")

    assert url == "http://files.test/files/img/a.png"
    assert local_storage.original_path(url) == "img/a.png"
    assert local_storage.original_path("http://files.test/files/img/a.png?x=1") == "img/a.png"


@pytest.mark.unit
@pytest.mark.parametrize(
    "url",
    [
        "http://other.test/files/img/a.png",
        "http://files.test/static/img/a.png",
        "img/a.png",
    ],
)
def test_original_path_rejects_foreign_urls(local_storage, url):
    with pytest.raises(InvalidUrlError):
        local_storage.original_path(url)


# ------------------------------------------------------------------
# cover / health
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_cover(local_storage, storage_root, sample_png):
    await local_storage.save("img/a.png", sample_png)

    await local_storage.cover("img/a.png", "img/thumbs/a.png", 0, 25)

    with Image.open(storage_root / "img" / "thumbs" / "a.png") as img:
        assert img.size == (50, 25)
        assert img.format == "PNG"


@pytest.mark.unit
async def test_health_check(local_storage):
    healthy, message = await local_storage.health_check()

    assert healthy is True
    assert "local" in message

