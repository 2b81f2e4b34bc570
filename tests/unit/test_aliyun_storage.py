"""Unit tests for AliyunStorage with a mocked oss2 bucket."""

import base64
import io
from types import SimpleNamespace

import oss2
import pytest
from PIL import Image

from omnifs.storage import (
    AliyunOptions,
    AliyunStorage,
    DirectoryAttribute,
    NotFoundError,
    PartialFailureError,
    PermissionDeniedError,
    StorageConfigurationError,
    TransientError,
)

# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


def _options(**kwargs) -> AliyunOptions:
    params = {
        "access_key_id": "LTAI5tExampleKey",
        "secret_access_key": "ExampleSecret",
        "endpoint": "oss-cn-hangzhou.aliyuncs.com",
        "bucket": "assets",
        "prefix": "app",
        "public": False,
    }
    params.update(kwargs)
    return AliyunOptions(**params)


@pytest.fixture
def storage() -> AliyunStorage:
    return AliyunStorage(_options())


@pytest.fixture
def bucket(storage, mocker):
    mock = mocker.MagicMock()
    mocker.patch.object(storage, "_bucket", mock)
    return mock


def _server_error(status: int, code: str) -> oss2.exceptions.ServerError:
    return oss2.exceptions.ServerError(status, {}, b"", {"Code": code, "Message": f"{code} message"})


def _obj(key: str, size: int = 1):
    return SimpleNamespace(key=key, size=size, last_modified=1700000000)


# ------------------------------------------------------------------
# Construction
# ------------------------------------------------------------------


@pytest.mark.unit
def test_missing_endpoint_is_a_configuration_error():
    with pytest.raises(StorageConfigurationError, match="endpoint"):
        AliyunStorage(_options(endpoint=""))


# ------------------------------------------------------------------
# info / read / save
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_info(storage, bucket):
    bucket.head_object.return_value = SimpleNamespace(
        last_modified=1700000000, content_length=42, content_type="image/png"
    )

    attr = await storage.info("img/a.png")

    bucket.head_object.assert_called_once_with("app/img/a.png")
    assert (attr.path, attr.file_size, attr.mime_type, attr.last_modified) == ("img/a.png", 42, "image/png", 1700000000)


@pytest.mark.unit
@pytest.mark.parametrize(
    "error, expected",
    [
        (_server_error(404, "NoSuchKey"), NotFoundError),
        (_server_error(403, "AccessDenied"), PermissionDeniedError),
        (_server_error(500, "InternalError"), TransientError),
        (oss2.exceptions.RequestError(ConnectionError("connection reset")), TransientError),
    ],
)
async def test_error_translation(storage, bucket, error, expected):
    bucket.head_object.side_effect = error

    with pytest.raises(expected):
        await storage.info("a.txt")


@pytest.mark.unit
async def test_has_file_uses_object_exists(storage, bucket):
    bucket.object_exists.return_value = True
    assert await storage.has_file("a.txt") is True
    bucket.object_exists.assert_called_once_with("app/a.txt")

    bucket.object_exists.side_effect = _server_error(403, "AccessDenied")
    assert await storage.has_file("a.txt") is False


@pytest.mark.unit
async def test_has_file_is_false_for_directory_keys(storage, bucket):
    bucket.object_exists.return_value = True

    assert await storage.has_file("docs/") is False
    bucket.object_exists.assert_not_called()


@pytest.mark.unit
async def test_read(storage, bucket):
    bucket.get_object.return_value = io.BytesIO(b"payload")

    assert await storage.read_bytes("a.txt") == b"payload"
    bucket.get_object.assert_called_once_with("app/a.txt")


@pytest.mark.unit
async def test_move_onto_same_key_keeps_the_object(storage, bucket):
    await storage.move("docs/a.txt", "/docs/a.txt")

    bucket.copy_object.assert_not_called()
    bucket.delete_object.assert_not_called()


@pytest.mark.unit
async def test_save_from_async_iterable_is_spooled(storage, bucket):
    uploaded = {}

    def put_object(key, data, headers=None):
        uploaded.update(key=key, data=data.read(), headers=headers)

    bucket.put_object.side_effect = put_object

    async def chunks():
        yield b"ab"
        yield b"cd"

    await storage.save("a.json", chunks())

    assert uploaded == {"key": "app/a.json", "data": b"abcd", "headers": {"Content-Type": "application/json"}}


# ------------------------------------------------------------------
# list
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_list_follows_continuation_tokens(storage, bucket):
    pages = [
        SimpleNamespace(
            prefix_list=["app/docs/sub/"],
            object_list=[_obj("app/docs/")] + [_obj(f"app/docs/f{i:05d}.txt") for i in range(999)],
            is_truncated=True,
            next_continuation_token="t1",
        ),
        SimpleNamespace(
            prefix_list=[],
            object_list=[_obj(f"app/docs/f{i:05d}.txt") for i in range(999, 1999)],
            is_truncated=True,
            next_continuation_token="t2",
        ),
        SimpleNamespace(
            prefix_list=[],
            object_list=[_obj(f"app/docs/f{i:05d}.txt") for i in range(1999, 2500)],
            is_truncated=False,
            next_continuation_token="",
        ),
    ]
    bucket.list_objects_v2.side_effect = pages

    entries = [attr async for attr in storage.list("docs")]

    tokens = [call.kwargs["continuation_token"] for call in bucket.list_objects_v2.call_args_list]
    assert tokens == ["", "t1", "t2"]
    assert all(call.kwargs["delimiter"] == "/" for call in bucket.list_objects_v2.call_args_list)
    assert all(call.kwargs["max_keys"] == 1000 for call in bucket.list_objects_v2.call_args_list)

    assert entries[0] == DirectoryAttribute(path="docs/sub", visibility="private")
    assert len(entries) == 2501
    assert entries[-1].path == "docs/f02499.txt"


# ------------------------------------------------------------------
# Bulk delete
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_delete_multiple_reports_keys_not_deleted(storage, bucket):
    bucket.head_object.return_value = SimpleNamespace(last_modified=0, content_length=1, content_type="")
    bucket.batch_delete_objects.return_value = SimpleNamespace(deleted_keys=["app/a.txt"])

    with pytest.raises(PartialFailureError) as exc_info:
        await storage.delete_multiple(["a.txt", "b.txt"])

    bucket.batch_delete_objects.assert_called_once_with(["app/a.txt", "app/b.txt"])
    assert list(exc_info.value.failed) == ["b.txt"]
    assert exc_info.value.deleted == ["a.txt"]


# ------------------------------------------------------------------
# cover
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_cover_uses_image_pipeline(storage, bucket):
    await storage.cover("img/a.png", "img/a_thumb.png", 100, 50)

    target = base64.urlsafe_b64encode(b"app/img/a_thumb.png").decode()
    bucket.process_object.assert_called_once_with(
        "app/img/a.png", f"image/resize,m_lfit,w_100,h_50|sys/saveas,o_{target}"
    )


@pytest.mark.unit
async def test_cover_without_size_copies(storage, bucket):
    await storage.cover("img/a.png", "img/b.png", 0, 0)

    bucket.copy_object.assert_called_once_with("assets", "app/img/a.png", "app/img/b.png")
    bucket.process_object.assert_not_called()


@pytest.mark.unit
async def test_cover_falls_back_to_local_resize(storage, bucket, sample_png):
    bucket.process_object.side_effect = _server_error(400, "InvalidArgument")
    bucket.get_object.return_value = io.BytesIO(sample_png)
    uploaded = {}
    bucket.put_object.side_effect = lambda key, data, headers=None: uploaded.update(key=key, data=data.read())

    await storage.cover("img/a.png", "img/a_thumb.png", 100, 0)

    assert uploaded["key"] == "app/img/a_thumb.png"
    with Image.open(io.BytesIO(uploaded["data"])) as img:
        assert img.size == (100, 50)


@pytest.mark.unit
async def test_cover_of_missing_source(storage, bucket):
    bucket.process_object.side_effect = _server_error(404, "NoSuchKey")

    with pytest.raises(NotFoundError):
        await storage.cover("missing.png", "thumb.png", 10, 10)

    bucket.get_object.assert_not_called()


@pytest.mark.unit
async def test_cover_locally_when_remote_processing_is_off(bucket, mocker, sample_png):
    storage = AliyunStorage(_options(remote_image_process=False))
    mocker.patch.object(storage, "_bucket", bucket)
    bucket.get_object.return_value = io.BytesIO(sample_png)

    await storage.cover("a.png", "b.png", 20, 20)

    bucket.process_object.assert_not_called()
    bucket.put_object.assert_called_once()


# ------------------------------------------------------------------
# URLs
# ------------------------------------------------------------------


@pytest.mark.unit
async def test_signed_url_round_trip(storage):
    # oss2 signs locally, no request is sent.
    url = await storage.full_path("docs/a b.png")

    assert url.startswith("https://assets.oss-cn-hangzhou.aliyuncs.com/app/docs/")
    assert "Signature=" in url
    assert storage.original_path(url) == "docs/a b.png"


@pytest.mark.unit
async def test_public_url():
    storage = AliyunStorage(_options(public=True, secure=False))

    url = await storage.full_path("a.png")

    assert url == "http://assets.oss-cn-hangzhou.aliyuncs.com/app/a.png"
    assert storage.original_path(url) == "a.png"


@pytest.mark.unit
async def test_public_url_with_cdn():
    storage = AliyunStorage(_options(public=True, cdn="https://static.example.com/"))

    url = await storage.full_path("a.png")

    assert url == "https://static.example.com/app/a.png"
    assert storage.original_path(url) == "a.png"
    assert storage.original_path("https://assets.oss-cn-hangzhou.aliyuncs.com/app/a.png") == "a.png"
