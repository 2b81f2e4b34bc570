"""
Per-backend storage options

Options are immutable once built. Each adapter keeps the options it was
constructed from and never shares or mutates them.
"""

from dataclasses import dataclass

#-----------------------------------------------------------------------------

DEFAULT_SIGN_EXPIRES = 8 * 3600 + 60

#-----------------------------------------------------------------------------

@dataclass(frozen=True)
class StorageOptions:
    """
    Options shared by all backends

    Args:
        bucket: Bucket name (object storage only)
        prefix: Key prefix prepended to every path
        cdn: Base URL used for public links instead of the bucket host
        public: True for static public URLs, False for signed URLs
        secure: Use https for SDK transport and generated URLs
        sign_expires: Lifetime of signed URLs in seconds
        timeout: Network timeout in seconds
        remote_image_process: Use the backend image pipeline for covers
    """

    storage_type = ""

    bucket                  : str = ""
    prefix                  : str = ""
    cdn                     : str = ""
    public                  : bool = True
    secure                  : bool = True
    sign_expires            : int = DEFAULT_SIGN_EXPIRES
    timeout                 : int = 60
    remote_image_process    : bool = True

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

#-----------------------------------------------------------------------------

@dataclass(frozen=True)
class LocalOptions(StorageOptions):
    storage_type = "local"

    base_path   : str = "./.omnifs/storage/"
    base_url    : str = "http://localhost:18080/files"


@dataclass(frozen=True)
class AwsOptions(StorageOptions):
    storage_type = "aws"

    access_key_id       : str = ""
    secret_access_key   : str = ""
    region              : str = ""
    endpoint            : str = ""


@dataclass(frozen=True)
class AliyunOptions(StorageOptions):
    storage_type = "aliyun"

    access_key_id       : str = ""
    secret_access_key   : str = ""
    endpoint            : str = ""
    region              : str = ""


@dataclass(frozen=True)
class MinioOptions(StorageOptions):
    storage_type = "minio"

    access_key_id       : str = ""
    secret_access_key   : str = ""
    endpoint            : str = ""
    region              : str = "us-east-1"
    public_url          : str = ""
    is_aws_s3           : bool = False


@dataclass(frozen=True)
class HuaweiOptions(StorageOptions):
    storage_type = "huawei"

    access_key_id       : str = ""
    secret_access_key   : str = ""
    endpoint            : str = ""


@dataclass(frozen=True)
class TencentOptions(StorageOptions):
    storage_type = "tencent"

    secret_id   : str = ""
    secret_key  : str = ""
    token       : str = ""
    region      : str = ""

#-----------------------------------------------------------------------------
