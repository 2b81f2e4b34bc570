"""
Unified storage layer for file operations

This module provides a unified interface for different storage backends:
- Local filesystem
- AWS S3
- Aliyun OSS
- MinIO
- Huawei Cloud OBS
- Tencent Cloud COS

Usage:
    from omnifs.storage import get_storage_client

    # Get storage client (lazy initialization)
    storage = get_storage_client()

    # Upload file
    await storage.save("uploads/file.pdf", file_bytes, "application/pdf")

    # Download file
    async with await storage.read("uploads/file.pdf") as stream:
        content = await stream.read()

    # Browser URL, signed when the bucket is private
    url = await storage.full_path("uploads/file.pdf")

    # Delete file
    await storage.delete("uploads/file.pdf")
"""

# Attributes and errors
from .attributes import Attribute, DirectoryAttribute, FileAttribute, FileType, Visibility, deserialize
from .errors import (
    InvalidUrlError,
    NotFoundError,
    PartialFailureError,
    PartialMoveError,
    PermissionDeniedError,
    StorageConfigurationError,
    StorageError,
    TransientError,
    TypeMismatchError
)
from .options import (
    AliyunOptions,
    AwsOptions,
    HuaweiOptions,
    LocalOptions,
    MinioOptions,
    StorageOptions,
    TencentOptions
)
from .stream import ReadStream

# Import all storage classes
from .abstract import AbstractStorage
from .local import LocalStorage
from .aws import AwsStorage
from .aliyun import AliyunStorage
from .minio import MinioStorage
from .huawei import HuaweiStorage
from .tencent import TencentStorage

# Import configuration and factory
from .config_manager import StorageConfigManager
from .factory import StorageFactory, get_storage_client, new_storage

#-----------------------------------------------------------------------------
# Export all
#-----------------------------------------------------------------------------

__all__ = [
    # Attributes
    "Attribute",
    "DirectoryAttribute",
    "FileAttribute",
    "FileType",
    "Visibility",
    "deserialize",

    # Errors
    "InvalidUrlError",
    "NotFoundError",
    "PartialFailureError",
    "PartialMoveError",
    "PermissionDeniedError",
    "StorageConfigurationError",
    "StorageError",
    "TransientError",
    "TypeMismatchError",

    # Options
    "AliyunOptions",
    "AwsOptions",
    "HuaweiOptions",
    "LocalOptions",
    "MinioOptions",
    "StorageOptions",
    "TencentOptions",

    # Storage classes
    "AbstractStorage",
    "ReadStream",
    "LocalStorage",
    "AwsStorage",
    "AliyunStorage",
    "MinioStorage",
    "HuaweiStorage",
    "TencentStorage",

    # Configuration and factory
    "StorageConfigManager",
    "StorageFactory",
    "get_storage_client",
    "new_storage",
]
