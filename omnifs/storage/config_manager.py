import logging, os

from ..utils.config import Config, safe_read_cfg
from .options import (
    DEFAULT_SIGN_EXPIRES,
    AliyunOptions,
    AwsOptions,
    HuaweiOptions,
    LocalOptions,
    MinioOptions,
    StorageOptions,
    TencentOptions
)

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

DEFAULT_LOCAL_BASE_PATH = "./.omnifs/storage/"
DEFAULT_LOCAL_BASE_URL = "http://localhost:18080/files"

#-----------------------------------------------------------------------------

class StorageConfigManager:
    """
    Unified configuration manager for storage backends

    Reads the storage keys from a Config (or the global one) and turns them
    into immutable options records. STORAGE_TYPE picks a backend explicitly,
    otherwise the first configured backend in PRIORITY_ORDER wins.
    """

    # Storage type priority order (cloud storage first, local as fallback)
    PRIORITY_ORDER = ["aws", "aliyun", "huawei", "tencent", "minio", "local"]

    def __init__(self, config: Config | None = None):
        self._config = config

        self._config_cache: dict[str, StorageOptions | None] = {}
        self._available_storages: list[str] | None = None

    #-----------------------------------------------------

    def _read(self, key: str, default: str = "") -> str:
        if self._config is not None:
            value = self._config.get_str(key, default)
        else:
            value = safe_read_cfg(key, default)
        return (value or "").strip()

    def _read_bool(self, key: str, default: bool) -> bool:
        value = self._read(key).lower()
        if not value:
            return default
        return value in ("true", "1", "yes", "on")

    def _read_int(self, key: str, default: int) -> int:
        value = self._read(key)
        try:
            return int(value) if value else default
        except ValueError:
            logger.warning(f"Invalid integer for {key}: {value}, using {default}")
            return default

    def _common_options(self) -> dict:
        """Options shared by every backend"""
        return {
            "secure": self._read_bool("STORAGE_SECURE", True),
            "sign_expires": self._read_int("STORAGE_SIGN_EXPIRES", DEFAULT_SIGN_EXPIRES),
            "timeout": self._read_int("STORAGE_TIMEOUT", 60),
            "remote_image_process": self._read_bool("STORAGE_REMOTE_IMAGE_PROCESS", True)
        }

    #-----------------------------------------------------

    def detect_available_storage(self) -> list[str]:
        """
        Detect all available storage configurations

        Returns:
            List of available storage types in priority order
        """
        if self._available_storages is not None:
            return self._available_storages

        checks = {
            "aws": self._has_aws_config,
            "aliyun": self._has_aliyun_config,
            "huawei": self._has_huawei_config,
            "tencent": self._has_tencent_config,
            "minio": self._has_minio_config
        }

        available = []
        for storage_type in self.PRIORITY_ORDER:
            check = checks.get(storage_type)
            if check and check():
                available.append(storage_type)
                logger.info(f"{storage_type} storage configuration detected")

        # Local storage is always available as fallback
        available.append("local")

        self._available_storages = available
        logger.info(f"Available storages (priority order): {', '.join(available)}")

        return available

    def get_storage_config(self, storage_type: str) -> StorageOptions | None:
        """
        Get configuration for specified storage type

        Args:
            storage_type: Storage type ('local', 'aws', 'aliyun', 'huawei', 'tencent', 'minio')

        Returns:
            Options record or None if the backend is not configured
        """
        storage_type = storage_type.strip().lower()
        if storage_type in self._config_cache:
            return self._config_cache[storage_type]

        builders = {
            "local": self._get_local_config,
            "aws": self._get_aws_config,
            "aliyun": self._get_aliyun_config,
            "huawei": self._get_huawei_config,
            "tencent": self._get_tencent_config,
            "minio": self._get_minio_config
        }

        builder = builders.get(storage_type)
        options = builder() if builder else None

        self._config_cache[storage_type] = options
        return options

    def get_primary_storage(self) -> tuple[str, StorageOptions | None]:
        """
        Get primary storage type and configuration

        Returns:
            Tuple of (storage_type, options)
        """
        explicit = self._read("STORAGE_TYPE").lower()
        if explicit:
            logger.info(f"Storage type set by configuration: {explicit}")
            return explicit, self.get_storage_config(explicit)

        primary_type = self.detect_available_storage()[0]
        logger.info(f"Primary storage selected: {primary_type}")

        return primary_type, self.get_storage_config(primary_type)

    def clear_cache(self):
        """Clear configuration cache (useful for testing)"""
        self._config_cache.clear()
        self._available_storages = None

    #-----------------------------------------------------
    # Local Storage Configuration
    #-----------------------------------------------------

    def _get_local_config(self) -> LocalOptions:
        base_path = self._read("LOCAL_BASE_PATH") or DEFAULT_LOCAL_BASE_PATH

        # Files are served by the data server when it has a public URL
        base_url = self._read("LOCAL_BASE_URL")
        if not base_url:
            data_public_url = self._read("DATA_PUBLIC_URL")
            base_url = f"{data_public_url.rstrip('/')}/files" if data_public_url else DEFAULT_LOCAL_BASE_URL

        logger.info(f"Using local storage: base_path={base_path}, base_url={base_url}")

        return LocalOptions(
            base_path   = base_path,
            base_url    = base_url,
            prefix      = self._read("LOCAL_PREFIX"),
            public      = True,
            **self._common_options()
        )

    #-----------------------------------------------------
    # AWS S3 Configuration
    #-----------------------------------------------------

    def _has_aws_config(self) -> bool:
        return bool(
            self._read("S3_KEY") and
            self._read("S3_TOKEN") and
            self._read("S3_REGION") and
            self._read("S3_BUCKET")
        )

    def _get_aws_config(self) -> AwsOptions | None:
        if not self._has_aws_config():
            return None

        return AwsOptions(
            access_key_id       = self._read("S3_KEY"),
            secret_access_key   = self._read("S3_TOKEN"),
            region              = self._read("S3_REGION"),
            bucket              = self._read("S3_BUCKET"),
            prefix              = self._read("S3_PREFIX"),
            cdn                 = self._read("S3_CDN"),
            endpoint            = self._read("S3_ENDPOINT"),
            public              = self._read_bool("S3_PUBLIC", False),
            **self._common_options()
        )

    #-----------------------------------------------------
    # Aliyun OSS Configuration
    #-----------------------------------------------------

    def _has_aliyun_config(self) -> bool:
        return bool(
            self._read("ALI_OSS_ACCESS_KEY") and
            self._read("ALI_OSS_SECRET_KEY") and
            self._read("ALI_OSS_ENDPOINT") and
            self._read("ALI_OSS_BUCKET_NAME")
        )

    def _get_aliyun_config(self) -> AliyunOptions | None:
        if not self._has_aliyun_config():
            return None

        return AliyunOptions(
            access_key_id       = self._read("ALI_OSS_ACCESS_KEY"),
            secret_access_key   = self._read("ALI_OSS_SECRET_KEY"),
            endpoint            = self._read("ALI_OSS_ENDPOINT"),
            region              = self._read("ALI_OSS_REGION"),
            bucket              = self._read("ALI_OSS_BUCKET_NAME"),
            prefix              = self._read("ALI_OSS_PREFIX"),
            cdn                 = self._read("ALI_OSS_DOMAIN"),
            public              = self._read_bool("ALI_OSS_PUBLIC", False),
            **self._common_options()
        )

    #-----------------------------------------------------
    # Huawei OBS Configuration
    #-----------------------------------------------------

    def _has_huawei_config(self) -> bool:
        return bool(
            self._read("HW_OBS_ACCESS_KEY") and
            self._read("HW_OBS_SECRET_KEY") and
            self._read("HW_OBS_ENDPOINT") and
            self._read("HW_OBS_BUCKET_NAME")
        )

    def _get_huawei_config(self) -> HuaweiOptions | None:
        if not self._has_huawei_config():
            return None

        return HuaweiOptions(
            access_key_id       = self._read("HW_OBS_ACCESS_KEY"),
            secret_access_key   = self._read("HW_OBS_SECRET_KEY"),
            endpoint            = self._read("HW_OBS_ENDPOINT"),
            bucket              = self._read("HW_OBS_BUCKET_NAME"),
            prefix              = self._read("HW_OBS_PREFIX"),
            cdn                 = self._read("HW_OBS_DOMAIN"),
            public              = self._read_bool("HW_OBS_PUBLIC", False),
            **self._common_options()
        )

    #-----------------------------------------------------
    # Tencent COS Configuration
    #-----------------------------------------------------

    def _has_tencent_config(self) -> bool:
        return bool(
            self._read("TX_COS_SECRET_ID") and
            self._read("TX_COS_SECRET_KEY") and
            self._read("TX_COS_REGION") and
            self._read("TX_COS_BUCKET_NAME")
        )

    def _get_tencent_config(self) -> TencentOptions | None:
        if not self._has_tencent_config():
            return None

        return TencentOptions(
            secret_id   = self._read("TX_COS_SECRET_ID"),
            secret_key  = self._read("TX_COS_SECRET_KEY"),
            token       = self._read("TX_COS_TOKEN"),
            region      = self._read("TX_COS_REGION"),
            bucket      = self._read("TX_COS_BUCKET_NAME"),
            prefix      = self._read("TX_COS_PREFIX"),
            cdn         = self._read("TX_COS_DOMAIN"),
            public      = self._read_bool("TX_COS_PUBLIC", False),
            **self._common_options()
        )

    #-----------------------------------------------------
    # MinIO Configuration
    #-----------------------------------------------------

    def _has_minio_config(self) -> bool:
        return bool(
            self._read("MINIO_ENDPOINT") and
            self._read("MINIO_ACCESS_KEY") and
            self._read("MINIO_SECRET_KEY") and
            self._read("MINIO_BUCKET")
        )

    def _get_minio_config(self) -> MinioOptions | None:
        if not self._has_minio_config():
            return None

        endpoint = self._read("MINIO_ENDPOINT")
        public_url = self._read("MINIO_PUBLIC_URL") or endpoint

        logger.info(f"Using MinIO: endpoint={endpoint}, public_url={public_url}, bucket={self._read('MINIO_BUCKET')}")

        return MinioOptions(
            access_key_id       = self._read("MINIO_ACCESS_KEY"),
            secret_access_key   = self._read("MINIO_SECRET_KEY"),
            endpoint            = endpoint,
            public_url          = public_url,
            region              = self._read("MINIO_REGION") or "us-east-1",
            bucket              = self._read("MINIO_BUCKET"),
            prefix              = self._read("MINIO_PREFIX"),
            cdn                 = self._read("MINIO_CDN"),
            public              = self._read_bool("MINIO_PUBLIC", True),
            is_aws_s3           = self._read_bool("MINIO_AWS_S3", False),
            **self._common_options()
        )

#-----------------------------------------------------------------------------

def is_local_env() -> bool:
    """Local development environments always use local storage"""
    return os.environ.get("ENV", "").strip().lower() in ("local", "localdb")

#-----------------------------------------------------------------------------
