import logging

from .abstract import AbstractStorage
from .aliyun import AliyunStorage
from .aws import AwsStorage
from .config_manager import StorageConfigManager, is_local_env
from .errors import StorageConfigurationError
from .huawei import HuaweiStorage
from .local import LocalStorage
from .minio import MinioStorage
from .options import (
    AliyunOptions,
    AwsOptions,
    HuaweiOptions,
    LocalOptions,
    MinioOptions,
    StorageOptions,
    TencentOptions
)
from .tencent import TencentStorage

logger = logging.getLogger(__name__)

#-----------------------------------------------------------------------------

STORAGE_CLASSES: dict[type[StorageOptions], type[AbstractStorage]] = {
    LocalOptions    : LocalStorage,
    AwsOptions      : AwsStorage,
    AliyunOptions   : AliyunStorage,
    MinioOptions    : MinioStorage,
    HuaweiOptions   : HuaweiStorage,
    TencentOptions  : TencentStorage,
}

#-----------------------------------------------------------------------------

def _storage_class(options: StorageOptions) -> type[AbstractStorage]:
    """Adapter class for an options record, subclasses of a record included"""
    for options_class, storage_class in STORAGE_CLASSES.items():
        if isinstance(options, options_class):
            return storage_class

    raise StorageConfigurationError(f"Unknown storage options: {type(options).__name__}")


def new_storage(options: StorageOptions) -> AbstractStorage:
    """
    Build the adapter for an options record

    Raises:
        StorageConfigurationError: The adapter could not be constructed.
    """
    klass = _storage_class(options)

    try:
        return klass(options)

    except StorageConfigurationError:
        raise

    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Failed to create {options.storage_type} storage: {str(e)}", exc_info=True)
        raise StorageConfigurationError(f"Failed to create {options.storage_type} storage: {str(e)}") from e

#-----------------------------------------------------------------------------

class StorageFactory:
    """Factory class for creating storage instances based on configuration"""

    _instance: AbstractStorage | None = None
    _storage_type: str | None = None
    _config_manager: StorageConfigManager | None = None

    #-----------------------------------------------------

    @classmethod
    def create_storage(
        cls,
        config_manager: StorageConfigManager | None = None,
        force_type: str | None = None
    ) -> AbstractStorage:
        """
        Create storage instance based on configuration

        Args:
            config_manager: Configuration manager (creates new one if None)
            force_type: Force specific storage type ('local', 'aws', 'aliyun', 'huawei', 'tencent', 'minio')

        Returns:
            Storage instance

        Raises:
            StorageConfigurationError: The selected backend is not configured
                or could not be constructed.
        """
        # Force local storage for local development environment
        if force_type is None and is_local_env():
            force_type = "local"
            logger.info("Local environment detected, forcing local storage")

        # Return cached instance if exists and no force_type specified
        if cls._instance is not None and force_type is None:
            logger.debug(f"Reusing cached storage instance: {cls._storage_type}")
            return cls._instance

        # Create config manager if not provided
        if config_manager is None:
            config_manager = cls._config_manager or StorageConfigManager()

        cls._config_manager = config_manager

        # Determine storage type
        if force_type:
            storage_type = force_type.strip().lower()
            options = config_manager.get_storage_config(storage_type)
            logger.info(f"Forced storage type: {storage_type}")
        else:
            # Auto-detect based on configuration
            storage_type, options = config_manager.get_primary_storage()

        if options is None:
            raise StorageConfigurationError(f"No configuration found for {storage_type} storage")

        instance = new_storage(options)

        # Cache instance
        cls._instance = instance
        cls._storage_type = storage_type

        logger.info(f"Storage instance created successfully: {storage_type}")

        return instance

    #-----------------------------------------------------

    @classmethod
    def get_storage_type(cls) -> str | None:
        """
        Get current storage type

        Returns:
            Storage type string or None if not initialized
        """
        return cls._storage_type

    @classmethod
    def switch_storage(cls, storage_type: str) -> AbstractStorage:
        """
        Switch to different storage backend

        The current instance is kept when the new one cannot be built.
        """
        logger.info(f"Switching storage from {cls._storage_type} to {storage_type}")

        return cls.create_storage(
            config_manager  = cls._config_manager,
            force_type      = storage_type
        )

    @classmethod
    def get_instance(cls) -> AbstractStorage | None:
        """
        Get current storage instance without creating new one
        """
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset factory state (useful for testing)"""
        cls._instance = None
        cls._storage_type = None
        if cls._config_manager:
            cls._config_manager.clear_cache()
        cls._config_manager = None

        logger.info("Storage factory reset")

#-----------------------------------------------------------------------------

def get_storage_client() -> AbstractStorage:
    """
    Convenience function to get storage client

    Returns:
        Storage instance
    """
    instance = StorageFactory.get_instance()
    if instance is None:
        instance = StorageFactory.create_storage()
    return instance

#-----------------------------------------------------------------------------
