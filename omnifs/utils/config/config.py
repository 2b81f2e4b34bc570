import base64, dotenv, io, logging, os, re

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError
from typing import Any

from .encrypt import AbstractEncrypter, FernetEncrypter
from .log import LogConfig

#-----------------------------------------------------------------------------

_global_config = None

# Keys whose values are encrypted in place when a YAML file is loaded.
SECRET_KEY_PATTERN = r"_KEY|_PASSWORD|_PASS|_PWD|_SECRET|_SK|_TOKEN"

PLACEHOLDER_VALUE = "REPLACE_THIS_VALUE_IN_PRODUCTION"

#-----------------------------------------------------------------------------

class Config:
    """
    Process configuration

    Values come from YAML files (keys are upper-cased), environment
    variables override them. Encrypted values ("gAAAA...") are decrypted
    with the Fernet key derived from CONFIG_ENCRYPTION_KEY.
    """

    yaml = YAML()

    #-------------------------------------------------

    def __init__(
        self,
        yaml_filenames: str | list[str | io.StringIO] | None = None,
        encrypter: AbstractEncrypter | None = None
    ):
        if isinstance(yaml_filenames, str|io.StringIO):
            self._yaml_filenames = [yaml_filenames]
        elif isinstance(yaml_filenames, list):
            self._yaml_filenames = yaml_filenames
        else:
            self._yaml_filenames = []

        #-------------------------------------------------

        self._raw = {}

        self._encrypter = encrypter
        if not self._encrypter:
            self._encrypter = FernetEncrypter(self.get_fernet_key("CONFIG_ENCRYPTION_KEY"))

        #-------------------------------------------------

        # Load YAML files.
        for yaml_filename in self._yaml_filenames:
            self.load_yaml(yaml_filename)

        self.refresh()

        global _global_config
        _global_config = self

    #-----------------------------------------------------

    def refresh(self, data: dict | None = None):
        if data:
            self._raw.update({str(k).upper(): v for k, v in data.items()})

        self.log = LogConfig(
            name        = self.get_str("LOG_NAME"),
            dir         = self.get_str("LOG_DIR"),
            level       = logging.getLevelNamesMapping().get(self.get_str("LOG_LEVEL").strip().upper(), logging.INFO)
        )

        self.storage_type = self.get_str("STORAGE_TYPE").strip().lower()


    def load_yaml(self, file: str | io.StringIO):
        if not file:
            return

        stream = None

        if isinstance(file, str):
            # Filename.
            try:
                with open(file, "r", encoding="utf-8") as f:
                    stream = io.StringIO(f.read())

            except OSError as e:
                logging.warning(f"Failed to load YAML file '{file}': {str(e)}")
                return

        elif isinstance(file, io.StringIO):
            stream = file

        if stream is None:
            return

        #-------------------------------------------------

        Config.yaml = YAML()

        modified = False

        try:
            data = Config.yaml.load(stream)
        except YAMLError as e:
            logging.warning(f"Failed to parse YAML file '{file}': {str(e)}")
            return

        if not isinstance(data, dict):
            return

        for key, value in data.items():
            if not isinstance(key, str):
                continue

            upper_key = key.upper()

            if self._encrypter and isinstance(value, str) and len(value) > 0:
                # Check non-empty strings.

                if self._encrypter.is_encrypted(value):
                    # Decrypt it.
                    self._raw[upper_key] = self._encrypter.decrypt(value)
                    continue

                if re.search(SECRET_KEY_PATTERN, upper_key) and \
                    not upper_key.endswith("_URL") and \
                    value != PLACEHOLDER_VALUE:

                    # Encrypt it.
                    encrypted = self._encrypter.encrypt(value)
                    if encrypted:
                        data[key] = encrypted
                        modified = True

            self._raw[upper_key] = value

        #-------------------------------------------------

        if isinstance(file, str) and modified:
            try:
                with open(file, "w+t", encoding="utf-8") as f:
                    Config.yaml.dump(data, f)

            except OSError as e:
                logging.warning(f"Failed to update YAML file '{file}': {str(e)}")

    #-----------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        stripped_key = key.strip()
        if not stripped_key:
            return default

        # Check environment variables beforehand.
        s = os.environ.get(stripped_key)
        if s is not None:
            return s

        # Check key in upper case again.
        upper_key = stripped_key.upper()
        s = os.environ.get(upper_key)
        if s is not None:
            return s

        # Then check the configuration variables.
        return self._raw.get(upper_key, default)


    def get_str(self, key: str, default: str = "") -> str:
        s = self.get(key, default)
        if s is None:
            return default
        return s if isinstance(s, str) else str(s)


    def get_int(self, key: str, default: int = 0) -> int:
        obj = self.get(key)

        if isinstance(obj, bool):
            return int(obj)

        if isinstance(obj, int):
            return obj

        try:
            return int(str(obj).strip())
        except (TypeError, ValueError):
            return default


    def get_bool(self, key: str, default: bool = False) -> bool:
        obj = self.get(key)

        if isinstance(obj, bool):
            return obj

        if isinstance(obj, str):
            s = obj.strip().lower()
            if not s:
                return default
            return s in ("true", "1", "yes", "on")

        if isinstance(obj, int):
            return obj != 0

        return default


    def get_fernet_key(self, key: str) -> str:
        s = self.get_str(key).strip()
        if not s:
            return ""

        if len(s) > 32:
            s = s[:32]

        return base64.urlsafe_b64encode(s.encode().ljust(32, b"0")).decode()

    #-----------------------------------------------------

    def get_storage(self, storage_type: str = ""):
        """Build the storage backend selected by this configuration"""
        from ...storage import StorageConfigManager, StorageFactory

        return StorageFactory.create_storage(
            config_manager  = StorageConfigManager(self),
            force_type      = storage_type.strip().lower() or None
        )

    #-----------------------------------------------------

    def print(self):
        print(f"Configuration loaded from {self._yaml_filenames}:")
        print("----------------------------------------------------------")
        print(f"env             : {os.environ.get('ENV', '').strip().lower()}")
        print(f"debug           : {self.log.level <= logging.DEBUG}")

        self.log.print()

        if self.storage_type:
            print(f"storage         : {self.storage_type}")

        print("----------------------------------------------------------")

    #-------------------------------------------------------------------------

    @staticmethod
    def to_masked_str(s: str) -> str:
        n = len(s)
        if n <= 0:
            return ""
        if n < 6:
            return "************"

        return f"{s[:3]}******{s[n-3:]}"

    #-------------------------------------------------------------------------

    @staticmethod
    def load_dotenv(filenames: str | list[str] | None = None):
        if isinstance(filenames, str):
            l = [filenames]
        elif isinstance(filenames, list):
            l = filenames
        else:
            return

        for filename in l:
            filename = filename.strip()
            if not filename:
                continue

            for key, value in dotenv.dotenv_values(filename).items():
                if value:
                    value = value.strip()
                if not value:
                    continue

                key = key.strip()
                if not key:
                    continue

                os.environ.setdefault(key.upper(), value)

    #-------------------------------------------------------------------------

    @staticmethod
    def resolve_yaml_filenames(yaml_filenames: str | list[str] | None, env: str = "") -> list[str]:
        """
        Expand the YAML file list

        Every "x.yaml" gets its "x.key.yaml" companion, and with an env every
        file gets its ".{env}" variant right after it.
        """
        if isinstance(yaml_filenames, str):
            candidates = [yaml_filenames]
        elif isinstance(yaml_filenames, list):
            candidates = yaml_filenames
        else:
            candidates = []

        #-----------------------------------------------------
        # Fill .key.yaml files.

        yaml_file_list = []

        for yaml_filename in candidates:
            if not isinstance(yaml_filename, str):
                continue

            yaml_filename = yaml_filename.strip()
            if not yaml_filename or yaml_filename in yaml_file_list:
                continue

            yaml_file_list.append(yaml_filename)

            if re.match(".*\\.key\\.yaml$", yaml_filename, re.IGNORECASE):
                continue

            elif not re.match(".*\\.yaml$", yaml_filename, re.IGNORECASE):
                continue

            yaml_file_list.append(f"{yaml_filename[:-5]}.key.yaml")

        #-----------------------------------------------------
        # Fill .{env}.yaml and .{env}.key.yaml files.

        if not env:
            return yaml_file_list

        if not yaml_file_list:
            return [f"config.{env}.yaml", f"config.{env}.key.yaml"]

        result = []

        for yaml_filename in yaml_file_list:
            if yaml_filename in result:
                continue

            result.append(yaml_filename)

            if re.match(".*\\.key\\.yaml$", yaml_filename, re.IGNORECASE):
                env_yaml_filename = f"{yaml_filename[:-9]}.{env}.key.yaml"

            elif re.match(".*\\.yaml$", yaml_filename, re.IGNORECASE):
                env_yaml_filename = f"{yaml_filename[:-5]}.{env}.yaml"

            else:
                continue

            if env_yaml_filename not in result:
                result.append(env_yaml_filename)

        return result

    #-------------------------------------------------------------------------

    @staticmethod
    def init(
        yaml_filenames  : str | list[str] | None = None,
        dotenv_filenames: str | list[str] | None = ".env",
        log_extra       : dict | None = None
    ) -> "Config":
        from ..log import init_log, init_log_console

        log_extra = log_extra if log_extra is not None else {}
        init_log_console(extra=log_extra)

        Config.load_dotenv(dotenv_filenames)

        env = os.environ.get("ENV", "").strip().lower()
        if env and log_extra:
            log_extra["env"] = env

        #-----------------------------------------------------

        final_yaml_file_list = []

        default_yaml = "config.yaml"
        yaml_file_list = Config.resolve_yaml_filenames(yaml_filenames, env)

        if os.path.exists(default_yaml) and default_yaml not in yaml_file_list:
            final_yaml_file_list.append(default_yaml)
            logging.info("Default config has been loaded.")

        for yaml_filename in yaml_file_list:
            if os.path.exists(yaml_filename):
                final_yaml_file_list.append(yaml_filename)

        config = Config(yaml_filenames=final_yaml_file_list)

        #-----------------------------------------------------

        init_log(
            name        = config.log.name,
            dir         = config.log.dir,
            level       = config.log.level,
            extra       = log_extra
        )

        return config

#-----------------------------------------------------------------------------

def global_config(*args, **kargs) -> Config | None:
    global _global_config
    if not _global_config:
        return None

    return _global_config

#-----------------------------------------------------------------------------

def safe_read_cfg(key: str, default: str = "") -> str:
    global _global_config
    if not _global_config:
        # Without a loaded configuration only the environment is available.
        value = os.environ.get(key.strip().upper())
        return value if value is not None else default

    return _global_config.get_str(key, default)

#-----------------------------------------------------------------------------
