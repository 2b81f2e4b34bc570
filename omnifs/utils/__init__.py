from .config import (
    Config,

    global_config,
    safe_read_cfg
)

from .log import (
    init_log_console,
    init_log_file,

    init_log
)
