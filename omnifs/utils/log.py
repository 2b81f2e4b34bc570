import base64, datetime, json, logging, os

#-----------------------------------------------------------------------------

# LogRecord attributes that are not copied into the JSON line as they are.
RECORD_FIELDS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

#-----------------------------------------------------------------------------

class JsonEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime.datetime):
            return o.isoformat()

        if isinstance(o, bytes):
            return base64.urlsafe_b64encode(o).decode()

        if isinstance(o, set | frozenset):
            return sorted(o, key=str)

        # Enums, paths and storage errors.
        return str(o)

#-----------------------------------------------------------------------------

class JsonFormatter(logging.Formatter):
    """
    One JSON object per log record

    Fields passed with extra={...}, such as the bucket or object key of a
    storage call, are copied into the line. The formatter's own extra
    fields (service, env) are added last.
    """

    def __init__(self, extra: dict | None = None):
        super().__init__()
        self._extra = extra

    #-----------------------------------------------------

    def format(self, record: logging.LogRecord):
        line = {
            "time"  : self.formatTime(record, self.datefmt),
            "level" : record.levelname,
            "logger": record.name,
            "msg"   : record.getMessage()
        }

        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            line["stack_info"] = record.stack_info

        # Module level code has no useful function name.
        if record.funcName and record.funcName != "<module>":
            line["function"] = record.funcName

        if record.pathname:
            filename = record.pathname.removeprefix(os.getcwd()).removeprefix(os.sep)
            line["file"] = f"{filename}:{record.lineno}"

        for k, v in record.__dict__.items():
            if k not in RECORD_FIELDS and k not in line:
                line[k] = v

        if self._extra:
            line.update(self._extra)

        return json.dumps(line, ensure_ascii=False, separators=(",", ":"), cls=JsonEncoder)

#-----------------------------------------------------------------------------

def init_log_console(level: int = logging.INFO, extra: dict | None = None):
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(JsonFormatter(extra))

    logging.root.handlers = [stream_handler]
    logging.root.setLevel(level=level)

#-----------------------------------------------------------------------------

def init_log_file(name: str, dir: str, level: int = logging.INFO, extra: dict | None = None):
    """Log to a new timestamped file under dir and to the console"""
    if dir:
        os.makedirs(dir, exist_ok=True)

    formatter = JsonFormatter(extra)

    now = datetime.datetime.now()
    file_handler = logging.FileHandler(
        os.path.join(dir, f"{now.strftime('%Y-%m-%d')}_{name}_{now.strftime('%H%M%S_%f')}.log"),
        mode="w+"
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    logging.root.handlers = [file_handler, stream_handler]
    logging.root.setLevel(level=level)

#-----------------------------------------------------------------------------

def init_log(name: str = "", dir: str = "", level: int = logging.INFO, extra: dict | None = None):
    if name:
        init_log_file(name, dir, level, extra)
    else:
        init_log_console(level, extra)

#-----------------------------------------------------------------------------
