from tasklane.logging import Logger, LogLevel


class LoggerStub(Logger):
    """
    Logger that discards everything.
    """

    def log(self, _level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        pass

    def push_level(self, level: LogLevel) -> None:
        pass

    def pop_level(self) -> LogLevel:
        return LogLevel.INFO


class RecordingLogger(LoggerStub):
    """
    Logger that keeps (level, message) pairs for assertions.
    """

    def __init__(self):
        self.records: list[tuple[LogLevel, str]] = []

    def log(self, level: LogLevel = LogLevel.INFO, *args, **kwargs) -> None:
        self.records.append((level, " ".join(str(arg) for arg in args)))

    def messages(self, level: LogLevel | None = None) -> list[str]:
        return [message for lvl, message in self.records if level is None or lvl is level]


logger_stub = LoggerStub()
