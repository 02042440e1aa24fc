"""Exception hierarchy for the exporter."""


class ExporterError(Exception):
    """Base class for all exporter errors."""


class ConfigError(ExporterError):
    """Configuration could not be loaded or validated."""


class InvalidLogLevelError(ConfigError):
    def __init__(self, level: str):
        super().__init__(f"{level}: invalid log level")
        self.level = level


class RuleCompileError(ConfigError):
    """A filter/replace rule has an invalid regex or template."""


class RenderError(ExporterError):
    """A replace template failed to render for a matched path."""


class LineParseError(ExporterError):
    """A raw log line does not match the configured format."""


class RequestParseError(ExporterError):
    def __init__(self, request: str, reason: str = "invalid request"):
        super().__init__(f"{request}: {reason}")
        self.request = request


class LogFileError(ExporterError):
    """A configured log file cannot be monitored."""
