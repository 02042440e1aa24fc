"""Configuration loading from a YAML file plus an optional directory of per-application YAML files.

Loading is all-or-nothing: the raw YAML is validated against a strict JSON
schema, then every application is compiled (regexes, templates, log format,
label order). Any failure raises ConfigError and nothing is returned.
"""

import logging
import os
import re
from dataclasses import dataclass, field

import jsonschema
import yaml
from jsonschema.exceptions import best_match

from nginx_log_exporter.errors import ConfigError
from nginx_log_exporter.grammar import Grammar
from nginx_log_exporter.metrics import APPLICATION_LABEL, STATIC_LABELS, label_names_for
from nginx_log_exporter.rules import FilterRule, PathClassifier, ReplaceRule

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "prometheus-nginx-log-exporter.yaml"
APP_FILE_SUFFIX = ".yaml"

_RESERVED_LABELS = set(STATIC_LABELS) | {APPLICATION_LABEL, "le"}
# Prometheus reserves the "__" prefix for internal labels
LABEL_NAME_PATTERN = "^(?!__)[a-zA-Z_][a-zA-Z0-9_]*$"
_LABEL_NAME_RE = re.compile(LABEL_NAME_PATTERN)

_FILTER_PROPERTIES = {
    "path": {"type": "string"},
    "methods": {"type": "array", "items": {"type": "string"}},
}

APP_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["format"],
    "properties": {
        "format": {"type": "string"},
        "from_beginning": {"type": "boolean"},
        "labels": {
            "type": ["object", "null"],
            "propertyNames": {"pattern": LABEL_NAME_PATTERN},
            "additionalProperties": {"type": ["string", "number", "boolean"]},
        },
        "log_files": {"type": ["array", "null"], "items": {"type": "string"}},
        "histogram_buckets": {"type": ["array", "null"], "items": {"type": "number"}},
        "exclude": {"type": ["array", "null"], "items": {"$ref": "#/$defs/filter"}},
        "include": {"type": ["array", "null"], "items": {"$ref": "#/$defs/filter"}},
        "replace": {"type": ["array", "null"], "items": {"$ref": "#/$defs/replace"}},
    },
    "$defs": {
        "filter": {
            "type": "object",
            "additionalProperties": False,
            "required": ["path"],
            "properties": _FILTER_PROPERTIES,
        },
        "replace": {
            "type": "object",
            "additionalProperties": False,
            "required": ["path", "with"],
            "properties": {**_FILTER_PROPERTIES, "with": {"type": "string"}},
        },
    },
}

GLOBAL_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "log_level": {"type": "string"},
        "listen": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "address": {"type": "string"},
                "port": {"type": "integer", "minimum": 0, "maximum": 65535},
            },
        },
        "app_dir": {"type": ["string", "null"]},
        "applications": {"type": ["object", "null"], "additionalProperties": {"type": "object"}},
    },
}

_app_validator = jsonschema.Draft202012Validator(APP_SCHEMA)
_global_validator = jsonschema.Draft202012Validator(GLOBAL_SCHEMA)


@dataclass(frozen=True)
class FilterConfig:
    path: str
    methods: tuple[str, ...] = ()

    def compile(self) -> FilterRule:
        return FilterRule(self.path, self.methods)


@dataclass(frozen=True)
class ReplaceConfig:
    path: str
    with_: str
    methods: tuple[str, ...] = ()

    def compile(self) -> ReplaceRule:
        return ReplaceRule(self.path, self.with_, self.methods)


@dataclass(frozen=True)
class ListenConfig:
    address: str = "0.0.0.0"
    port: int = 9900


@dataclass(frozen=True)
class AppConfig:
    """One nginx "application" to export log files for, as written in YAML."""

    name: str
    format: str
    from_beginning: bool = False
    labels: dict[str, str] = field(default_factory=dict)
    log_files: tuple[str, ...] = ()
    histogram_buckets: tuple[float, ...] = ()
    exclude: tuple[FilterConfig, ...] = ()
    include: tuple[FilterConfig, ...] = ()
    replace: tuple[ReplaceConfig, ...] = ()

    @property
    def label_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.labels))

    @property
    def label_values(self) -> tuple[str, ...]:
        return tuple(self.labels[k] for k in self.label_names)

    def compile(self) -> "Application":
        """Validate and precompile everything needed to monitor this application."""
        for lf in self.log_files:
            if not os.path.isabs(lf):
                raise ConfigError(f"log file '{lf}': not an absolute path")

        reserved = _RESERVED_LABELS.intersection(self.labels)
        if reserved:
            raise ConfigError(f"labels {sorted(reserved)}: reserved label names")
        invalid = sorted(k for k in self.labels if not _LABEL_NAME_RE.match(k))
        if invalid:
            raise ConfigError(f"labels {invalid}: invalid label names")

        buckets = self.histogram_buckets
        if any(lo >= hi for lo, hi in zip(buckets, buckets[1:])):
            raise ConfigError(f"histogram_buckets {list(buckets)}: must be in increasing order")

        classifier = PathClassifier(
            exclude=tuple(fc.compile() for fc in self.exclude),
            include=tuple(fc.compile() for fc in self.include),
            replace=tuple(rc.compile() for rc in self.replace),
        )

        return Application(
            name=self.name,
            grammar=Grammar(self.format),
            classifier=classifier,
            label_names=label_names_for(self.label_names),
            extra_label_values=self.label_values,
            log_files=self.log_files,
            from_beginning=self.from_beginning,
            histogram_buckets=buckets,
        )


@dataclass(frozen=True)
class Application:
    """Compiled, read-only view of an AppConfig shared by its file monitors."""

    name: str
    grammar: Grammar
    classifier: PathClassifier
    label_names: tuple[str, ...]
    extra_label_values: tuple[str, ...]
    log_files: tuple[str, ...]
    from_beginning: bool
    histogram_buckets: tuple[float, ...]


@dataclass(frozen=True)
class GlobalConfig:
    log_level: str = "INFO"
    listen: ListenConfig = field(default_factory=ListenConfig)
    app_dir: str | None = None
    applications: dict[str, Application] = field(default_factory=dict)


def _validate(validator, data, source: str):
    error = best_match(validator.iter_errors(data))
    if error is not None:
        where = "/".join(str(p) for p in error.absolute_path) or "<root>"
        raise ConfigError(f"{source}: {where}: {error.message}")


def _read_yaml(path: str):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"{path}: {e.strerror or e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e


def _filters(raw) -> tuple[FilterConfig, ...]:
    return tuple(
        FilterConfig(path=r["path"], methods=tuple(r.get("methods") or ()))
        for r in raw or ()
    )


def _replaces(raw) -> tuple[ReplaceConfig, ...]:
    return tuple(
        ReplaceConfig(path=r["path"], with_=r["with"], methods=tuple(r.get("methods") or ()))
        for r in raw or ()
    )


def parse_app_config(name: str, data, source: str | None = None) -> AppConfig:
    """Build an AppConfig from the parsed YAML mapping of one application."""
    source = source or f"application '{name}'"
    if data is None:
        data = {}
    _validate(_app_validator, data, source)
    labels = data.get("labels") or {}
    return AppConfig(
        name=name,
        format=data["format"],
        from_beginning=bool(data.get("from_beginning", False)),
        labels={str(k): str(v) for k, v in labels.items()},
        log_files=tuple(data.get("log_files") or ()),
        histogram_buckets=tuple(float(b) for b in data.get("histogram_buckets") or ()),
        exclude=_filters(data.get("exclude")),
        include=_filters(data.get("include")),
        replace=_replaces(data.get("replace")),
    )


def load_app_dir(app_dir: str) -> dict[str, AppConfig]:
    """Load every regular *.yaml file in app_dir; "/foo/bar.yaml" -> application "bar"."""
    try:
        names = sorted(os.listdir(app_dir))
    except OSError as e:
        raise ConfigError(f"app_dir '{app_dir}': {e.strerror or e}") from e

    apps = {}
    for filename in names:
        path = os.path.join(app_dir, filename)
        if not filename.endswith(APP_FILE_SUFFIX) or not os.path.isfile(path):
            continue
        name = filename[: -len(APP_FILE_SUFFIX)]
        apps[name] = parse_app_config(name, _read_yaml(path), source=path)
        logger.debug("Loaded application '%s' from %s", name, path)
    return apps


def _compile(app: AppConfig) -> Application:
    try:
        return app.compile()
    except ConfigError as e:
        raise ConfigError(f"application '{app.name}': {e}") from e


def load_config(path: str = DEFAULT_CONFIG_FILE) -> GlobalConfig:
    """Read, validate and compile the exporter configuration."""
    data = _read_yaml(path)
    if data is None:
        data = {}
    _validate(_global_validator, data, path)

    listen = data.get("listen") or {}
    app_dir = data.get("app_dir") or None

    if app_dir:
        app_configs = load_app_dir(app_dir)
    else:
        app_configs = {
            name: parse_app_config(name, raw)
            for name, raw in (data.get("applications") or {}).items()
        }

    applications = {name: _compile(ac) for name, ac in app_configs.items()}

    return GlobalConfig(
        log_level=data.get("log_level", GlobalConfig.log_level),
        listen=ListenConfig(
            address=listen.get("address", ListenConfig.address),
            port=listen.get("port", ListenConfig.port),
        ),
        app_dir=app_dir,
        applications=applications,
    )
