import copy
import enum
import logging

from charset_normalizer import from_bytes
import yaml


DEFAULT_CONFIG_FILENAMES = ('cxt.yml', '.cxt.yml')

PATH_MODES = ('absolute', 'relative', 'none')
CONFLICT_POLICIES = ('ask', 'replace', 'append', 'cancel')

DEFAULT_CONFIG = {
    'logging': {
        'level': 'INFO',
    },
    'headers': {
        'mode': 'absolute',
    },
    'walk': {
        'hidden': False,
        'ignore': [],
    },
    'output': {
        'clipboard': True,
        'on_conflict': 'ask',
    },
}


class Reason(enum.Enum):
    """Why a path was skipped during traversal or reading."""

    PERMISSION_DENIED = 'permission denied'
    PATH_VANISHED = 'path vanished'
    NOT_READABLE = 'not readable'

    @classmethod
    def from_os_error(cls, exc):
        if isinstance(exc, PermissionError):
            return cls.PERMISSION_DENIED
        if isinstance(exc, FileNotFoundError):
            return cls.PATH_VANISHED
        return cls.NOT_READABLE


class ConfigNotFoundError(FileNotFoundError):
    """Raised when the configuration file cannot be found."""


class InvalidConfigError(Exception):
    """Raised when flags or the configuration file are invalid."""


class _PathError(Exception):
    """Base class for per-path errors that carry a :class:`Reason`."""

    def __init__(self, path, reason, detail=None):
        self.path = path
        self.reason = reason
        self.detail = detail
        message = f"{path}: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    @classmethod
    def from_os_error(cls, path, exc):
        return cls(path, Reason.from_os_error(exc), exc.strerror or str(exc))


class TraversalError(_PathError):
    """Raised when an entry cannot be visited while walking a tree."""


class ReadError(_PathError):
    """Raised when a file's contents cannot be read."""


class ClipboardError(Exception):
    """Raised when the system clipboard cannot be written."""


class WriteConflictCancelled(Exception):
    """Raised when the user cancels writing over an existing file."""


def load_yaml_config(config_file_path):
    """Load a YAML configuration file with basic error handling."""
    logging.info("Loading configuration from: %s", config_file_path)
    try:
        with open(config_file_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigNotFoundError(
            f"Configuration file not found at '{config_file_path}'."
        ) from e
    except yaml.YAMLError as e:
        mark = getattr(e, 'problem_mark', None)
        location = ""
        if mark:
            location = f" at line {mark.line + 1}, column {mark.column + 1}"

        problem = getattr(e, 'problem', None) or str(e)
        context = getattr(e, 'context', None)
        details = f"{context}: {problem}" if context else problem

        raise InvalidConfigError(
            f"Error parsing YAML file{location}: {details}"
        ) from e

    if config is None:
        # An empty file means "use the defaults".
        return {}
    if not isinstance(config, dict):
        raise InvalidConfigError(
            f"Configuration in '{config_file_path}' must be a mapping at the top level."
        )
    return config


def find_config_file(directory):
    """Return the first default config file found in ``directory``, if any."""
    for name in DEFAULT_CONFIG_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def apply_defaults(cfg, defs):
    """Recursively fill ``cfg`` with values from ``defs`` that it lacks."""
    for key, value in defs.items():
        if isinstance(value, dict):
            node = cfg.setdefault(key, {})
            if isinstance(node, dict):
                apply_defaults(node, value)
        else:
            cfg.setdefault(key, copy.deepcopy(value))
    return cfg


def _require_section(config, name):
    section = config.get(name)
    if not isinstance(section, dict):
        raise InvalidConfigError(f"'{name}' section must be a dictionary.")
    return section


def _validate_logging_section(config):
    section = _require_section(config, 'logging')
    level = section.get('level')
    if not isinstance(level, str) or not isinstance(
        getattr(logging, level.upper(), None), int
    ):
        raise InvalidConfigError(
            f"'logging.level' must be a logging level name, got: {level!r}"
        )


def _validate_headers_section(config):
    section = _require_section(config, 'headers')
    mode = section.get('mode')
    if mode not in PATH_MODES:
        raise InvalidConfigError(
            f"'headers.mode' must be one of {', '.join(PATH_MODES)}; got: {mode!r}"
        )


def _validate_walk_section(config):
    section = _require_section(config, 'walk')
    if not isinstance(section.get('hidden'), bool):
        raise InvalidConfigError("'walk.hidden' must be a boolean value")

    ignore = section.get('ignore')
    if ignore is None:
        section['ignore'] = []
    elif isinstance(ignore, str):
        section['ignore'] = [ignore]
    elif not isinstance(ignore, list) or not all(isinstance(p, str) for p in ignore):
        raise InvalidConfigError("'walk.ignore' must be a path or a list of paths")


def _validate_output_section(config):
    section = _require_section(config, 'output')
    if not isinstance(section.get('clipboard'), bool):
        raise InvalidConfigError("'output.clipboard' must be a boolean value")

    policy = section.get('on_conflict')
    if policy not in CONFLICT_POLICIES:
        raise InvalidConfigError(
            f"'output.on_conflict' must be one of {', '.join(CONFLICT_POLICIES)}; got: {policy!r}"
        )


def validate_config(config, *, defaults=DEFAULT_CONFIG, source=None):
    """Merge ``defaults`` into ``config`` and check every section.

    ``source`` names where the configuration came from and is prefixed to
    error messages so users know which file to fix.
    """
    if defaults:
        apply_defaults(config, defaults)

    try:
        _validate_logging_section(config)
        _validate_headers_section(config)
        _validate_walk_section(config)
        _validate_output_section(config)
    except InvalidConfigError as exc:
        if source:
            raise InvalidConfigError(f"{source}: {exc}") from exc
        raise
    return config


def load_and_validate_config(config_file_path, defaults=DEFAULT_CONFIG):
    """Load a YAML config file and enforce defaults and value types."""
    config = load_yaml_config(config_file_path)
    return validate_config(config, defaults=defaults, source=config_file_path)


def decode_best_effort(raw_bytes):
    """Decode ``raw_bytes`` into text for sinks that only accept ``str``.

    UTF-8 is tried first. Otherwise ``charset-normalizer`` picks a likely
    encoding, falling back to a permissive UTF-8 decode with replacements.
    """
    try:
        return raw_bytes.decode('utf-8')
    except UnicodeDecodeError:
        pass

    best_guess = from_bytes(raw_bytes).best()
    if best_guess and best_guess.encoding:
        try:
            return raw_bytes.decode(best_guess.encoding, errors='replace')
        except LookupError:
            logging.warning(
                "Detected encoding '%s' is not supported.", best_guess.encoding
            )

    logging.warning("Could not detect encoding; decoding with UTF-8 replacements.")
    return raw_bytes.decode('utf-8', errors='replace')
