# src/fmrifetch/config.py
# Immutable fetch configuration: dataset id, bucket roots, defaults, naming conventions.

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
import yaml


class ConfigError(ValueError):
    """Raised when a config file cannot be turned into a FetchConfig."""


@dataclass(frozen=True)
class FetchConfig:
    dataset: str = "ds000105"
    raw_bucket: str = "openneuro.org"
    raw_prefix_template: str = "{dataset}/"
    deriv_bucket: str = "openneuro-derivatives"
    deriv_prefix_template: str = "fmriprep/{dataset}-fmriprep/"
    out_dir: Path | None = None  # None -> ./<dataset>
    deriv_subdir: str = "derivatives/fmriprep"
    default_subjects: tuple[int, ...] = (1,)
    default_runs: tuple[int, ...] = (1,)
    template_space: str = "MNI152NLin2009cAsym"
    resolution: str = "2"
    max_workers: int = 8
    endpoint_url: str | None = None
    manifest_path: Path | None = None

    @property
    def raw_root(self) -> str:
        return f"s3://{self.raw_bucket}/{self.raw_prefix_template.format(dataset=self.dataset)}"

    @property
    def deriv_root(self) -> str:
        return f"s3://{self.deriv_bucket}/{self.deriv_prefix_template.format(dataset=self.dataset)}"

    @property
    def bids_dir(self) -> Path:
        return Path(self.out_dir) if self.out_dir is not None else Path(".") / self.dataset

    @property
    def derivs_dir(self) -> Path:
        return self.bids_dir / self.deriv_subdir

    def replace(self, **overrides) -> "FetchConfig":
        return replace(self, **overrides)


DEFAULT_CONFIG = FetchConfig()

_TUPLE_KEYS = {"default_subjects", "default_runs"}
_PATH_KEYS = {"out_dir", "manifest_path"}


def _coerce(key: str, value):
    if value is None:
        return None
    if key in _TUPLE_KEYS:
        if isinstance(value, int):
            value = [value]
        try:
            ids = tuple(int(v) for v in value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be a list of integers, got {value!r}") from e
        if not ids or min(ids) < 1:
            raise ConfigError(f"{key} must be a non-empty list of positive integers, got {value!r}")
        return ids
    if key in _PATH_KEYS:
        return Path(value)
    if key == "max_workers":
        if not isinstance(value, int) or value < 1:
            raise ConfigError(f"max_workers must be a positive integer, got {value!r}")
        return value
    return str(value)


def config_from_dict(data: dict, base: FetchConfig = DEFAULT_CONFIG) -> FetchConfig:
    known = {f.name for f in fields(FetchConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys: {sorted(unknown)}")
    return base.replace(**{k: _coerce(k, v) for k, v in data.items()})


def load_config(path: Path | None = None) -> FetchConfig:
    """
    Load a FetchConfig from YAML. Keys left out keep their defaults.

    The file may hold the keys at top level or under a ``fetch:`` section.
    """
    if path is None:
        return DEFAULT_CONFIG
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    try:
        cfg = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if not isinstance(cfg, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    if "fetch" in cfg and isinstance(cfg["fetch"], dict):
        cfg = cfg["fetch"]
    return config_from_dict(cfg)
