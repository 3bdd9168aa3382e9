# src/fmrifetch/select.py
# Turn a subject/run selection into include patterns for the raw BIDS tree and
# the fMRIPrep derivatives tree. Pure: no I/O.

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Sequence

from .config import DEFAULT_CONFIG, FetchConfig

# --- Dataset-level files (added once per hierarchy) ---
RAW_COMMON = (
    "dataset_description.json",
    "participants.tsv",
    "README",
    "CHANGES",
    "task-*_*.json",
)
DERIV_COMMON = ("dataset_description.json",)

# fMRIPrep outputs fetched per run. {space}/{res} come from the config.
DERIV_RUN_SUFFIXES = (
    "space-{space}_res-{res}_boldref*",
    "space-{space}_res-{res}_desc-brain_mask*",
    "space-{space}_res-{res}_desc-preproc_bold*",
    "space-T1w_desc-preproc_bold*",
    "desc-confounds_timeseries*",
)


@dataclass(frozen=True)
class IncludePattern:
    glob: str
    subject: int | None = None
    run: int | None = None

    def matches(self, key: str) -> bool:
        # same semantics as `aws s3 sync --include`: '*' also crosses '/'
        return fnmatchcase(key, self.glob)


PatternSet = tuple[IncludePattern, ...]


def raw_run_token(run: int) -> str:
    """Raw BIDS filenames carry zero-padded runs: 7 -> '07'."""
    return f"{int(run):02d}"


def deriv_run_token(run: int) -> str:
    """fMRIPrep filenames carry the bare integer: 7 -> '7'."""
    return str(int(run))


def _raw_patterns(subjects: Sequence[int], runs: Sequence[int]) -> list[IncludePattern]:
    out = [IncludePattern(p) for p in RAW_COMMON]
    for sub in subjects:
        out.append(IncludePattern(f"sub-{sub}/anat/*", subject=sub))
        for run in runs:
            out.append(
                IncludePattern(f"sub-{sub}/func/*_run-{raw_run_token(run)}_*", subject=sub, run=run)
            )
    return out


def _deriv_patterns(subjects: Sequence[int], runs: Sequence[int], cfg: FetchConfig) -> list[IncludePattern]:
    space, res = cfg.template_space, cfg.resolution
    out = [IncludePattern(p) for p in DERIV_COMMON]
    for sub in subjects:
        out.append(
            IncludePattern(f"sub-{sub}/anat/*space-{space}_res-{res}_desc-preproc_T1w.*", subject=sub)
        )
        for run in runs:
            tok = deriv_run_token(run)
            for suffix in DERIV_RUN_SUFFIXES:
                glob = f"sub-{sub}/func/*run-{tok}_" + suffix.format(space=space, res=res)
                out.append(IncludePattern(glob, subject=sub, run=run))
    return out


def build_pattern_sets(
    subjects: Sequence[int],
    runs: Sequence[int],
    config: FetchConfig = DEFAULT_CONFIG,
) -> tuple[PatternSet, PatternSet]:
    """
    Build the (raw, derivatives) include pattern sets for a selection.

    Order is: dataset-level patterns, then for each subject its anatomical
    pattern followed by its per-run patterns. Duplicated subjects or runs give
    duplicated patterns, which is harmless for inclusion. Values are not
    checked against what the bucket holds; unknown ids just match nothing.
    """
    subjects = list(subjects)
    runs = list(runs)
    return tuple(_raw_patterns(subjects, runs)), tuple(_deriv_patterns(subjects, runs, config))


def globs(patterns: Iterable[IncludePattern]) -> list[str]:
    return [p.glob for p in patterns]


def match_pattern(key: str, patterns: Iterable[IncludePattern]) -> IncludePattern | None:
    for p in patterns:
        if p.matches(key):
            return p
    return None


def pattern_counts(patterns: Iterable[IncludePattern]) -> dict[str, int]:
    """Split a pattern set into common / per-subject / per-run counts."""
    c = Counter()
    for p in patterns:
        if p.subject is None:
            c["common"] += 1
        elif p.run is None:
            c["subject"] += 1
        else:
            c["run"] += 1
    return {k: c[k] for k in ("common", "subject", "run")}
