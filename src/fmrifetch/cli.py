# src/fmrifetch/cli.py
# Download raw BIDS + fMRIPrep derivatives for chosen subjects/runs of an OpenNeuro dataset.

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import ConfigError, FetchConfig, load_config
from .fetch.openneuro_s3 import (
    JobOutcome,
    LocalFilesystemError,
    SyncJob,
    make_s3_client,
    run_jobs,
)
from .select import build_pattern_sets, deriv_run_token, globs, pattern_counts, raw_run_token
from .store import append_tsv, result_frame

logger = logging.getLogger(__name__)

EXAMPLES = """\
examples:
  fmrifetch                            # subject 1, run 1
  fmrifetch -s 1,2 -r 1,2,3            # subjects 1-2, runs 1-3
  fmrifetch --subjects 1 --runs 1,2    # subject 1, runs 1-2
  fmrifetch -s 1,2,3,4,5,6 -r 1,2,3    # all 6 subjects, first 3 runs
"""

RULE = "=" * 50


def int_list(text: str) -> list[int]:
    """Parse '1,2,3' into [1, 2, 3]. Empty items and non-positive values are rejected."""
    out = []
    for item in text.split(","):
        item = item.strip()
        try:
            value = int(item)
        except ValueError:
            raise argparse.ArgumentTypeError(f"not a comma-separated list of integers: {text!r}")
        if value < 1:
            raise argparse.ArgumentTypeError(f"ids must be positive integers: {text!r}")
        out.append(value)
    return out


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="fmrifetch",
        description="Download raw BIDS and fMRIPrep derivatives for selected "
                    "subjects and runs from a public OpenNeuro dataset.",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-s", "--subjects", type=int_list, default=None,
                   help="comma-separated subject numbers (default: from config, 1)")
    p.add_argument("-r", "--runs", type=int_list, default=None,
                   help="comma-separated run numbers (default: from config, 1)")
    p.add_argument("-c", "--config", type=Path, default=None,
                   help="YAML config (dataset id, buckets, defaults)")
    p.add_argument("-o", "--out-dir", type=Path, default=None,
                   help="local dataset root (default: ./<dataset>)")
    p.add_argument("-j", "--jobs", type=int, default=None,
                   help="parallel downloads per hierarchy")
    p.add_argument("--manifest", type=Path, default=None,
                   help="append a per-file transfer log to this TSV")
    p.add_argument("-n", "--dry-run", action="store_true",
                   help="list what would be downloaded, write nothing")
    p.add_argument("-v", "--verbose", action="store_true")
    return p


def make_jobs(cfg: FetchConfig, subjects: list[int], runs: list[int]) -> list[SyncJob]:
    raw, deriv = build_pattern_sets(subjects, runs, cfg)
    return [
        SyncJob("raw", cfg.raw_root, cfg.bids_dir, raw),
        SyncJob("derivatives", cfg.deriv_root, cfg.derivs_dir, deriv),
    ]


def _print_plan(cfg: FetchConfig, subjects: list[int], runs: list[int]) -> None:
    print(f"Starting download for subjects {subjects} and runs {runs} from dataset {cfg.dataset}...")
    print(f"Total subjects: {len(subjects)}, Total runs: {len(runs)}")
    for sub in subjects:
        print(f"[plan] subject {sub}")
        for run in runs:
            print(f"  run {run} (BIDS: {raw_run_token(run)}, fMRIPrep: {deriv_run_token(run)})")


def _print_patterns(jobs: list[SyncJob]) -> None:
    for job in jobs:
        c = pattern_counts(job.patterns)
        print(f"[plan] {job.name} patterns: {len(job.patterns)} "
              f"({c['common']} dataset + {c['subject']} per-subject + {c['run']} per-run)")
        logger.info("%s include patterns: %s", job.name, globs(job.patterns))


def _print_outcome(step: int, out: JobOutcome, dry_run: bool) -> None:
    job = out.job
    print()
    print(RULE)
    print(f"Step {step}: {job.name} ({job.remote_root} -> {job.local_root})")
    print(RULE)
    if out.error is not None:
        print(f"[error:{job.name}] {out.error}")
        return
    res = out.result
    verb = "would copy" if dry_run else "copied"
    print(f"[{job.name}] matched={res.matched} {verb}={res.copied_count} "
          f"up_to_date={len(res.skipped)} failed={len(res.failures)}")
    if dry_run:
        for key in sorted(res.copied):
            print(f"  {key}")
    for f in res.failures:
        where = f"sub-{f.subject}" if f.subject is not None else "dataset"
        if f.run is not None:
            where += f" run-{f.run}"
        print(f"[fail:{job.name}] {where} {f.key}: {f.error}")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        parser.error(str(e))
    overrides = {}
    if args.out_dir is not None:
        overrides["out_dir"] = args.out_dir
    if args.jobs is not None:
        if args.jobs < 1:
            parser.error("--jobs must be >= 1")
        overrides["max_workers"] = args.jobs
    if args.manifest is not None:
        overrides["manifest_path"] = args.manifest
    cfg = cfg.replace(**overrides)

    subjects = args.subjects or list(cfg.default_subjects)
    runs = args.runs or list(cfg.default_runs)

    _print_plan(cfg, subjects, runs)
    jobs = make_jobs(cfg, subjects, runs)
    _print_patterns(jobs)

    try:
        outcomes = run_jobs(
            jobs,
            client=make_s3_client(cfg.endpoint_url),
            max_workers=cfg.max_workers,
            dry_run=args.dry_run,
        )
    except LocalFilesystemError as e:
        print(f"[error] local filesystem: {e}", file=sys.stderr)
        return 1

    for step, out in enumerate(outcomes, start=1):
        _print_outcome(step, out, args.dry_run)
        if cfg.manifest_path is not None and out.result is not None and not args.dry_run:
            append_tsv(cfg.manifest_path, result_frame(out.result))

    ok = all(o.ok for o in outcomes)
    print()
    print(RULE)
    print("[done] all files downloaded" if ok else "[warn] finished with errors")
    print(f"  Subjects: {','.join(map(str, subjects))}")
    print(f"  Runs: {','.join(map(str, runs))}")
    print(f"  Data location: {cfg.bids_dir}")
    print(f"  Derivatives location: {cfg.derivs_dir}")
    if not ok:
        print("  Re-run with the same --subjects/--runs to retry; finished files are skipped.")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
