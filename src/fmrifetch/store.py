from __future__ import annotations
from pathlib import Path
import pandas as pd

from .fetch.openneuro_s3 import SyncResult

LOG_COLUMNS = ["job", "key", "status", "subject", "run", "error"]


def result_frame(result: SyncResult) -> pd.DataFrame:
    rows = [(result.job_name, k, "copied", None, None, "") for k in result.copied]
    rows += [(result.job_name, k, "skipped", None, None, "") for k in result.skipped]
    rows += [(result.job_name, f.key, "failed", f.subject, f.run, f.error) for f in result.failures]
    df = pd.DataFrame(rows, columns=LOG_COLUMNS)
    df["subject"] = df["subject"].astype("Int64")
    df["run"] = df["run"].astype("Int64")
    return df


def append_tsv(path: Path, df: pd.DataFrame) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        old = pd.read_csv(path, sep="\t", dtype={"subject": "Int64", "run": "Int64"})
        out = pd.concat([old, df], ignore_index=True)
    else:
        out = df
    out.to_csv(path, sep="\t", index=False)
