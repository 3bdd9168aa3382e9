# src/fmrifetch/fetch/openneuro_s3.py
# Filtered one-way mirror of a public OpenNeuro S3 prefix into a local folder.
# Equivalent to `aws s3 sync --no-sign-request --exclude "*" --include ...`,
# done with boto3 so each object's outcome is visible.

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Sequence
import logging
import os

import boto3
from boto3.exceptions import Boto3Error
from botocore import UNSIGNED
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..select import IncludePattern, match_pattern

logger = logging.getLogger(__name__)

# boto3 wraps exhausted transfer retries in RetriesExceededError (a Boto3Error)
TRANSFER_ERRORS = (ClientError, BotoCoreError, Boto3Error)


class RemoteRootError(RuntimeError):
    """The remote root could not be listed (unreachable, denied, or empty)."""


class LocalFilesystemError(OSError):
    """Writing into the local mirror failed; the job cannot continue."""


@dataclass(frozen=True)
class RemoteObject:
    key: str  # relative to the remote root
    size: int
    last_modified: datetime | None = None


@dataclass(frozen=True)
class SyncJob:
    name: str
    remote_root: str
    local_root: Path
    patterns: tuple[IncludePattern, ...]


@dataclass(frozen=True)
class ObjectFailure:
    key: str
    error: str
    subject: int | None = None
    run: int | None = None


@dataclass
class SyncResult:
    job_name: str
    matched: int = 0
    copied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[ObjectFailure] = field(default_factory=list)

    @property
    def copied_count(self) -> int:
        return len(self.copied)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class JobOutcome:
    job: SyncJob
    result: SyncResult | None = None
    error: RemoteRootError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None and self.result.ok


def make_s3_client(endpoint_url: str | None = None, max_attempts: int = 3, region_name: str = "us-east-1"):
    """Anonymous S3 client; retries are left to botocore's standard mode."""
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        region_name=region_name,
        config=Config(
            signature_version=UNSIGNED,
            retries={"max_attempts": max_attempts, "mode": "standard"},
        ),
    )


def parse_s3_uri(uri: str) -> tuple[str, str]:
    if not uri.startswith("s3://"):
        raise ValueError(f"Not an s3:// URI: {uri}")
    bucket, _, prefix = uri[len("s3://"):].partition("/")
    if not bucket:
        raise ValueError(f"Missing bucket in {uri}")
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return bucket, prefix


def iter_remote_objects(client, remote_root: str) -> Iterator[RemoteObject]:
    bucket, prefix = parse_s3_uri(remote_root)
    paginator = client.get_paginator("list_objects_v2")
    for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
        for obj in page.get("Contents", []):
            key = obj["Key"]
            if key.endswith("/"):  # folder markers
                continue
            yield RemoteObject(key[len(prefix):], int(obj["Size"]), obj.get("LastModified"))


def list_remote(client, remote_root: str) -> list[RemoteObject]:
    try:
        objects = list(iter_remote_objects(client, remote_root))
    except TRANSFER_ERRORS as e:
        raise RemoteRootError(f"Could not list {remote_root}: {e}") from e
    if not objects:
        raise RemoteRootError(f"No objects under {remote_root} (wrong dataset id?)")
    return objects


def is_up_to_date(local_path: Path, obj: RemoteObject) -> bool:
    if not local_path.is_file():
        return False
    st = local_path.stat()
    if st.st_size != obj.size:
        return False
    if obj.last_modified is None:
        return True
    return st.st_mtime >= obj.last_modified.timestamp()


def _part_path(local_root: Path, obj: RemoteObject) -> Path:
    dest = local_root / obj.key
    return dest.with_name(dest.name + ".part")


def _download(client, bucket: str, prefix: str, obj: RemoteObject, local_root: Path) -> None:
    dest = local_root / obj.key
    tmp = _part_path(local_root, obj)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LocalFilesystemError(f"Cannot create {dest.parent}: {e}") from e

    try:
        client.download_file(bucket, prefix + obj.key, str(tmp))
    except TRANSFER_ERRORS:
        if tmp.exists():
            tmp.unlink()
        raise
    except OSError as e:
        if tmp.exists():
            tmp.unlink()
        raise LocalFilesystemError(f"Cannot write {dest}: {e}") from e

    try:
        os.replace(tmp, dest)
        if obj.last_modified is not None:
            ts = obj.last_modified.timestamp()
            os.utime(dest, (ts, ts))
    except OSError as e:
        raise LocalFilesystemError(f"Cannot write {dest}: {e}") from e


def _remove_parts(local_root: Path, objects: Sequence[RemoteObject]) -> None:
    for obj in objects:
        tmp = _part_path(local_root, obj)
        if tmp.is_file():
            tmp.unlink()


def sync(
    remote_root: str,
    local_root: Path,
    patterns: Sequence[IncludePattern],
    client=None,
    max_workers: int = 8,
    dry_run: bool = False,
    job_name: str = "sync",
) -> SyncResult:
    """
    Mirror every object under ``remote_root`` matching one of ``patterns``
    into ``local_root``, keeping relative paths.

    Everything is excluded unless a pattern includes it. Local files are never
    deleted. Files already present with the same size and a modification time
    no older than the remote copy are skipped, so re-running is cheap.

    Raises
    ------
    RemoteRootError
        If the root cannot be listed or holds no objects.
    LocalFilesystemError
        If the local mirror cannot be written.
    """
    client = client or make_s3_client()
    local_root = Path(local_root)
    bucket, prefix = parse_s3_uri(remote_root)
    result = SyncResult(job_name=job_name)

    objects = list_remote(client, remote_root)
    todo: list[tuple[RemoteObject, IncludePattern]] = []
    for obj in objects:
        pat = match_pattern(obj.key, patterns)
        if pat is None:
            continue
        result.matched += 1
        if is_up_to_date(local_root / obj.key, obj):
            result.skipped.append(obj.key)
        else:
            todo.append((obj, pat))

    logger.info(
        "%s: %d/%d objects matched, %d to copy, %d up to date",
        job_name, result.matched, len(objects), len(todo), len(result.skipped),
    )

    if dry_run:
        result.copied.extend(obj.key for obj, _ in todo)
        return result

    try:
        local_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LocalFilesystemError(f"Cannot create {local_root}: {e}") from e

    try:
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = {
                pool.submit(_download, client, bucket, prefix, obj, local_root): (obj, pat)
                for obj, pat in todo
            }
            try:
                for fut in as_completed(futures):
                    obj, pat = futures[fut]
                    try:
                        fut.result()
                    except TRANSFER_ERRORS as e:
                        logger.warning("%s: failed %s: %s", job_name, obj.key, e)
                        result.failures.append(ObjectFailure(obj.key, str(e), pat.subject, pat.run))
                        continue
                    logger.debug("%s: copied %s", job_name, obj.key)
                    result.copied.append(obj.key)
            except LocalFilesystemError:
                for f in futures:
                    f.cancel()
                raise
    except LocalFilesystemError:
        # pool has drained; drop partial downloads left by in-flight transfers
        _remove_parts(local_root, [obj for obj, _ in todo])
        raise

    return result


def run_jobs(
    jobs: Sequence[SyncJob],
    client=None,
    max_workers: int = 8,
    dry_run: bool = False,
) -> list[JobOutcome]:
    """Run jobs in order. A job whose root is unreachable does not stop the next one."""
    client = client or make_s3_client()
    outcomes = []
    for job in jobs:
        try:
            res = sync(
                job.remote_root, job.local_root, job.patterns,
                client=client, max_workers=max_workers, dry_run=dry_run, job_name=job.name,
            )
        except RemoteRootError as e:
            logger.error("%s: %s", job.name, e)
            outcomes.append(JobOutcome(job, error=e))
            continue
        outcomes.append(JobOutcome(job, result=res))
    return outcomes
