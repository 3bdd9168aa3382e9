from datetime import datetime, timezone
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

STAMP = datetime(2021, 3, 4, 12, 0, 0, tzinfo=timezone.utc)

RAW_PREFIX = "ds000105/"
DERIV_PREFIX = "fmriprep/ds000105-fmriprep/"

RAW_KEYS = [
    "dataset_description.json",
    "participants.tsv",
    "README",
    "CHANGES",
    "task-objectviewing_bold.json",
    "sub-1/anat/sub-1_T1w.nii.gz",
    "sub-1/func/sub-1_task-objectviewing_run-01_bold.nii.gz",
    "sub-1/func/sub-1_task-objectviewing_run-01_events.tsv",
    "sub-1/func/sub-1_task-objectviewing_run-02_bold.nii.gz",
    "sub-1/func/sub-1_task-objectviewing_run-12_bold.nii.gz",
    "sub-2/anat/sub-2_T1w.nii.gz",
    "sub-2/func/sub-2_task-objectviewing_run-01_bold.nii.gz",
    "sub-10/anat/sub-10_T1w.nii.gz",
    "sub-10/func/sub-10_task-objectviewing_run-01_bold.nii.gz",
    "sub-1/func/sub-1_task-objectviewing_run-01_bold.json",
]

_MNI = "space-MNI152NLin2009cAsym_res-2"


def _deriv_func(sub, run):
    base = f"sub-{sub}/func/sub-{sub}_task-objectviewing_run-{run}"
    return [
        f"{base}_{_MNI}_boldref.nii.gz",
        f"{base}_{_MNI}_desc-brain_mask.nii.gz",
        f"{base}_{_MNI}_desc-preproc_bold.nii.gz",
        f"{base}_{_MNI}_desc-preproc_bold.json",
        f"{base}_space-T1w_desc-preproc_bold.nii.gz",
        f"{base}_desc-confounds_timeseries.tsv",
        f"{base}_desc-confounds_timeseries.json",
        f"{base}_space-T1w_boldref.nii.gz",  # never requested
    ]


DERIV_KEYS = (
    ["dataset_description.json", "sub-1.html", "sub-1/anat/sub-1_desc-preproc_T1w.nii.gz"]
    + [f"sub-{s}/anat/sub-{s}_{_MNI}_desc-preproc_T1w.nii.gz" for s in (1, 2)]
    + _deriv_func(1, 1) + _deriv_func(1, 2) + _deriv_func(1, 11) + _deriv_func(2, 1)
)


class FakePaginator:
    def __init__(self, client):
        self.client = client

    def paginate(self, Bucket, Prefix=""):
        self.client.list_calls += 1
        if Bucket in self.client.unreachable:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "ListObjectsV2")
        if Bucket not in self.client.buckets:
            raise ClientError({"Error": {"Code": "NoSuchBucket", "Message": "no bucket"}}, "ListObjectsV2")
        keys = sorted(k for k in self.client.buckets[Bucket] if k.startswith(Prefix))
        for i in range(0, len(keys), self.client.page_size):
            chunk = keys[i:i + self.client.page_size]
            yield {
                "Contents": [
                    {"Key": k, "Size": len(self.client.buckets[Bucket][k]), "LastModified": STAMP}
                    for k in chunk
                ]
            }


class FakeS3Client:
    """Just enough of a boto3 S3 client for list_objects_v2 + download_file."""

    def __init__(self, buckets=None, page_size=4):
        self.buckets = buckets or {}
        self.page_size = page_size
        self.fail_keys = set()
        self.errors = {}  # key -> exception raised after a partial write
        self.unreachable = set()
        self.downloads = []
        self.list_calls = 0

    def put(self, bucket, key, body=None):
        self.buckets.setdefault(bucket, {})[key] = body if body is not None else key.encode()

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return FakePaginator(self)

    def download_file(self, Bucket, Key, Filename):
        if Key in self.errors:
            Path(Filename).write_bytes(b"partial")
            raise self.errors[Key]
        if Key in self.fail_keys:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "GetObject")
        self.downloads.append(Key)
        Path(Filename).write_bytes(self.buckets[Bucket][Key])


@pytest.fixture
def fake_s3():
    client = FakeS3Client()
    for k in RAW_KEYS:
        client.put("openneuro.org", RAW_PREFIX + k)
    for k in DERIV_KEYS:
        client.put("openneuro-derivatives", DERIV_PREFIX + k)
    client.put("openneuro.org", "ds000001/README")
    return client


@pytest.fixture
def raw_root():
    return "s3://openneuro.org/" + RAW_PREFIX


@pytest.fixture
def deriv_root():
    return "s3://openneuro-derivatives/" + DERIV_PREFIX


@pytest.fixture
def local_files():
    def _files(root: Path) -> set:
        return {p.relative_to(root).as_posix() for p in Path(root).rglob("*") if p.is_file()}

    return _files
