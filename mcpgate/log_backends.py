import os
from datetime import datetime, timedelta, timezone
from typing import Optional


class AuditArchive:
    """Write-once mirror for finalized action log entries."""

    def write_entry(self, entry_id: str, tenant_id: str, created_at: str, entry_json: str) -> None:
        raise NotImplementedError


class S3ObjectLockArchive(AuditArchive):
    """Writes each action log entry as a separate immutable object to an S3 bucket with Object Lock.
    Requires bucket with Object Lock enabled.
    Docs: https://docs.aws.amazon.com/AmazonS3/latest/userguide/object-lock.html
    """
    def __init__(self, bucket: str, prefix: str, retention_days: int, legal_hold: str = "OFF", client=None):
        self.bucket = bucket
        self.prefix = prefix.rstrip("/") + "/"
        self.retention_days = retention_days
        self.legal_hold = legal_hold
        self._client = client

    def _s3(self):
        if self._client is None:
            import boto3
            self._client = boto3.client("s3")
        return self._client

    def write_entry(self, entry_id: str, tenant_id: str, created_at: str, entry_json: str) -> None:
        key = f"{self.prefix}{tenant_id}/{created_at}-{entry_id}.json"
        retain_until = datetime.now(timezone.utc) + timedelta(days=int(self.retention_days))
        self._s3().put_object(
            Bucket=self.bucket,
            Key=key,
            Body=entry_json.encode("utf-8"),
            ContentType="application/json",
            ObjectLockMode="COMPLIANCE",
            ObjectLockRetainUntilDate=retain_until,
            ObjectLockLegalHoldStatus=self.legal_hold
        )


def get_archive_backend() -> Optional[AuditArchive]:
    backend = os.getenv("AUDIT_ARCHIVE_BACKEND", "none")
    if backend == "s3_object_lock":
        bucket = os.environ["S3_BUCKET"]
        prefix = os.getenv("S3_PREFIX", "mcpgate/action-log/")
        retention_days = int(os.getenv("S3_RETENTION_DAYS", "365"))
        legal_hold = os.getenv("S3_LEGAL_HOLD", "OFF")
        return S3ObjectLockArchive(bucket=bucket, prefix=prefix, retention_days=retention_days, legal_hold=legal_hold)
    return None
