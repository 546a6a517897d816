from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict

import boto3


class ReportWriter:
    """Writes run summaries and reconciliation reports as JSON objects to S3."""

    def __init__(self, bucket: str, region: str, prefix: str = "meta", max_attempts: int = 5) -> None:
        self.bucket = bucket
        self.region = region
        self.prefix = prefix.strip("/")
        self.max_attempts = max_attempts
        self._client = boto3.client("s3", region_name=region)

    def _put_with_retry(self, key: str, body: bytes) -> None:
        delay = 0.5
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType="application/json")
                return
            except self._client.exceptions.ClientError:
                if attempt >= self.max_attempts:
                    raise
                time.sleep(delay)
                delay = min(8.0, delay * 2)

    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        body = json.dumps(payload, default=str, ensure_ascii=False).encode("utf-8")
        self._put_with_retry(key, body)
        return key

    def write_run_summary(self, run_id: str, summary: Dict[str, Any]) -> str:
        return self.put_json(make_key(self.prefix, "runs", f"run_id={run_id}.json"), summary)

    def write_reconciliation(self, run_id: str, scope_label: str, report: Dict[str, Any]) -> str:
        safe_scope = scope_label.replace("/", "_")
        return self.put_json(
            make_key(self.prefix, "reconciliation", f"scope={safe_scope}", f"run_id={run_id}.json"),
            report,
        )

    def get_json(self, key: str) -> Dict[str, Any]:
        obj = self._client.get_object(Bucket=self.bucket, Key=key)
        return json.loads(obj["Body"].read())


def make_key(prefix: str, *parts: str) -> str:
    return "/".join([prefix.strip("/")] + [p.strip("/") for p in parts])


def new_run_id() -> str:
    return uuid.uuid4().hex
