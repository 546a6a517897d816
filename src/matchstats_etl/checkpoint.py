from __future__ import annotations

import json
import os
from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import boto3

from .sources.base import SkippedPage
from .utils import stable_hash


def scope_key(scope: Tuple[str, str]) -> str:
    return stable_hash({"competition_id": scope[0], "season_label": scope[1]})


class CheckpointStore:
    """Remembers pages a run had to skip so the next run fetches them first.

    Items are keyed by ``source_id`` (hash) and the scope hash (range).
    """

    def __init__(self, region: str, table_name: Optional[str] = None) -> None:
        self.table_name = table_name or os.getenv("MATCHSTATS_CHECKPOINT_TABLE", "matchstats_checkpoints")
        self._client = boto3.client("dynamodb", region_name=region)

    def get_skipped(self, source_id: str, scope: Tuple[str, str]) -> List[SkippedPage]:
        resp = self._client.get_item(
            TableName=self.table_name,
            Key={
                "source_id": {"S": source_id},
                "scope_key": {"S": scope_key(scope)},
            },
        )
        item = resp.get("Item")
        if not item:
            return []
        payload = json.loads(item["payload"]["S"])
        return [SkippedPage(**entry) for entry in payload.get("skipped", [])]

    def put_skipped(self, source_id: str, scope: Tuple[str, str], pages: Sequence[SkippedPage]) -> None:
        if not pages:
            self.clear(source_id, scope)
            return
        payload = {
            "competition_id": scope[0],
            "season_label": scope[1],
            "skipped": [asdict(p) for p in pages],
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self._client.put_item(
            TableName=self.table_name,
            Item={
                "source_id": {"S": source_id},
                "scope_key": {"S": scope_key(scope)},
                "payload": {"S": json.dumps(payload, default=str)},
            },
        )

    def clear(self, source_id: str, scope: Tuple[str, str]) -> None:
        self._client.delete_item(
            TableName=self.table_name,
            Key={
                "source_id": {"S": source_id},
                "scope_key": {"S": scope_key(scope)},
            },
        )
