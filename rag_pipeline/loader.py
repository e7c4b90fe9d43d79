"""
loader.py
=========
Fill the restaurant vector index from a JSON file.

Usage:
  python -m rag_pipeline.loader data/restaurants.json [--namespace ns1]
                                [--batch-size 64] [--dry-run]

Input is either a JSON array of restaurant records or an object with a
``"restaurants"`` array. Each record carries ``name, address, town, state,
region, typeOfFood, rating``. Records are embedded with the same model used
for queries and upserted under an id derived from name and address, so
re-running the loader replaces rather than duplicates.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dotenv import load_dotenv  # type: ignore

from rag_pipeline.embedder import embed_texts
from rag_pipeline.settings import Settings, get_settings
from rag_pipeline.vector_index import VectorIndex

logger = logging.getLogger(__name__)

_METADATA_FIELDS = ("name", "address", "town", "state", "region", "typeOfFood", "rating")


def load_records(path: Path) -> List[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if isinstance(payload, dict):
        payload = payload.get("restaurants", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path}: expected a list of restaurant records")
    return payload


def record_id(record: Dict[str, Any]) -> str:
    key = f"{record.get('name', '')}|{record.get('address', '')}".lower()
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


def record_metadata(record: Dict[str, Any]) -> Dict[str, Any]:
    metadata = {k: record[k] for k in _METADATA_FIELDS if record.get(k) is not None}
    foods = metadata.get("typeOfFood")
    if isinstance(foods, str):
        metadata["typeOfFood"] = [f.strip() for f in foods.split(",") if f.strip()]
    return metadata


def record_text(record: Dict[str, Any]) -> str:
    """Descriptive text embedded for a restaurant."""
    foods = record.get("typeOfFood") or []
    if isinstance(foods, str):
        foods = [foods]
    location = ", ".join(
        str(record[k]) for k in ("address", "town", "state", "region") if record.get(k)
    )
    return (
        f"{record.get('name', '')} is a halal restaurant serving {', '.join(foods) or 'food'}. "
        f"Location: {location}. Rating: {record.get('rating', 'unrated')}."
    )


def _batched(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def ingest(
    records: List[Dict[str, Any]],
    client: Any,
    index: Optional[VectorIndex],
    settings: Settings,
    namespace: Optional[str] = None,
    batch_size: int = 64,
) -> int:
    """
    Embed and upsert ``records``. With ``index=None`` nothing is written
    (dry run) but records are still validated and embedded.

    Returns the number of records written (or that would be written).
    """
    namespace = namespace or settings.namespace
    usable = []
    for position, record in enumerate(records):
        if not isinstance(record, dict) or not str(record.get("name", "")).strip():
            logger.warning("Skipping record #%d: missing name.", position)
            continue
        usable.append(record)

    written = 0
    for batch in _batched(usable, max(1, batch_size)):
        vectors = embed_texts([record_text(r) for r in batch], client, settings.embed_model)
        upserts = [
            {"id": record_id(r), "values": vec, "metadata": record_metadata(r)}
            for r, vec in zip(batch, vectors)
        ]
        if index is None:
            written += len(upserts)
            continue
        written += index.upsert(upserts, namespace=namespace)
        logger.info("Upserted %d/%d records into namespace '%s'.", written, len(usable), namespace)

    return written


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load halal restaurant records into the vector index.")
    parser.add_argument("path", type=Path, help="JSON file of restaurant records")
    parser.add_argument("--namespace", default=None, help="Target namespace (default: VECTOR_NAMESPACE)")
    parser.add_argument("--batch-size", type=int, default=64)
    parser.add_argument("--dry-run", action="store_true", help="Embed and validate without writing")
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    from rag_pipeline.openai_client import create_sync_client
    from rag_pipeline.vector_index import get_index

    settings = get_settings()
    records = load_records(args.path)
    index = None if args.dry_run else get_index()

    count = ingest(
        records,
        client     = create_sync_client(settings),
        index      = index,
        settings   = settings,
        namespace  = args.namespace,
        batch_size = args.batch_size,
    )
    logger.info("%s %d restaurant records.", "Validated" if args.dry_run else "Loaded", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
