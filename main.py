import os
import sys
import asyncio
import csv
import json
from typing import List, Optional

import pandas as pd
from loguru import logger

from place_resolver.models import BusinessRecord, Coordinates, ResolutionResult
from place_resolver.pipeline import ResolutionPipeline
from place_resolver.config import INPUT_CSV, OUTPUT_CSV, BATCH_SIZE, LOG_LEVEL
from place_resolver.clients import WebClient

OUTPUT_COLUMNS = ["Name", "placeId", "method", "confidence", "reviewUrl", "coordinateId", "durationMs", "steps"]


def load_businesses_from_csv(file_path: str, nrows: int = None) -> List[BusinessRecord]:
    """Load businesses from CSV and convert to BusinessRecord objects."""
    df = pd.read_csv(file_path, nrows=nrows, dtype=str)
    records = []
    for _, row in df.iterrows():
        # Helper to safely extract values from pandas Series, converting NaN to None
        def safe_get(col) -> Optional[str]:
            if col not in row.index:
                return None
            val = row[col]
            if pd.isna(val):
                return None
            return str(val).strip() or None

        mapx, mapy = safe_get("mapx"), safe_get("mapy")
        record = BusinessRecord(
            name=safe_get("Name") or "",
            address=safe_get("Address"),
            road_address=safe_get("Road address"),
            district=safe_get("District"),
            coordinates=Coordinates(x=mapx, y=mapy) if mapx and mapy else None,
        )
        records.append(record)
    return records


def batch_iter(records: List[BusinessRecord], batch_size: int):
    """
    Yield index and BusinessRecord slices of size `batch_size` for batched processing.
    """
    n = len(records)
    for i in range(0, n, batch_size):
        yield i, records[i:i+batch_size]


async def process_record(pipeline: ResolutionPipeline, record: BusinessRecord) -> Optional[ResolutionResult]:
    """
    Resolve a single business record, skipping rows that cannot be resolved at all.

    Args:
        pipeline (ResolutionPipeline): Shared pipeline instance.
        record (BusinessRecord): Input business record.

    Returns:
        Optional[ResolutionResult]: Resolution result, or None for a nameless row.
    """
    try:
        return await pipeline.resolve(record)
    except ValueError as e:
        logger.warning(f"Skipping row: {e}")
        return None


def result_row(record: BusinessRecord, result: ResolutionResult) -> list:
    return [
        record.clean_name,
        result.external_id or "",
        result.method,
        result.confidence,
        result.review_url or "",
        result.coordinate_id or "",
        result.duration_ms,
        json.dumps([step.to_dict() for step in result.steps], ensure_ascii=False),
    ]


async def main():
    """
    Orchestrate the batch resolution run.

    - Loads input CSV.
    - Resolves each batch concurrently; each record still tries strategies one at a time.
    - Writes results incrementally to an output CSV.
    """
    # Initialize logs
    logger.remove()  # Remove default handler
    logger.add(sys.stderr, level=LOG_LEVEL, format="<green>{time:HH:mm:ss}</green> | <level>{message}</level>")

    all_businesses = load_businesses_from_csv(INPUT_CSV)
    pipeline = ResolutionPipeline()
    logger.info(f"Strategy status: {json.dumps(pipeline.system_status(), ensure_ascii=False)}")

    # Initialize output file
    output_path = OUTPUT_CSV
    if os.path.exists(output_path):
        os.remove(output_path)
    with open(output_path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(OUTPUT_COLUMNS)

    try:
        for start_idx, batch_records in batch_iter(all_businesses, BATCH_SIZE):
            logger.info(f"Processing rows {start_idx}..{start_idx + len(batch_records) - 1}")

            results = await asyncio.gather(*[process_record(pipeline, record) for record in batch_records])

            with open(output_path, "a", newline="") as f:
                writer = csv.writer(f)
                for record, result in zip(batch_records, results):
                    if result is not None:
                        writer.writerow(result_row(record, result))
    finally:
        # Cleanup: close WebClient session to prevent unclosed connector warnings
        web_client = WebClient()
        await web_client.close()

if __name__ == "__main__":
    asyncio.run(main())
