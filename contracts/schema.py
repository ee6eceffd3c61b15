import pyarrow as pa

# -----------------------------
# Cloud object metadata table
# -----------------------------

# One row per object event recorded by the upstream notification ingest.
BUCKET_FIELD = "bucket"
KEY_FIELD = "key"
SIZE_FIELD = "size"
COMMIT_TIME_FIELD = "_commit_time"  # instant of the commit that wrote the row

CLOUD_OBJECT_METADATA_SCHEMA = pa.schema([
    pa.field(BUCKET_FIELD, pa.string()),         # bucket name (or root directory for file://)
    pa.field(KEY_FIELD, pa.string()),            # object key relative to the bucket
    pa.field(SIZE_FIELD, pa.int64()),            # object size in bytes
    pa.field(COMMIT_TIME_FIELD, pa.string()),
])

# DuckDB column types matching the schema above, used for empty relations.
CLOUD_OBJECT_METADATA_DUCKDB_TYPES = (
    (BUCKET_FIELD, "VARCHAR"),
    (KEY_FIELD, "VARCHAR"),
    (SIZE_FIELD, "BIGINT"),
    (COMMIT_TIME_FIELD, "VARCHAR"),
)
