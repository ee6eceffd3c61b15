"""Project version constants.

These constants are used in logs, the S3 user agent and the checkpoint file so
that produced batches can be traced back to a specific engine version.
"""

ENGINE_NAME: str = "cloudincr"
ENGINE_VERSION: str = "0.1.0"

CHECKPOINT_FORMAT_VERSION: int = 1
