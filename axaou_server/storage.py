"""
Object-store access (Google Cloud Storage).

Only two operations are needed: a delimited listing that returns the
"directory" prefixes directly under a prefix, and a streaming read of one
object. Both are blocking in google-cloud-storage, so async callers run
them through ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Tuple

from google.api_core import exceptions as gexc
from google.cloud import storage

from axaou_server.errors import DataTransform, NotFound

log = logging.getLogger("axaou.storage")

STREAM_CHUNK_BYTES = 256 * 1024


def parse_gcs_uri(uri: str) -> Optional[Tuple[str, str]]:
    """``gs://bucket/a/b.png`` -> ``("bucket", "a/b.png")``."""
    if not uri.startswith("gs://"):
        return None
    bucket, _, path = uri[len("gs://"):].partition("/")
    if not bucket or not path:
        return None
    return bucket, path


class GcsBucket:
    """Thin wrapper over one bucket."""

    def __init__(self, bucket_name: str, client: Optional[storage.Client] = None):
        self.bucket_name = bucket_name
        self._client = client or storage.Client()
        self._bucket = self._client.bucket(bucket_name)

    def list_prefixes(self, prefix: str) -> List[str]:
        """Immediate child prefixes of ``prefix`` (each ends in ``/``)."""
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        iterator = self._bucket.list_blobs(prefix=prefix, delimiter="/")
        prefixes: List[str] = []
        for page in iterator.pages:
            prefixes.extend(page.prefixes)
        return sorted(set(prefixes))

    def open_stream(self, path: str, chunk_size: int = STREAM_CHUNK_BYTES) -> Iterator[bytes]:
        """Check that ``path`` exists, then return a chunk iterator over it."""
        blob = self._bucket.blob(path)
        try:
            blob.reload()
        except gexc.NotFound:
            raise NotFound(f"Object not found: gs://{self.bucket_name}/{path}")
        except gexc.GoogleAPIError as e:
            raise DataTransform(f"Object store error: {e}")
        return _iter_blob(blob, chunk_size)


def _iter_blob(blob: storage.Blob, chunk_size: int) -> Iterator[bytes]:
    with blob.open("rb", chunk_size=chunk_size) as fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            yield chunk
