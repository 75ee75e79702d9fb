# src/flat_file_source/core.py

"""
Core streaming logic for the S3 flat file source.

The main entry point, `run_pipeline`, reads one object from the store in
fixed-size byte ranges, rebuilds the lines that straddle range boundaries,
groups the lines into batches and delivers each batch as one CloudEvent.

Everything runs sequentially in a single thread. All mutable state for a run
(counters, carry buffer, pending batch) lives on objects created by
`run_pipeline` for that run alone.
"""

import logging
from contextlib import closing
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Iterator

from botocore.exceptions import BotoCoreError

from .dispatch import Dispatcher
from .exceptions import S3Error, get_error_context, is_retryable_error

if TYPE_CHECKING:
    from .clients import DeliveryContext, S3Client
    from .dispatch import Transport
    from .schemas import CloudEventOverrides

logger = logging.getLogger(__name__)

EOF_MARKER = "EOF"
READ_BLOCK_SIZE = 64 * 1024

# Errors raised mid-stream by a botocore StreamingBody.
_READ_ERRORS = (BotoCoreError, OSError)


# --- Run state ---
@dataclass(frozen=True, slots=True)
class Result:
    """Final counters of one run."""

    error_count: int
    sent_count: int

    def to_dict(self) -> dict[str, int]:
        return {"errorCount": self.error_count, "sentCount": self.sent_count}


@dataclass(slots=True)
class RunStats:
    """Counters owned by a single pipeline run."""

    error_count: int = 0
    sent_count: int = 0
    last_event_id: int = 0
    eof_delivered: bool = False

    def next_event_id(self) -> int:
        self.last_event_id += 1
        return self.last_event_id

    def result(self) -> Result:
        # The EOF marker travels as a line but is not reported as one.
        sent = self.sent_count - 1 if self.eof_delivered else self.sent_count
        return Result(error_count=self.error_count, sent_count=sent)


@dataclass(frozen=True, slots=True)
class ObjectRef:
    bucket: str
    key: str
    size: int


@dataclass(frozen=True, slots=True)
class ChunkRange:
    """Half-open byte range ``[start, end)`` of the object."""

    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


# --- Chunk planning ---
def plan_chunks(object_size: int, chunk_size: int) -> Iterator[ChunkRange]:
    """
    Yields ``ceil(object_size / chunk_size)`` contiguous ranges covering the
    whole object, in ascending order.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be a positive integer")
    index = 0
    for start in range(0, object_size, chunk_size):
        yield ChunkRange(index, start, min(start + chunk_size, object_size))
        index += 1


# --- Line reconstruction ---
class LineReconstructor:
    """
    Splits chunk streams into lines, carrying an unterminated tail from one
    chunk into the next.

    The carry buffer holds raw bytes, so a multi-byte character cut by a range
    boundary is only decoded once its line is complete.
    """

    def __init__(
        self,
        stats: RunStats,
        max_consecutive_errors: int = 3,
        block_size: int = READ_BLOCK_SIZE,
    ):
        self._stats = stats
        self._max_consecutive_errors = max_consecutive_errors
        self._block_size = block_size
        self._carry = bytearray()

    @property
    def carry(self) -> bytes:
        return bytes(self._carry)

    def lines(self, stream: BinaryIO) -> Iterator[str]:
        """Yields every line of *stream* that ends with a newline."""
        consecutive_errors = 0
        while True:
            try:
                block = stream.read(self._block_size)
            except _READ_ERRORS as e:
                self._stats.error_count += 1
                consecutive_errors += 1
                logger.warning(
                    f"failed to read data: {e}",
                    extra={"consecutive_errors": consecutive_errors},
                )
                if consecutive_errors >= self._max_consecutive_errors:
                    logger.error(
                        "Too many consecutive read errors. Abandoning the rest of this chunk.",
                        extra={"consecutive_errors": consecutive_errors},
                    )
                    return
                continue

            consecutive_errors = 0
            if not block:
                return

            # Only the newly read bytes can contain a terminator we have not seen.
            scan_from = len(self._carry)
            self._carry.extend(block)
            start = 0
            while True:
                end = self._carry.find(b"\n", scan_from)
                if end == -1:
                    break
                yield self._decode(self._carry[start : end + 1])
                start = scan_from = end + 1
            del self._carry[:start]

    def drain(self) -> str | None:
        """Returns and clears whatever unterminated text is still carried."""
        if not self._carry:
            return None
        text = self._decode(self._carry)
        self._carry.clear()
        return text

    def _decode(self, raw: bytes | bytearray) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(
                f"Line is not valid UTF-8, replacing undecodable bytes: {e}",
                extra={"line_bytes": len(raw)},
            )
            return raw.decode("utf-8", errors="replace")


# --- Batching ---
class BatchAccumulator:
    """
    Holds the lines that have not been delivered yet.

    The batch is only cleared after a successful delivery. A failed delivery
    leaves it in place, and later lines are appended behind it.
    """

    def __init__(self, dispatcher: Dispatcher, stats: RunStats, dump_count: int):
        if dump_count <= 0:
            raise ValueError("dump_count must be a positive integer")
        self._dispatcher = dispatcher
        self._stats = stats
        self._dump_count = dump_count
        self._lines: list[str] = []

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def pending(self) -> list[str]:
        return list(self._lines)

    def append(self, line: str) -> None:
        self._lines.append(line)
        if len(self._lines) >= self._dump_count:
            self._push()

    def flush(self, tail: str | None = None) -> bool:
        """Appends the trailing fragment, if any, and the EOF marker, then delivers."""
        if tail:
            self._lines.append(tail)
        self._lines.append(EOF_MARKER)
        delivered = self._push()
        self._stats.eof_delivered = delivered
        return delivered

    def _push(self) -> bool:
        delivered = self._dispatcher.deliver(self._lines)
        if delivered:
            self._lines.clear()
        return delivered


# --- High-Level Orchestrator ---
def _log_fetch_error(message: str, error: S3Error) -> None:
    # Retryable failures log at WARNING, everything else at ERROR.
    level = logging.WARNING if is_retryable_error(error) else logging.ERROR
    logger.log(level, message, extra=get_error_context(error))


def run_pipeline(
    s3_client: "S3Client",
    bucket: str,
    key: str,
    *,
    transport: "Transport",
    context: "DeliveryContext",
    chunk_size: int,
    dump_count: int,
    overrides: "CloudEventOverrides | None" = None,
    max_consecutive_read_errors: int = 3,
) -> Result:
    """
    Streams ``s3://bucket/key`` to the sink and returns the run's counters.

    A failed size query or range fetch is counted and stops fetching; whatever
    was accumulated is still flushed with the EOF marker. A payload that cannot
    be encoded raises `PayloadEncodingError` and ends the run without a result.
    """
    stats = RunStats()
    dispatcher = Dispatcher(transport, context, stats, overrides)
    batch = BatchAccumulator(dispatcher, stats, dump_count)
    reconstructor = LineReconstructor(stats, max_consecutive_read_errors)

    try:
        obj = ObjectRef(bucket, key, s3_client.get_object_size(bucket, key))
    except S3Error as e:
        stats.error_count += 1
        _log_fetch_error(f"Error getting object size from S3: {e}", e)
        obj = None

    if obj is not None:
        total_chunks = -(-obj.size // chunk_size)
        logger.info(
            "chunks to process",
            extra={"bucket": bucket, "key": key, "size": obj.size, "chunks": total_chunks},
        )
        for chunk in plan_chunks(obj.size, chunk_size):
            logger.info(
                f"Processing chunk {chunk.index}, starting byte {chunk.start}, ending byte {chunk.end - 1}"
            )
            try:
                stream = s3_client.get_range_stream(
                    obj.bucket, obj.key, chunk.start, chunk.end
                )
            except S3Error as e:
                stats.error_count += 1
                _log_fetch_error(f"Error getting object from S3: {e}", e)
                break

            with closing(stream):
                for line in reconstructor.lines(stream):
                    batch.append(line)

    batch.flush(reconstructor.drain())
    result = stats.result()
    logger.info(
        "Finished streaming object",
        extra={
            "bucket": bucket,
            "key": key,
            "sent_count": result.sent_count,
            "error_count": result.error_count,
            "events": stats.last_event_id,
        },
    )
    return result
