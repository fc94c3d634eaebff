from __future__ import annotations

import base64
import json
import logging
import mimetypes
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable

from websockets.sync.client import connect

from lanrelay.client.progress import DEFAULT_ACK_TIMEOUT, ProgressEstimator
from lanrelay.errors import AcknowledgmentTimeout
from lanrelay.server.models import DEFAULT_MEDIA_TYPE, AcknowledgmentResult

logger = logging.getLogger(__name__)

SUBMIT_EVENT = "submit-transfer"
ACK_EVENT = "ack"
ERROR_EVENT = "error"
REJECTED_CODE = "rejected"

# A multiple of 3 so per-chunk base64 output concatenates cleanly.
ENCODE_CHUNK_SIZE = 3 * 256 * 1024

# How often the waiting estimate advances while no message arrives.
TICK_INTERVAL = 0.25


@runtime_checkable
class BatchProgressCallback(Protocol):
    """Callback protocol for observing batch send progress."""

    def file_started(self, index: int, file_path: Path) -> None: ...
    def file_progress(self, index: int, percent: float) -> None: ...
    def file_done(self, index: int, result: AcknowledgmentResult) -> None: ...
    def file_error(self, index: int, exc: Exception) -> None: ...


@dataclass
class FileResult:
    """Result of sending a single file in a batch."""

    filename: str
    result: AcknowledgmentResult | None = field(default=None)
    error: str | None = field(default=None)

    @property
    def ok(self) -> bool:
        return self.result is not None and self.result.success


def ws_url(base_url: str) -> str:
    """Relay WebSocket URL for an ``http(s)://host:port`` base URL."""
    if base_url.startswith("https://"):
        return "wss://" + base_url.removeprefix("https://") + "/v1/ws"
    return "ws://" + base_url.removeprefix("http://") + "/v1/ws"


def resolve_inputs(paths: list[str]) -> list[Path]:
    """Resolve the given paths into a sorted list of existing files."""
    result: list[Path] = []
    for p in paths:
        path = Path(p)
        if path.is_file():
            result.append(path)
        elif path.is_dir():
            result.extend(child for child in path.iterdir() if child.is_file())
        else:
            logger.warning("Path does not exist: %s", path)
    if not result:
        raise FileNotFoundError("No files found in the given paths")
    return sorted(set(result))


def guess_media_type(file_path: Path) -> str:
    media_type, _ = mimetypes.guess_type(file_path.name)
    return media_type or DEFAULT_MEDIA_TYPE


def encode_file(
    file_path: Path,
    media_type: str,
    callback: Callable[[float], None] | None = None,
    chunk_size: int = ENCODE_CHUNK_SIZE,
) -> str:
    """Read *file_path* into a base64 data URL, reporting the fraction done."""
    chunk_size = max(chunk_size - chunk_size % 3, 3)
    total = file_path.stat().st_size
    done = 0
    parts: list[str] = []
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            parts.append(base64.b64encode(chunk).decode("ascii"))
            done += len(chunk)
            if callback and total:
                callback(done / total)
    if callback:
        callback(1.0)
    return f"data:{media_type};base64," + "".join(parts)


def _await_ack(ws, ack_id: str, estimator: ProgressEstimator) -> AcknowledgmentResult:
    """Wait for the ack matching *ack_id*, ignoring notifications.

    Each send uses its own connection, so an ``error`` event can only
    concern this submit and ends the wait as a failure.
    """
    while True:
        remaining = estimator.remaining()
        if remaining <= 0:
            raise AcknowledgmentTimeout(
                f"No acknowledgment within {estimator.timeout}s"
            )
        try:
            raw = ws.recv(timeout=min(remaining, TICK_INTERVAL))
        except TimeoutError:
            estimator.tick()
            continue

        message = json.loads(raw)
        event = message.get("event")
        if event == ACK_EVENT and message.get("ack") == ack_id:
            return AcknowledgmentResult.model_validate(message["data"])
        if event == ERROR_EVENT:
            # The relay rejected the submit outright; no ack will follow.
            detail = (message.get("data") or {}).get("message") or "Relay error"
            return AcknowledgmentResult(
                success=False, message=detail, code=REJECTED_CODE
            )
        estimator.tick()


def send_file(
    file_path: Path,
    base_url: str,
    progress_callback: Callable[[float], None] | None = None,
    timeout: float = DEFAULT_ACK_TIMEOUT,
    expect_ack: bool = True,
) -> AcknowledgmentResult | None:
    """Send a single file to the relay.

    Returns the relay's acknowledgment, or *None* for a fire-and-forget
    send. Raises :class:`AcknowledgmentTimeout` if the relay does not
    answer within *timeout* seconds of the transmission starting; there
    is no retry.
    """
    estimator = ProgressEstimator(timeout=timeout, listener=progress_callback)
    media_type = guess_media_type(file_path)

    try:
        payload = encode_file(file_path, media_type, callback=estimator.encoding)
        ack_id = uuid.uuid4().hex if expect_ack else None
        message = json.dumps(
            {
                "event": SUBMIT_EVENT,
                "ack": ack_id,
                "data": {
                    "name": file_path.name,
                    "payload": payload,
                    "size": file_path.stat().st_size,
                    "media_type": media_type,
                },
            }
        )

        with connect(ws_url(base_url), max_size=None, open_timeout=10) as ws:
            estimator.transmission_started()
            ws.send(message)
            if ack_id is None:
                return None
            result = _await_ack(ws, ack_id, estimator)
    except Exception:
        estimator.failed()
        raise

    if result.success:
        estimator.succeeded()
    else:
        estimator.failed()
    return result


def send_batch(
    file_paths: list[Path],
    base_url: str,
    parallel: int = 4,
    timeout: float = DEFAULT_ACK_TIMEOUT,
    progress: BatchProgressCallback | None = None,
) -> list[FileResult]:
    """Send multiple files with configurable parallelism.

    Results are returned in the order of *file_paths*.
    """
    # Set the number of workers.
    workers = min(parallel, len(file_paths))

    results: list[FileResult | None] = [None] * len(file_paths)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        # Keep track of futures and their corresponding index + file path.
        futures: dict[Future[AcknowledgmentResult | None], tuple[int, Path]] = {}

        for idx, fpath in enumerate(file_paths):
            if progress:
                progress.file_started(idx, fpath)

            def make_callback(i: int):
                """
                Create a callback function that captures the file index for progress.
                """
                def cb(percent: float):
                    if progress:
                        progress.file_progress(i, percent)
                return cb

            future = pool.submit(
                send_file,
                fpath,
                base_url,
                progress_callback=make_callback(idx),
                timeout=timeout,
            )
            futures[future] = (idx, fpath)

        for future in as_completed(futures):
            idx, fpath = futures[future]
            try:
                result = future.result()
            # On exception, record the error message for this file.
            except Exception as exc:
                results[idx] = FileResult(filename=fpath.name, error=str(exc))
                if progress:
                    progress.file_error(idx, exc)
                logger.error("Failed to send %s: %s", fpath, exc)
                continue

            results[idx] = FileResult(filename=fpath.name, result=result)
            if progress and result is not None:
                progress.file_done(idx, result)

    return [r for r in results if r is not None]
