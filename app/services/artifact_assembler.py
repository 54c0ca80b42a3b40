"""Demultiplexes artifact frames into per-artifact content buffers.

Frames are routed solely by ``artifactId``; deltas for different artifacts
may interleave freely. ``artifact_complete`` replaces the buffer with the
authoritative content rather than appending to it.
"""

from __future__ import annotations

import logging

from app.config import settings
from app.errors import ProtocolError
from app.schemas.chat import ArtifactState, ArtifactStream
from app.schemas.frames import (
    ArtifactCompleteFrame,
    ArtifactDeltaFrame,
    ArtifactErrorFrame,
    ArtifactStartFrame,
)

logger = logging.getLogger(__name__)

_FINISHED = (ArtifactState.COMPLETE, ArtifactState.ERROR)


class ArtifactAssembler:
    def __init__(self, *, max_artifacts: int | None = None) -> None:
        self.max_artifacts = settings.max_artifacts if max_artifacts is None else max_artifacts
        self._streams: dict[str, ArtifactStream] = {}

    @property
    def streams(self) -> dict[str, ArtifactStream]:
        return {artifact_id: s.model_copy() for artifact_id, s in self._streams.items()}

    def get(self, artifact_id: str) -> ArtifactStream | None:
        return self._streams.get(artifact_id)

    def start(self, frame: ArtifactStartFrame) -> ArtifactStream:
        stream = ArtifactStream(artifact_id=frame.artifact_id, title=frame.title, kind=frame.kind)
        stream.state = ArtifactState.STREAMING
        if frame.artifact_id in self._streams:
            logger.warning("artifact_start for existing artifact %s; restarting", frame.artifact_id)
            del self._streams[frame.artifact_id]
        self._streams[frame.artifact_id] = stream
        logger.debug("Artifact %s started (%s: %s)", frame.artifact_id, frame.kind, frame.title)
        self._enforce_retention()
        return stream

    def delta(self, frame: ArtifactDeltaFrame) -> ArtifactStream:
        """Append a delta. Raises ProtocolError for an unknown artifact."""
        stream = self._streams.get(frame.artifact_id)
        if stream is None:
            raise ProtocolError(f"artifact_delta for unknown artifact {frame.artifact_id}")
        if stream.state in _FINISHED:
            raise ProtocolError(f"artifact_delta after {stream.state.value} for {frame.artifact_id}")
        stream.buffer += frame.delta
        return stream

    def complete(self, frame: ArtifactCompleteFrame) -> ArtifactStream:
        stream = self._streams.get(frame.artifact_id)
        if stream is None:
            logger.warning("artifact_complete without start for %s", frame.artifact_id)
            stream = ArtifactStream(artifact_id=frame.artifact_id)
            self._streams[frame.artifact_id] = stream
        elif stream.buffer != frame.content:
            stream.mismatch = True
            logger.info(
                "Artifact %s content differs from streamed deltas (%d vs %d chars)",
                frame.artifact_id, len(stream.buffer), len(frame.content),
            )
        stream.title = frame.title or stream.title
        stream.kind = frame.kind or stream.kind
        stream.buffer = frame.content
        stream.state = ArtifactState.COMPLETE
        self._enforce_retention()
        return stream

    def fail(self, frame: ArtifactErrorFrame) -> ArtifactStream:
        stream = self._streams.get(frame.artifact_id)
        if stream is None:
            raise ProtocolError(f"artifact_error for unknown artifact {frame.artifact_id}")
        stream.state = ArtifactState.ERROR
        stream.error = frame.error
        logger.warning("Artifact %s failed: %s", frame.artifact_id, frame.error)
        return stream

    def clear(self) -> None:
        self._streams.clear()

    def _enforce_retention(self) -> None:
        # Only finished streams are evicted, oldest first
        if self.max_artifacts <= 0:
            return
        overflow = len(self._streams) - self.max_artifacts
        if overflow <= 0:
            return
        for artifact_id in [a for a, s in self._streams.items() if s.state in _FINISHED][:overflow]:
            del self._streams[artifact_id]
