from __future__ import annotations

from typing import List

from parley.contracts import TranscriptSegment


class Transcript:
    """
    Ordered transcript where only the trailing interim segment is mutable.

    An interim replaces the previous interim (last writer wins); a final replaces the
    trailing interim it completes, or appends, and is never touched again.
    """

    def __init__(self) -> None:
        self._segments: List[TranscriptSegment] = []

    def apply(self, segment: TranscriptSegment) -> bool:
        """Apply a recognizer segment; returns True when it committed a final entry."""
        if self._segments and not self._segments[-1].is_final:
            self._segments[-1] = segment
        else:
            self._segments.append(segment)
        return segment.is_final

    @property
    def segments(self) -> List[TranscriptSegment]:
        return list(self._segments)

    @property
    def finals(self) -> List[TranscriptSegment]:
        return [s for s in self._segments if s.is_final]

    @property
    def interim(self) -> TranscriptSegment | None:
        if self._segments and not self._segments[-1].is_final:
            return self._segments[-1]
        return None

    def clear(self) -> None:
        self._segments.clear()

    def __len__(self) -> int:
        return len(self._segments)
