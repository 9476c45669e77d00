from typing import Optional

from faceauth.core.models import FrameSnapshot


class StabilityTracker:
    """
    Counts consecutive frames on which the same tracking id was selected.
    A different id (or no selection) restarts the count.
    """

    def __init__(self, required_frames: int):
        self.required_frames = max(1, int(required_frames))
        self.last_tracking_id: Optional[int] = None
        self.count = 0

    def update(self, snapshot: FrameSnapshot) -> int:
        tid = snapshot.selected_tracking_id
        if tid is not None and tid == self.last_tracking_id:
            self.count += 1
        else:
            self.count = 1 if snapshot.has_selection else 0
            self.last_tracking_id = tid
        return self.count

    @property
    def is_stable(self) -> bool:
        return self.count >= self.required_frames

    def reset(self) -> None:
        self.last_tracking_id = None
        self.count = 0
