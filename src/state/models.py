from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class SaveRecord(BaseModel):
    """
    Structured view of a save blob.

    Fields
    - seed: world generation seed; grows by one each time a level is solved,
      which makes it the natural "how far along" counter.
    - rotations: per-tile rotation state of the current level.

    Notes
    - The blob itself stays an opaque string everywhere except conflict
      resolution; this model is only used to read the monotonic field.
    - Unknown keys are kept (`extra="allow"`) so other save layouts, e.g.
      `{"counter": 5}`, can still be compared on their own field.
    """

    model_config = ConfigDict(extra="allow")

    seed: Optional[StrictInt] = Field(default=None, description="World generation seed")
    rotations: List[StrictInt] = Field(default_factory=list, description="Tile rotations")

    def monotonic_value(self, field: str) -> Optional[Union[int, float]]:
        """Numeric value of `field` as stored, or None when absent or not a number."""
        value = getattr(self, field, None)
        if value is None and self.model_extra:
            value = self.model_extra.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value


class RemoteFile(BaseModel):
    """One entry of a Drive `files.list` result."""

    id: str
    name: str
