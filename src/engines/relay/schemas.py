import json

from pydantic import BaseModel, ConfigDict, Field
from typing import Tuple


class Filter(BaseModel):
    """A single named filter applied by the image worker, e.g. resize(90x1000)."""
    model_config = ConfigDict(frozen=True)

    name: str = ""
    args: str = ""


class ImageParams(BaseModel):
    """Transformation parameters understood by the image worker.

    Zero values (False, 0, "", no filters) are left off the wire.
    """
    model_config = ConfigDict(frozen=True)

    path: str = ""
    image: str = ""
    unsafe: bool = False
    hash: str = ""
    meta: bool = False

    # Trimming
    trim: bool = False
    trim_by: str = ""
    trim_tolerance: int = 0

    # Manual crop, as fractions of the source
    crop_left: float = 0.0
    crop_top: float = 0.0
    crop_right: float = 0.0
    crop_bottom: float = 0.0

    # Output geometry
    fit_in: bool = False
    stretch: bool = False
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    padding_left: int = 0
    padding_top: int = 0
    padding_right: int = 0
    padding_bottom: int = 0

    # Flip and alignment
    h_flip: bool = False
    v_flip: bool = False
    h_align: str = ""
    v_align: str = ""
    smart: bool = False

    filters: Tuple[Filter, ...] = ()


class JobDescriptor(BaseModel):
    """Job sent to the worker on the job topic."""
    model_config = ConfigDict(frozen=True)

    image_params: ImageParams
    image_url: str = Field(..., min_length=1)

    def to_wire(self) -> bytes:
        """Canonical JSON form: fixed key order, compact separators, zero values omitted."""
        params = self.image_params.model_dump(mode="json", exclude_defaults=True)
        envelope = {"image_params": params, "image_url": self.image_url}
        return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class ReplyMessage(BaseModel):
    """Completion notice from the worker; carries only the result locator."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    updated_image_url: str = Field(..., min_length=1)
