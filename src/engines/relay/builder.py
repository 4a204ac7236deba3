"""
Job Descriptor Builder

Turns a stored object's locator into the transformation job the image
worker consumes. Every upload gets the same preset.
"""

from src.engines.relay.schemas import Filter, ImageParams, JobDescriptor

# Applied in order by the worker
DEFAULT_FILTERS = (
    Filter(name="resize", args="90x1000"),
    Filter(name="crop", args="0.6,0.3,0.9,0.9"),  # left, top, right, bottom
    Filter(name="rotate", args="90"),
)


def build_image_params(locator: str) -> ImageParams:
    """Preset parameter set for one object."""
    return ImageParams(
        image=locator,
        trim=True,
        trim_tolerance=10,
        crop_left=0.1,
        crop_top=0.1,
        crop_right=0.9,
        crop_bottom=0.9,
        width=500,
        height=500,
        h_flip=True,
        h_align="center",
        v_align="middle",
        smart=True,
        filters=DEFAULT_FILTERS,
    )


def build_job_descriptor(locator: str) -> JobDescriptor:
    """Build the job for an uploaded object. Pure; never fails for a non-empty locator."""
    return JobDescriptor(
        image_params=build_image_params(locator),
        image_url=locator,
    )
