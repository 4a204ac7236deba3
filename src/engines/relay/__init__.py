"""
Relay Engine - upload, dispatch and reply correlation

Turns the fire-and-forget job/reply topics into a request/response call
for the HTTP layer.
"""

from src.engines.relay.blob_gateway import BlobGateway
from src.engines.relay.broker_gateway import BrokerGateway
from src.engines.relay.builder import build_job_descriptor
from src.engines.relay.correlator import ResponseCorrelator, Slot, SlotState
from src.engines.relay.schemas import Filter, ImageParams, JobDescriptor, ReplyMessage
from src.engines.relay.services import ImageRelayService, ProcessedImage, render_fragment

__all__ = [
    "BlobGateway",
    "BrokerGateway",
    "build_job_descriptor",
    "ResponseCorrelator",
    "Slot",
    "SlotState",
    "Filter",
    "ImageParams",
    "JobDescriptor",
    "ReplyMessage",
    "ImageRelayService",
    "ProcessedImage",
    "render_fragment",
]
