"""Infrastructure layer exports."""

from .decoder_api import ApiCredentials, DecoderApiClient, resolve_credentials, resolve_refine_credentials
from .device_services import DeviceModelFinderClient, ModelDbInsertionClient, UpstreamJsonClient
from .document_intelligence import DocumentIntelligenceClient
from .polling import JobPoller

__all__ = [
    "ApiCredentials",
    "DecoderApiClient",
    "DeviceModelFinderClient",
    "DocumentIntelligenceClient",
    "JobPoller",
    "ModelDbInsertionClient",
    "UpstreamJsonClient",
    "resolve_credentials",
    "resolve_refine_credentials",
]
