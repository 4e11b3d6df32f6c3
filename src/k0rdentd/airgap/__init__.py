"""Air-gapped distribution: bundle introspection, local registry and image push."""

from k0rdentd.airgap.bundle import extract_version, find_image_archives, path_to_image_ref
from k0rdentd.airgap.exporter import WorkerExporter
from k0rdentd.airgap.pusher import ImagePusher, PushSummary
from k0rdentd.airgap.registry import RegistryDaemon
from k0rdentd.airgap.verifier import BundleVerifier

__all__ = [
    "BundleVerifier",
    "ImagePusher",
    "PushSummary",
    "RegistryDaemon",
    "WorkerExporter",
    "extract_version",
    "find_image_archives",
    "path_to_image_ref",
]
