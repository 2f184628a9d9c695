"""VetDDx: veterinary differential-diagnosis proxy and reply normalizer."""

__version__ = "1.0.0"
