"""H.264 header parsing, Annex B and Opus file readers, and the FTL ingest control protocol."""

__version__ = "0.9.14"