"""
Media storage: data URL decoding and upload collaborators.
"""

from .media import DecodedMedia, decode_data_url, encode_data_url, extension_for, is_data_url
from .uploader import (
    AUDIO_UPLOAD,
    STYLE_IMAGE_UPLOAD,
    FalStorageUploader,
    LocalUploadStore,
    Uploader,
    UploadRule,
    normalize_source_media,
)

__all__ = [
    "DecodedMedia",
    "decode_data_url",
    "encode_data_url",
    "extension_for",
    "is_data_url",
    "Uploader",
    "FalStorageUploader",
    "LocalUploadStore",
    "UploadRule",
    "STYLE_IMAGE_UPLOAD",
    "AUDIO_UPLOAD",
    "normalize_source_media",
]
