"""Data I/O layer for calibration files and images."""

from pinhole_calib.io.image_loader import DecodedImage, ImageLoader, write_image
from pinhole_calib.io.calibration_file import CalibrationFile, CalibrationFileFormat

__all__ = [
    "DecodedImage",
    "ImageLoader",
    "write_image",
    "CalibrationFile",
    "CalibrationFileFormat",
]
