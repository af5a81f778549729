"""Export format implementations."""

from pinhole_calib.io.formats.json_format import JSONFormat
from pinhole_calib.io.formats.hdf5_format import HDF5Format
from pinhole_calib.io.formats.mat_format import MATFormat

__all__ = [
    "JSONFormat",
    "HDF5Format",
    "MATFormat",
]
