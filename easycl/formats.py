"""
Host pixel formats, device channel formats and memory flags.

The values of `MemFlags`, `ChannelOrder` and `ChannelType` are the raw
OpenCL constants, so they pass through to pyopencl unchanged.
"""

from enum import Enum, IntEnum, IntFlag
from typing import NamedTuple

from .errors import GPUError, Stage


class MemFlags(IntFlag):
    NONE = 0
    READ_WRITE = 1
    WRITE_ONLY = 2
    READ_ONLY = 4
    USE_HOST_PTR = 8
    ALLOC_HOST_PTR = 16
    COPY_HOST_PTR = 32


class ChannelOrder(IntEnum):
    R = 0x10B0
    A = 0x10B1
    RG = 0x10B2
    RA = 0x10B3
    RGB = 0x10B4
    RGBA = 0x10B5
    BGRA = 0x10B6
    ARGB = 0x10B7
    INTENSITY = 0x10B8
    LUMINANCE = 0x10B9


class ChannelType(IntEnum):
    SNORM_INT8 = 0x10D0
    SNORM_INT16 = 0x10D1
    UNORM_INT8 = 0x10D2
    UNORM_INT16 = 0x10D3
    UNORM_SHORT_565 = 0x10D4
    UNORM_SHORT_555 = 0x10D5
    UNORM_INT_101010 = 0x10D6
    SIGNED_INT8 = 0x10D7
    SIGNED_INT16 = 0x10D8
    SIGNED_INT32 = 0x10D9
    UNSIGNED_INT8 = 0x10DA
    UNSIGNED_INT16 = 0x10DB
    UNSIGNED_INT32 = 0x10DC
    HALF_FLOAT = 0x10DD
    FLOAT = 0x10DE


_CHANNEL_COUNT = {
    ChannelOrder.R: 1,
    ChannelOrder.A: 1,
    ChannelOrder.INTENSITY: 1,
    ChannelOrder.LUMINANCE: 1,
    ChannelOrder.RG: 2,
    ChannelOrder.RA: 2,
    ChannelOrder.RGB: 3,
    ChannelOrder.RGBA: 4,
    ChannelOrder.BGRA: 4,
    ChannelOrder.ARGB: 4,
}

_CHANNEL_SIZE = {
    ChannelType.SNORM_INT8: 1,
    ChannelType.SNORM_INT16: 2,
    ChannelType.UNORM_INT8: 1,
    ChannelType.UNORM_INT16: 2,
    ChannelType.SIGNED_INT8: 1,
    ChannelType.SIGNED_INT16: 2,
    ChannelType.SIGNED_INT32: 4,
    ChannelType.UNSIGNED_INT8: 1,
    ChannelType.UNSIGNED_INT16: 2,
    ChannelType.UNSIGNED_INT32: 4,
    ChannelType.HALF_FLOAT: 2,
    ChannelType.FLOAT: 4,
}

# packed types store a whole pixel in one element
_PACKED_SIZE = {
    ChannelType.UNORM_SHORT_565: 2,
    ChannelType.UNORM_SHORT_555: 2,
    ChannelType.UNORM_INT_101010: 4,
}


class ChannelFormat(NamedTuple):
    order: ChannelOrder
    type: ChannelType

    @property
    def pixel_size(self):
        """Bytes per pixel on the host side."""
        if self.type in _PACKED_SIZE:
            return _PACKED_SIZE[self.type]
        return _CHANNEL_COUNT[self.order] * _CHANNEL_SIZE[self.type]


class HostPixelFormat(Enum):
    FORMAT_32BPP_ARGB = "Format32bppArgb"
    FORMAT_32BPP_PARGB = "Format32bppPArgb"
    FORMAT_32BPP_RGB = "Format32bppRgb"
    FORMAT_24BPP_RGB = "Format24bppRgb"
    FORMAT_16BPP_ARGB1555 = "Format16bppArgb1555"
    FORMAT_16BPP_GRAYSCALE = "Format16bppGrayScale"
    FORMAT_8BPP_INDEXED = "Format8bppIndexed"
    FORMAT_48BPP_RGB = "Format48bppRgb"
    FORMAT_64BPP_ARGB = "Format64bppArgb"


_GPU_FORMATS = {
    HostPixelFormat.FORMAT_32BPP_ARGB: ChannelFormat(ChannelOrder.RGBA, ChannelType.UNSIGNED_INT8),
    HostPixelFormat.FORMAT_32BPP_PARGB: ChannelFormat(ChannelOrder.RGBA, ChannelType.UNSIGNED_INT8),
    HostPixelFormat.FORMAT_32BPP_RGB: ChannelFormat(ChannelOrder.RGBA, ChannelType.UNSIGNED_INT8),
    HostPixelFormat.FORMAT_24BPP_RGB: ChannelFormat(ChannelOrder.RGB, ChannelType.UNSIGNED_INT8),
    HostPixelFormat.FORMAT_16BPP_ARGB1555: ChannelFormat(ChannelOrder.ARGB, ChannelType.UNORM_SHORT_555),
}

# Pillow modes that have a host pixel format
_PIL_MODES = {
    "RGBA": HostPixelFormat.FORMAT_32BPP_ARGB,
    "RGBa": HostPixelFormat.FORMAT_32BPP_PARGB,
    "RGBX": HostPixelFormat.FORMAT_32BPP_RGB,
    "RGB": HostPixelFormat.FORMAT_24BPP_RGB,
}


def to_gpu(pixel_format):
    """Convert a host pixel format to the device channel format."""
    try:
        return _GPU_FORMATS[pixel_format]
    except (KeyError, TypeError):
        raise GPUError(Stage.UNSUPPORTED_FORMAT, repr(pixel_format)) from None


def from_pil_mode(mode):
    try:
        return _PIL_MODES[mode]
    except KeyError:
        raise GPUError(Stage.UNSUPPORTED_FORMAT, f"image mode {mode!r}") from None


def pil_mode_for(channel_format):
    """Pillow mode whose bytes match `channel_format`, or None."""
    for mode in ("RGBA", "RGB"):
        if _GPU_FORMATS[_PIL_MODES[mode]] == channel_format:
            return mode
    return None


def resolve_format(pixel_format):
    """Accept either a host pixel format or a device channel format."""
    if isinstance(pixel_format, ChannelFormat):
        return pixel_format
    return to_gpu(pixel_format)


def stride(width, channel_format):
    """Bytes per image row, tightly packed."""
    return width * channel_format.pixel_size
