import pyopencl as cl
import pytest

from easycl.errors import GPUError, Stage
from easycl.formats import (
    ChannelFormat,
    ChannelOrder,
    ChannelType,
    HostPixelFormat,
    MemFlags,
    from_pil_mode,
    pil_mode_for,
    resolve_format,
    stride,
    to_gpu,
)

RGBA8 = ChannelFormat(ChannelOrder.RGBA, ChannelType.UNSIGNED_INT8)


@pytest.mark.parametrize(
    "host_format, expected",
    [
        (HostPixelFormat.FORMAT_32BPP_ARGB, RGBA8),
        (HostPixelFormat.FORMAT_32BPP_PARGB, RGBA8),
        (HostPixelFormat.FORMAT_32BPP_RGB, RGBA8),
        (HostPixelFormat.FORMAT_24BPP_RGB, ChannelFormat(ChannelOrder.RGB, ChannelType.UNSIGNED_INT8)),
        (
            HostPixelFormat.FORMAT_16BPP_ARGB1555,
            ChannelFormat(ChannelOrder.ARGB, ChannelType.UNORM_SHORT_555),
        ),
    ],
)
def test_supported_formats_map_to_fixed_pairs(host_format, expected):
    assert to_gpu(host_format) == expected
    assert to_gpu(host_format) == to_gpu(host_format)


@pytest.mark.parametrize(
    "value",
    [
        HostPixelFormat.FORMAT_8BPP_INDEXED,
        HostPixelFormat.FORMAT_16BPP_GRAYSCALE,
        HostPixelFormat.FORMAT_48BPP_RGB,
        HostPixelFormat.FORMAT_64BPP_ARGB,
        "Format32bppArgb",
        None,
        42,
    ],
)
def test_unsupported_formats_are_rejected(value):
    with pytest.raises(GPUError) as info:
        to_gpu(value)
    assert info.value.stage is Stage.UNSUPPORTED_FORMAT


def test_stride():
    assert stride(4, RGBA8) == 16
    assert stride(5, to_gpu(HostPixelFormat.FORMAT_24BPP_RGB)) == 15
    assert stride(3, to_gpu(HostPixelFormat.FORMAT_16BPP_ARGB1555)) == 6
    assert stride(2, ChannelFormat(ChannelOrder.RGBA, ChannelType.FLOAT)) == 32


def test_pil_modes():
    assert from_pil_mode("RGBA") is HostPixelFormat.FORMAT_32BPP_ARGB
    assert from_pil_mode("RGB") is HostPixelFormat.FORMAT_24BPP_RGB
    assert pil_mode_for(RGBA8) == "RGBA"
    assert pil_mode_for(ChannelFormat(ChannelOrder.BGRA, ChannelType.UNSIGNED_INT8)) is None

    with pytest.raises(GPUError) as info:
        from_pil_mode("L")
    assert info.value.stage is Stage.UNSUPPORTED_FORMAT


def test_resolve_format_passes_channel_formats_through():
    assert resolve_format(RGBA8) is RGBA8
    assert resolve_format(HostPixelFormat.FORMAT_32BPP_ARGB) == RGBA8


def test_constants_match_opencl():
    assert MemFlags.READ_WRITE == cl.mem_flags.READ_WRITE
    assert MemFlags.WRITE_ONLY == cl.mem_flags.WRITE_ONLY
    assert MemFlags.READ_ONLY == cl.mem_flags.READ_ONLY
    assert MemFlags.USE_HOST_PTR == cl.mem_flags.USE_HOST_PTR
    assert MemFlags.ALLOC_HOST_PTR == cl.mem_flags.ALLOC_HOST_PTR
    assert MemFlags.COPY_HOST_PTR == cl.mem_flags.COPY_HOST_PTR
    assert ChannelOrder.RGBA == cl.channel_order.RGBA
    assert ChannelOrder.BGRA == cl.channel_order.BGRA
    assert ChannelType.UNSIGNED_INT8 == cl.channel_type.UNSIGNED_INT8
    assert ChannelType.UNORM_SHORT_555 == cl.channel_type.UNORM_SHORT_555


def test_error_message_carries_stage_and_detail():
    err = GPUError(Stage.SET_IMAGE, "INVALID_IMAGE_SIZE")
    assert str(err) == "SetImage2D (INVALID_IMAGE_SIZE)"
    assert err.stage == "SetImage2D"
    assert err.detail == "INVALID_IMAGE_SIZE"
    assert str(GPUError(Stage.NO_DEVICE)) == "NoDevice"
