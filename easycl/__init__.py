"""
Compile OpenCL kernels, bind scalars, arrays and 2D images, and run them
synchronously on the first image-capable GPU.
"""

from .bridge import OpenCLBridge
from .compiler import compile_program, compile_program_from_source, create_kernel
from .config import APP_CONFIG, Settings
from .errors import GPUError, Stage
from .formats import (
    ChannelFormat,
    ChannelOrder,
    ChannelType,
    HostPixelFormat,
    MemFlags,
    stride,
    to_gpu,
)
from .image import KernelImage
from .session import ORIGIN, DeviceSession, SessionHandles

__version__ = "0.1.0"

__all__ = [
    "APP_CONFIG",
    "ChannelFormat",
    "ChannelOrder",
    "ChannelType",
    "DeviceSession",
    "GPUError",
    "HostPixelFormat",
    "KernelImage",
    "MemFlags",
    "ORIGIN",
    "OpenCLBridge",
    "SessionHandles",
    "Settings",
    "Stage",
    "compile_program",
    "compile_program_from_source",
    "create_kernel",
    "stride",
    "to_gpu",
]
