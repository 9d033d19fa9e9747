"""
Error type raised by every device-facing operation.
"""

from enum import Enum

# OpenCL status codes that mean "nothing there" rather than failure
CL_DEVICE_NOT_FOUND = -1
CL_PLATFORM_NOT_FOUND_KHR = -1001

# clGetProgramBuildInfo(CL_PROGRAM_BUILD_STATUS) values
CL_BUILD_SUCCESS = 0
CL_BUILD_ERROR = -2


class Stage(str, Enum):
    PLATFORM = "Platform"
    DEVICE = "Device"
    CONTEXT = "Init"
    QUEUE = "Queue"
    NO_DEVICE = "NoDevice"
    CREATE = "Create"
    BUILD = "Build"
    STATUS = "Status"
    KERNEL = "Kernel"
    SET_IMAGE = "SetImage2D"
    SET_ARG = "SetKernelArg"
    WRITE_IMAGE = "WriteImage"
    EXECUTE = "Execute"
    READ_IMAGE = "ReadImage"
    READ_BUFFER = "ReadBuffer"
    LENGTH_MISMATCH = "LengthMismatch"
    NULL_POINTER = "NullPointer"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    DISPOSED = "Disposed"


class GPUError(RuntimeError):
    """
    A failed device call, tagged with the stage that failed.

    `detail` carries the driver's status text, or the compiler's build log
    for the compile stages.
    """

    def __init__(self, stage, detail=""):
        self.stage = Stage(stage)
        self.detail = str(detail)
        if self.detail:
            super().__init__(f"{self.stage.value} ({self.detail})")
        else:
            super().__init__(self.stage.value)


def status_code(exc):
    """Return the OpenCL status code carried by a pyopencl error, if any."""
    try:
        return exc.code
    except (AttributeError, IndexError):
        return None
