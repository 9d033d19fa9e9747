"""
Compile OpenCL C source into kernels.

Build failures surface the device compiler's own log as the error detail;
that log is the only actionable diagnostic a driver gives.
"""

import logging
import time

import pyopencl as cl

from .bridge import OpenCLBridge
from .errors import CL_BUILD_SUCCESS, GPUError, Stage
from .session import DeviceSession

logger = logging.getLogger(__name__)


def _build_log(program, device):
    try:
        log = program.get_build_info(device, cl.program_build_info.LOG)
    except cl.Error as exc:
        return f"build log unavailable: {exc}"
    return (log or "").strip()


def compile_program(source, session=None):
    """Create and build a program for the session's device, with no build options."""
    session = session or DeviceSession.get()
    device, context, _ = session.require()

    if "\0" in source:
        raise GPUError(Stage.CREATE, "source text contains a NUL character")

    try:
        program = cl.Program(context, source)
    except cl.Error as exc:
        raise GPUError(Stage.CREATE, str(exc)) from exc

    start = time.perf_counter()
    try:
        program.build(options=[], devices=[device])
    except cl.Error as exc:
        # pyopencl appends the per-device build log to the message
        logger.warning("program build failed")
        raise GPUError(Stage.BUILD, str(exc)) from exc

    try:
        status = program.get_build_info(device, cl.program_build_info.STATUS)
    except cl.Error as exc:
        raise GPUError(Stage.STATUS, str(exc)) from exc
    if status != CL_BUILD_SUCCESS:
        logger.warning(f"program build reported status {status}")
        raise GPUError(Stage.STATUS, _build_log(program, device) or f"build status {status}")

    logger.info(f"program built in {(time.perf_counter() - start) * 1e3:.1f} ms")
    return program


def create_kernel(program, method_name):
    """Extract the kernel named `method_name` from a built program."""
    try:
        kernel = cl.Kernel(program, method_name)
        # some drivers accept unknown names until the kernel is queried
        kernel.num_args  # noqa: B018
    except cl.Error as exc:
        raise GPUError(Stage.KERNEL, f"{method_name}: {exc}") from exc
    return kernel


def compile_program_from_source(source, method_name, session=None):
    """
    Compile `source` and return an `OpenCLBridge` for its `method_name`
    kernel (the name after ``__kernel void``).
    """
    session = session or DeviceSession.get()
    program = compile_program(source, session=session)
    kernel = create_kernel(program, method_name)
    logger.info(f"kernel {method_name} ready")
    return OpenCLBridge(kernel, source, method_name, session=session)
