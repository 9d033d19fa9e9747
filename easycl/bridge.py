"""
A compiled kernel together with argument binding and blocking execution.
"""

import logging
import time

import numpy as np
import pyopencl as cl

from .errors import GPUError, Stage
from .formats import MemFlags
from .image import release_memory
from .session import DeviceSession

logger = logging.getLogger(__name__)

_INT32 = np.iinfo(np.int32)


def _check_int32(low, high):
    if low < _INT32.min or high > _INT32.max:
        raise OverflowError(f"values in [{low}, {high}] do not fit in a 32-bit int")


def _scalar(value):
    # kernel scalars need an explicit width; plain Python numbers get the
    # int/float widths of OpenCL C
    if isinstance(value, np.generic):
        return value
    if isinstance(value, (bool, int)):
        _check_int32(value, value)
        return np.int32(value)
    if isinstance(value, float):
        return np.float32(value)
    return value


def _array(items):
    """Host array for `items`; Python sequences get the same widths as scalars."""
    if isinstance(items, np.ndarray):
        return np.ascontiguousarray(items)
    host = np.asarray(items)
    if host.dtype.kind in "bi":
        if host.size:
            _check_int32(int(host.min()), int(host.max()))
        return host.astype(np.int32)
    if host.dtype.kind == "f":
        return host.astype(np.float32)
    return np.ascontiguousarray(host)


class OpenCLBridge:
    """
    Holds a kernel ready to run.

    The bridge owns its kernel and any device buffers created by
    `set_array_arg`, but not the `KernelImage` objects bound to it.
    """

    def __init__(self, kernel, source_code, method_name, session=None):
        self.session = session or DeviceSession.get()
        self.source_code = source_code
        self.method_name = method_name
        self._kernel = kernel
        self._arrays = {}

    @property
    def kernel(self):
        return self._kernel

    def _set_arg(self, index, value):
        if self._kernel is None:
            raise GPUError(Stage.DISPOSED, f"bridge for {self.method_name} has been disposed")
        try:
            self._kernel.set_arg(index, value)
        except cl.Error as exc:
            raise GPUError(Stage.SET_ARG, f"argument {index}: {exc}") from exc

    def set_arg(self, index, value):
        """Bind a scalar argument."""
        self.session.require()
        try:
            value = _scalar(value)
        except OverflowError as exc:
            raise GPUError(Stage.SET_ARG, f"argument {index}: {exc}") from exc
        self._set_arg(index, value)

    def set_array_arg(self, index, items, flags=MemFlags.COPY_HOST_PTR):
        """
        Copy `items` into a new device buffer and bind it to `index`.

        A previous buffer bound to the same index by this bridge is released.
        Returns the new buffer.
        """
        _, context, _ = self.session.require()
        try:
            host = _array(items)
        except OverflowError as exc:
            raise GPUError(Stage.SET_ARG, f"argument {index}: {exc}") from exc
        try:
            if MemFlags(flags) & (MemFlags.COPY_HOST_PTR | MemFlags.USE_HOST_PTR):
                buffer = cl.Buffer(context, int(flags), hostbuf=host)
            else:
                buffer = cl.Buffer(context, int(flags), size=host.nbytes)
        except cl.Error as exc:
            raise GPUError(Stage.SET_ARG, f"buffer for argument {index}: {exc}") from exc

        try:
            self._set_arg(index, buffer)
        except GPUError:
            release_memory(buffer)
            raise

        previous = self._arrays.get(index)
        self._arrays[index] = (buffer, host)
        if previous is not None:
            release_memory(previous[0])
        return buffer

    def set_image_arg(self, image):
        """Bind a `KernelImage` to its parameter slot and upload its host bytes."""
        _, _, queue = self.session.require()
        with image.locked() as (host, device_image):
            self._set_arg(image.parameter_index, device_image)
            with self.session.queue_lock:
                try:
                    cl.enqueue_copy(
                        queue, device_image, host,
                        origin=self.session.origin, region=image.region, is_blocking=True,
                    )
                except cl.Error as exc:
                    raise GPUError(Stage.WRITE_IMAGE, str(exc)) from exc

    def execute(self, work_size):
        """
        Run the kernel over a 2D index space and wait for the queue to drain.

        `work_size` is ``(width, height, depth)``; only width and height
        are dispatched, depth is expected to be 1. Returns the elapsed time
        in milliseconds.
        """
        _, _, queue = self.session.require()
        if self._kernel is None:
            raise GPUError(Stage.DISPOSED, f"bridge for {self.method_name} has been disposed")
        if len(work_size) < 2:
            raise GPUError(Stage.EXECUTE, f"work size {tuple(work_size)} is not 2D")
        if len(work_size) > 2 and work_size[2] != 1:
            logger.warning(f"ignoring depth {work_size[2]} of work size for 2D dispatch")
        global_size = (int(work_size[0]), int(work_size[1]))

        with self.session.queue_lock:
            start = time.perf_counter()
            try:
                event = cl.enqueue_nd_range_kernel(queue, self._kernel, global_size, None)
                queue.finish()
            except cl.Error as exc:
                raise GPUError(Stage.EXECUTE, str(exc)) from exc
            elapsed = (time.perf_counter() - start) * 1e3

        if self.session.settings.profiling:
            elapsed = (event.profile.end - event.profile.start) * 1e-6
        logger.debug(f"{self.method_name} over {global_size} took {elapsed:.3f} ms")
        return elapsed

    def read_image(self, image):
        """Copy the device image back into the kernel image's host bytes."""
        _, _, queue = self.session.require()
        with image.locked() as (host, device_image):
            with self.session.queue_lock:
                try:
                    cl.enqueue_copy(
                        queue, host, device_image,
                        origin=self.session.origin, region=image.region, is_blocking=True,
                    )
                except cl.Error as exc:
                    raise GPUError(Stage.READ_IMAGE, str(exc)) from exc
        return image.host_bytes

    def read_array(self, index, out=None):
        """Copy the buffer bound at `index` back to the host."""
        _, _, queue = self.session.require()
        if index not in self._arrays:
            raise GPUError(Stage.READ_BUFFER, f"no array bound to argument {index}")
        buffer, host = self._arrays[index]
        if out is None:
            out = np.empty_like(host)
        with self.session.queue_lock:
            try:
                cl.enqueue_copy(queue, out, buffer, is_blocking=True)
            except cl.Error as exc:
                raise GPUError(Stage.READ_BUFFER, str(exc)) from exc
        return out

    def update_kernel(self, kernel):
        """
        Install `kernel` in place of the current one. The old kernel is
        released once unreferenced; bound arguments do not carry over.
        """
        self._kernel = kernel
        logger.debug(f"kernel for {self.method_name} replaced")

    def recompile(self, source=None, method_name=None):
        """Rebuild from the retained (or a new) source and entry point."""
        from .compiler import compile_program, create_kernel

        source = self.source_code if source is None else source
        method_name = self.method_name if method_name is None else method_name
        program = compile_program(source, session=self.session)
        self.update_kernel(create_kernel(program, method_name))
        self.source_code = source
        self.method_name = method_name

    def dispose(self):
        arrays, self._arrays = self._arrays, {}
        for buffer, _ in arrays.values():
            release_memory(buffer)
        self._kernel = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.dispose()
