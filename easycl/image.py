"""
Host/device image pairs bound to image-typed kernel parameters.

A `KernelImage` owns a host byte array and the device image created from
it. The host bytes are the source of truth: every content update creates a
fresh device image and swaps both halves of the pair under a lock, so a
reader never sees host bytes that belong to a different device image.
"""

import ctypes
import logging
import threading
from contextlib import contextmanager

import numpy as np
import pyopencl as cl
from PIL import Image

from .errors import GPUError, Stage
from .formats import MemFlags, from_pil_mode, pil_mode_for, resolve_format, stride
from .session import DeviceSession

logger = logging.getLogger(__name__)

_HOST_POINTER_FLAGS = MemFlags.COPY_HOST_PTR | MemFlags.USE_HOST_PTR


def _host_copy(data):
    """Copy any buffer-like object into a fresh, flat uint8 array."""
    if isinstance(data, np.ndarray):
        return np.ascontiguousarray(data).view(np.uint8).ravel().copy()
    if isinstance(data, (bytes, bytearray, memoryview)):
        return np.frombuffer(data, dtype=np.uint8).copy()
    return np.frombuffer(bytes(data), dtype=np.uint8).copy()


def release_memory(mem):
    """Release a device memory object; failures are logged, not raised."""
    try:
        mem.release()
    except cl.Error as exc:
        logger.warning(f"release of {mem!r} failed: {exc}")


@contextmanager
def locked_pixels(image):
    """
    Expose the pixel bytes of a Pillow image for the duration of a block.

    The view is released on every exit path, including errors raised
    inside the block.
    """
    image.load()
    view = memoryview(image.tobytes())
    try:
        yield view
    finally:
        view.release()


class KernelImage:
    """
    Image parameter `index` of a kernel, `width` x `height` pixels.

    `host_bytes` must hold exactly ``stride(width, format) * height`` bytes.
    `pixel_format` may be a `HostPixelFormat` or a `ChannelFormat`; it
    defaults to the session's default image format, and `flags` to the
    session's default memory policy.
    """

    def __init__(self, index, host_bytes, width, height, pixel_format=None, flags=None, session=None):
        self.session = session or DeviceSession.get()
        self.session.require()

        if width <= 0 or height <= 0:
            raise GPUError(Stage.SET_IMAGE, f"invalid image size {width}x{height}")

        self.parameter_index = index
        self.width = width
        self.height = height
        if pixel_format is None:
            self.image_format = self.session.default_image_format
        else:
            self.image_format = resolve_format(pixel_format)
        self.flags = MemFlags(self.session.default_mem_flags if flags is None else flags)
        self.region = (width, height, 1)
        self.work_group_size = (width, height, 1)
        self.mode = None

        self._lock = threading.RLock()
        host = _host_copy(host_bytes)
        self._check_length(host)
        self._host = host
        self._device_image = self._create_device_image(host)

    @classmethod
    def from_image(cls, index, image, flags=None, session=None):
        """Build a kernel image from a copy of a Pillow image's pixels."""
        pixel_format = from_pil_mode(image.mode)
        width, height = image.size
        with locked_pixels(image) as pixels:
            kernel_image = cls(index, pixels, width, height, pixel_format, flags=flags, session=session)
        kernel_image.mode = image.mode
        return kernel_image

    @property
    def nbytes(self):
        return stride(self.width, self.image_format) * self.height

    @property
    def host_bytes(self):
        return self._host

    @property
    def device_image(self):
        return self._device_image

    @property
    def disposed(self):
        return self._device_image is None

    def _check_length(self, host):
        if host.size != self.nbytes:
            raise GPUError(
                Stage.LENGTH_MISMATCH,
                f"expected {self.nbytes} bytes for {self.width}x{self.height}, got {host.size}",
            )

    def _create_device_image(self, host):
        _, context, _ = self.session.require()
        cl_format = cl.ImageFormat(int(self.image_format.order), int(self.image_format.type))
        try:
            if self.flags & _HOST_POINTER_FLAGS:
                return cl.Image(
                    context, int(self.flags), cl_format, shape=(self.width, self.height), hostbuf=host
                )
            return cl.Image(context, int(self.flags), cl_format, shape=(self.width, self.height))
        except cl.Error as exc:
            raise GPUError(Stage.SET_IMAGE, str(exc)) from exc

    def _swap(self, host):
        self._check_length(host)
        if self.disposed:
            raise GPUError(Stage.DISPOSED, "kernel image has been disposed")
        image = self._create_device_image(host)
        with self._lock:
            previous = self._device_image
            if previous is not None:
                self._host, self._device_image = host, image
        if previous is None:
            # disposed while the new image was being created
            release_memory(image)
            raise GPUError(Stage.DISPOSED, "kernel image has been disposed")
        release_memory(previous)

    def set_source(self, data):
        """Replace the host bytes with a copy of `data` and recreate the device image."""
        self._swap(_host_copy(data))

    def set_source_from_pointer(self, address):
        """Replace the host bytes with `nbytes` bytes read from a raw host address."""
        if not address:
            raise GPUError(Stage.NULL_POINTER, "source address is null")
        self._swap(np.frombuffer(ctypes.string_at(address, self.nbytes), dtype=np.uint8).copy())

    def set_source_from_image(self, image):
        with locked_pixels(image) as pixels:
            self._swap(_host_copy(pixels))

    @contextmanager
    def locked(self):
        """Hold the pair steady and yield ``(host_bytes, device_image)``."""
        with self._lock:
            if self._device_image is None:
                raise GPUError(Stage.DISPOSED, "kernel image has been disposed")
            yield self._host, self._device_image

    def to_image(self):
        """Return the host bytes as a Pillow image."""
        mode = self.mode or pil_mode_for(self.image_format)
        if mode is None:
            raise GPUError(Stage.UNSUPPORTED_FORMAT, f"no image mode for {self.image_format}")
        return Image.frombytes(mode, (self.width, self.height), self._host.tobytes())

    def dispose(self):
        """Release the device image; later calls do nothing."""
        with self._lock:
            image, self._device_image = self._device_image, None
        if image is not None:
            release_memory(image)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.dispose()

    def __repr__(self):
        return (
            f"KernelImage(index={self.parameter_index}, {self.width}x{self.height}, "
            f"{self.image_format.order.name}/{self.image_format.type.name})"
        )
