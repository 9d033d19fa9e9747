"""
Process-wide device session: one image-capable GPU, one context, one queue.

`DeviceSession.get()` initializes the shared session on first use and
returns the same instance afterwards. A session may also be constructed
explicitly and passed to `KernelImage`, `OpenCLBridge` and the compile
functions through their `session` argument.
"""

import atexit
import logging
import threading
from typing import NamedTuple

import pyopencl as cl

from .config import APP_CONFIG
from .errors import (
    CL_DEVICE_NOT_FOUND,
    CL_PLATFORM_NOT_FOUND_KHR,
    GPUError,
    Stage,
    status_code,
)
from .formats import ChannelFormat, ChannelOrder, ChannelType, MemFlags

logger = logging.getLogger(__name__)

ORIGIN = (0, 0, 0)


class SessionHandles(NamedTuple):
    device: object
    context: object
    queue: object


class DeviceSession:
    _instance = None
    _instance_lock = threading.Lock()
    _atexit_registered = False

    def __init__(self, settings=None):
        self.settings = settings or APP_CONFIG
        self.available = False
        self.default_mem_flags = MemFlags.COPY_HOST_PTR
        self.default_image_format = ChannelFormat(ChannelOrder.BGRA, ChannelType.UNSIGNED_INT8)
        self.origin = ORIGIN
        # serializes every enqueue/finish sequence on the shared queue
        self.queue_lock = threading.RLock()
        self._handles = None

        device = self._find_image_device()
        if device is None:
            logger.warning("no image-capable GPU device found")
            return

        self._handles = self._open(device)
        self.available = True
        info = self.describe()
        logger.info(f"using {info['name']} ({info['vendor']}) on {info['platform']}")

    @classmethod
    def get(cls):
        """Return the shared session, creating it on first call."""
        if cls._instance is not None:
            return cls._instance
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
                if not cls._atexit_registered:
                    atexit.register(cls.shutdown)
                    cls._atexit_registered = True
            return cls._instance

    @classmethod
    def shutdown(cls):
        """Release the shared session, if one was created."""
        with cls._instance_lock:
            session, cls._instance = cls._instance, None
        if session is not None:
            session.release()

    def _find_image_device(self):
        for platform in self._platforms():
            for device in self._gpu_devices(platform):
                if self._supports_images(device):
                    return device
        return None

    def _platforms(self):
        try:
            return cl.get_platforms()
        except cl.Error as exc:
            if status_code(exc) == CL_PLATFORM_NOT_FOUND_KHR:
                return []
            raise GPUError(Stage.PLATFORM, str(exc)) from exc

    def _gpu_devices(self, platform):
        try:
            return platform.get_devices(device_type=cl.device_type.GPU)
        except cl.Error as exc:
            if status_code(exc) == CL_DEVICE_NOT_FOUND:
                return []
            raise GPUError(Stage.DEVICE, str(exc)) from exc

    def _supports_images(self, device):
        try:
            return bool(device.get_info(cl.device_info.IMAGE_SUPPORT))
        except cl.Error as exc:
            raise GPUError(Stage.DEVICE, str(exc)) from exc

    def _open(self, device):
        try:
            context = cl.Context(devices=[device])
        except cl.Error as exc:
            raise GPUError(Stage.CONTEXT, str(exc)) from exc

        try:
            if self.settings.profiling:
                queue = cl.CommandQueue(
                    context, device, properties=cl.command_queue_properties.PROFILING_ENABLE
                )
            else:
                queue = cl.CommandQueue(context, device)
        except cl.Error as exc:
            raise GPUError(Stage.QUEUE, str(exc)) from exc

        return SessionHandles(device, context, queue)

    def require(self):
        """Return the session handles, or raise the no-device error."""
        handles = self._handles
        if not self.available or handles is None:
            raise GPUError(Stage.NO_DEVICE, "no image-capable GPU device available")
        return handles

    @property
    def handles(self):
        return self.require()

    @property
    def device(self):
        return self.require().device

    @property
    def context(self):
        return self.require().context

    @property
    def queue(self):
        return self.require().queue

    def describe(self):
        device = self.require().device
        return {
            "name": device.name.strip(),
            "vendor": device.vendor.strip(),
            "version": device.version.strip(),
            "platform": device.platform.name.strip(),
        }

    def release(self):
        """Drain the queue and drop the device handles."""
        with self.queue_lock:
            handles, self._handles = self._handles, None
            self.available = False
            if handles is None:
                return
            try:
                handles.queue.finish()
            except cl.Error as exc:
                logger.warning(f"queue finish failed during release: {exc}")
