import re

import numpy as np
import pyopencl as cl
import pytest
from pyopencl import _cl

from easycl.errors import CL_BUILD_SUCCESS
from easycl.session import DeviceSession


def cl_error(kind, code, routine, msg=""):
    return kind(_cl._ErrorRecord(msg=msg, code=code, routine=routine))


class FakeDevice:
    def __init__(self, name="Fake GPU", image_support=True):
        self.name = name
        self.vendor = "Fake Vendor"
        self.version = "OpenCL 1.2 fake"
        self.image_support = image_support
        self.platform = None

    def get_info(self, param):
        if param == cl.device_info.IMAGE_SUPPORT:
            return self.image_support
        raise cl_error(cl.LogicError, -30, "clGetDeviceInfo")

    def __repr__(self):
        return f"<FakeDevice {self.name}>"


class FakePlatform:
    def __init__(self, name="Fake Platform", devices=(), error=None):
        self.name = name
        self.devices = list(devices)
        self.error = error
        for device in self.devices:
            device.platform = self

    def get_devices(self, device_type=None):
        if self.error is not None:
            raise self.error
        if not self.devices:
            raise cl_error(cl.RuntimeError, -1, "clGetDeviceIDs")
        return list(self.devices)


class FakeContext:
    def __init__(self, devices):
        self.devices = devices


class FakeQueue:
    def __init__(self, context, device, properties):
        self.context = context
        self.device = device
        self.properties = properties
        self.finish_count = 0

    def finish(self):
        self.finish_count += 1


class FakeMemory:
    def __init__(self, flags, data):
        self.flags = flags
        self.data = data
        self.release_count = 0

    @property
    def released(self):
        return self.release_count > 0

    def check_alive(self):
        if self.released:
            raise cl_error(cl.LogicError, -38, "clEnqueue", "released memory object")

    def release(self):
        if self.released:
            raise cl_error(cl.LogicError, -38, "clReleaseMemObject")
        self.release_count += 1


class FakeImage(FakeMemory):
    def __init__(self, flags, image_format, shape, hostbuf):
        self.image_format = image_format
        self.shape = shape
        self.hostbuf = hostbuf
        if hostbuf is not None:
            data = np.array(hostbuf, dtype=np.uint8).ravel()
        else:
            data = np.zeros(shape[0] * shape[1] * image_format.itemsize, dtype=np.uint8)
        super().__init__(flags, data)


class FakeBuffer(FakeMemory):
    pass


class FakeProgram:
    def __init__(self, driver, source):
        self.driver = driver
        self.source = source
        self.options = None
        self.built = False

    @property
    def kernel_names(self):
        return re.findall(r"__kernel\s+void\s+(\w+)", self.source)

    def build(self, options=None, devices=None):
        self.options = options
        self.devices = devices
        match = re.search(r"#error (.*)", self.source)
        if match:
            raise cl_error(
                cl.RuntimeError, -11, "clBuildProgram",
                f"\n\nBuild on <Fake GPU>:\n\n<kernel>:2:2: error: {match.group(1)}",
            )
        self.built = True
        return self

    def get_build_info(self, device, param):
        if param == cl.program_build_info.STATUS:
            return self.driver.build_status
        if param == cl.program_build_info.LOG:
            return self.driver.build_log
        raise cl_error(cl.LogicError, -30, "clGetProgramBuildInfo")


class FakeKernel:
    MAX_ARGS = 8

    def __init__(self, program, name):
        self.program = program
        self.name = name
        self.args = {}

    @property
    def num_args(self):
        return self.MAX_ARGS

    def set_arg(self, index, value):
        if index >= self.MAX_ARGS:
            raise cl_error(cl.LogicError, -49, "clSetKernelArg")
        self.args[index] = value


class FakeProfile:
    start = 1_000_000
    end = 3_000_000


class FakeEvent:
    profile = FakeProfile()

    def wait(self):
        pass


class FakeDriver:
    """
    Stands in for the pyopencl calls made by easycl. Kernels run the
    Python callables registered in `behaviours` under the kernel's name.
    """

    def __init__(self):
        self.platforms = [FakePlatform(devices=[FakeDevice()])]
        self.platform_error = None
        self.context_error = None
        self.image_error = None
        self.build_status = CL_BUILD_SUCCESS
        self.build_log = ""
        self.behaviours = {}
        self.contexts = []
        self.queues = []
        self.images = []
        self.buffers = []
        self.programs = []
        self.kernels = []
        self.transfers = []
        self.launches = []

    def get_platforms(self):
        if self.platform_error is not None:
            raise self.platform_error
        return list(self.platforms)

    def Context(self, devices=None):
        if self.context_error is not None:
            raise self.context_error
        context = FakeContext(devices)
        self.contexts.append(context)
        return context

    def CommandQueue(self, context, device=None, properties=None):
        queue = FakeQueue(context, device, properties)
        self.queues.append(queue)
        return queue

    def Image(self, context, flags, format, shape=None, pitches=None, hostbuf=None):
        if self.image_error is not None:
            raise self.image_error
        image = FakeImage(flags, format, shape, hostbuf)
        self.images.append(image)
        return image

    def Buffer(self, context, flags, size=0, hostbuf=None):
        if hostbuf is not None:
            data = np.ascontiguousarray(hostbuf).reshape(-1).view(np.uint8).copy()
        else:
            data = np.zeros(size, dtype=np.uint8)
        buffer = FakeBuffer(flags, data)
        self.buffers.append(buffer)
        return buffer

    def Program(self, context, source):
        program = FakeProgram(self, source)
        self.programs.append(program)
        return program

    def Kernel(self, program, name):
        if not program.built:
            raise cl_error(cl.LogicError, -45, "clCreateKernel")
        if name not in program.kernel_names:
            raise cl_error(cl.LogicError, -46, "clCreateKernel")
        kernel = FakeKernel(program, name)
        self.kernels.append(kernel)
        return kernel

    def enqueue_copy(self, queue, dest, src, origin=None, region=None, is_blocking=True, **kwargs):
        self.transfers.append((dest, src, origin, region, is_blocking))
        if isinstance(dest, FakeMemory):
            dest.check_alive()
            np.copyto(dest.data, np.ascontiguousarray(src).reshape(-1).view(np.uint8))
        else:
            src.check_alive()
            np.copyto(dest.reshape(-1).view(np.uint8), src.data)
        return FakeEvent()

    def enqueue_nd_range_kernel(self, queue, kernel, global_size, local_size, **kwargs):
        self.launches.append((kernel.name, global_size, local_size))
        behaviour = self.behaviours.get(kernel.name)
        if behaviour is not None:
            behaviour(kernel.args, global_size)
        return FakeEvent()

    def install(self, monkeypatch):
        for name in (
            "get_platforms",
            "Context",
            "CommandQueue",
            "Image",
            "Buffer",
            "Program",
            "Kernel",
            "enqueue_copy",
            "enqueue_nd_range_kernel",
        ):
            monkeypatch.setattr(cl, name, getattr(self, name))


@pytest.fixture
def fake_cl(monkeypatch):
    driver = FakeDriver()
    driver.install(monkeypatch)
    DeviceSession.shutdown()
    yield driver
    DeviceSession.shutdown()


@pytest.fixture
def session(fake_cl):
    return DeviceSession()


@pytest.fixture
def no_device_session(fake_cl):
    fake_cl.platforms = []
    return DeviceSession()


def fill_red(args, global_size):
    width, height = global_size
    args[1].data.reshape(height, width, 4)[:] = (255, 0, 0, 255)


def copy_image(args, global_size):
    np.copyto(args[1].data, args[0].data)
