#!/usr/bin/env python3
"""
Image filters on the GPU through OpenCLBridge
รองรับ Copy, Grayscale, Box Blur, Gaussian Blur และ Motion Blur
"""

import argparse
import logging
import os
import sys

import numpy as np
from PIL import Image

from .compiler import compile_program, create_kernel
from .bridge import OpenCLBridge
from .config import APP_CONFIG
from .errors import GPUError
from .formats import MemFlags
from .image import KernelImage
from .session import DeviceSession

logger = logging.getLogger(__name__)

# OpenCL Kernel Code
KERNEL_SOURCE = """
__constant sampler_t sampler = CLK_NORMALIZED_COORDS_FALSE |
                               CLK_ADDRESS_CLAMP_TO_EDGE |
                               CLK_FILTER_NEAREST;

// Identity (input -> output unchanged)
__kernel void copy(__read_only image2d_t input,
                   __write_only image2d_t output) {
    int2 pos = (int2)(get_global_id(0), get_global_id(1));
    if (pos.x >= get_image_width(input) || pos.y >= get_image_height(input)) return;

    write_imageui(output, pos, read_imageui(input, sampler, pos));
}

// Grayscale Kernel
__kernel void grayscale(__read_only image2d_t input,
                        __write_only image2d_t output) {
    int2 pos = (int2)(get_global_id(0), get_global_id(1));
    if (pos.x >= get_image_width(input) || pos.y >= get_image_height(input)) return;

    uint4 pixel = read_imageui(input, sampler, pos);

    // Luminosity method: 0.299*R + 0.587*G + 0.114*B
    uint gray = (uint)(0.299f * pixel.x + 0.587f * pixel.y + 0.114f * pixel.z);

    write_imageui(output, pos, (uint4)(gray, gray, gray, pixel.w));
}

// Box Blur Kernel (faster, simpler)
__kernel void box_blur(__read_only image2d_t input,
                       __write_only image2d_t output,
                       const int filterSize) {
    int2 pos = (int2)(get_global_id(0), get_global_id(1));
    if (pos.x >= get_image_width(input) || pos.y >= get_image_height(input)) return;

    int filterRadius = filterSize / 2;
    float4 sum = (float4)(0.0f, 0.0f, 0.0f, 0.0f);
    int count = 0;

    // the sampler clamps coordinates to the image boundaries
    for (int fy = -filterRadius; fy <= filterRadius; fy++) {
        for (int fx = -filterRadius; fx <= filterRadius; fx++) {
            sum += convert_float4(read_imageui(input, sampler, pos + (int2)(fx, fy)));
            count++;
        }
    }

    write_imageui(output, pos, convert_uint4(sum / (float)count));
}

// Gaussian Blur Kernel
__kernel void gaussian_blur(__read_only image2d_t input,
                            __write_only image2d_t output,
                            __global const float* filter,
                            const int filterSize) {
    int2 pos = (int2)(get_global_id(0), get_global_id(1));
    if (pos.x >= get_image_width(input) || pos.y >= get_image_height(input)) return;

    int filterRadius = filterSize / 2;
    float4 sum = (float4)(0.0f, 0.0f, 0.0f, 0.0f);
    float weightSum = 0.0f;

    for (int fy = -filterRadius; fy <= filterRadius; fy++) {
        for (int fx = -filterRadius; fx <= filterRadius; fx++) {
            float weight = filter[(fy + filterRadius) * filterSize + (fx + filterRadius)];
            sum += convert_float4(read_imageui(input, sampler, pos + (int2)(fx, fy))) * weight;
            weightSum += weight;
        }
    }

    write_imageui(output, pos, convert_uint4(sum / weightSum));
}

// Motion Blur Kernel
__kernel void motion_blur(__read_only image2d_t input,
                          __write_only image2d_t output,
                          const int blurLength,
                          const float angle) {
    int2 pos = (int2)(get_global_id(0), get_global_id(1));
    if (pos.x >= get_image_width(input) || pos.y >= get_image_height(input)) return;

    float dx = cos(angle);
    float dy = sin(angle);

    float4 sum = (float4)(0.0f, 0.0f, 0.0f, 0.0f);
    int count = 0;

    for (int i = -blurLength / 2; i <= blurLength / 2; i++) {
        int2 sample = (int2)((int)(pos.x + dx * i), (int)(pos.y + dy * i));
        sum += convert_float4(read_imageui(input, sampler, sample));
        count++;
    }

    write_imageui(output, pos, convert_uint4(sum / (float)count));
}
"""

KERNEL_NAMES = ("copy", "grayscale", "box_blur", "gaussian_blur", "motion_blur")

INPUT_FLAGS = MemFlags.READ_ONLY | MemFlags.COPY_HOST_PTR
OUTPUT_FLAGS = MemFlags.WRITE_ONLY | MemFlags.COPY_HOST_PTR


def create_gaussian_filter(size, sigma):
    """สร้าง Gaussian filter kernel"""
    radius = size // 2
    x = np.arange(size, dtype=np.float32) - radius

    # สร้าง 1D Gaussian
    filter_1d = np.exp(-(x * x) / (2.0 * sigma * sigma))

    # Normalize
    filter_1d /= filter_1d.sum()

    # สร้าง 2D filter จาก outer product
    return np.outer(filter_1d, filter_1d).astype(np.float32)


def create_test_image(width=640, height=480):
    """สร้างภาพทดสอบ (Gradient + Circles)"""
    y, x = np.mgrid[0:height, 0:width]
    img_array = np.zeros((height, width, 4), dtype=np.uint8)

    # สร้าง gradient background
    img_array[..., 0] = (255 * x / width).astype(np.uint8)
    img_array[..., 1] = (255 * y / height).astype(np.uint8)
    img_array[..., 2] = (128 + 127 * np.sin(x / 50)).astype(np.uint8)
    img_array[..., 3] = 255

    # วงกลมสีต่างๆ
    radius = min(width, height) // 6
    centers = [(width // 4, height // 4), (3 * width // 4, height // 4),
               (width // 4, 3 * height // 4), (3 * width // 4, 3 * height // 4),
               (width // 2, height // 2)]
    colors = [(255, 0, 0, 255), (0, 255, 0, 255), (0, 0, 255, 255),
              (255, 255, 0, 255), (255, 255, 255, 255)]

    for (cx, cy), color in zip(centers, colors):
        img_array[(x - cx) ** 2 + (y - cy) ** 2 < radius ** 2] = color

    return Image.fromarray(img_array)


def load_image(image_path):
    """โหลดภาพและแปลงเป็น RGBA format"""
    img = Image.open(image_path)
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return img


def load_filters(session=None):
    """Build the filter program once and return one bridge per kernel."""
    session = session or DeviceSession.get()
    program = compile_program(KERNEL_SOURCE, session=session)
    logger.info(f"filter kernels: {', '.join(KERNEL_NAMES)}")
    return {
        name: OpenCLBridge(create_kernel(program, name), KERNEL_SOURCE, name, session=session)
        for name in KERNEL_NAMES
    }


def apply_filter(bridge, img, *args):
    """
    Run `bridge` with `img` as argument 0, an output image as argument 1 and
    `args` as arguments 2, 3, ... Returns (output image, time in ms).
    """
    session = bridge.session
    with KernelImage.from_image(0, img, flags=INPUT_FLAGS, session=session) as source, \
            KernelImage.from_image(1, img, flags=OUTPUT_FLAGS, session=session) as target:
        bridge.set_image_arg(source)
        bridge.set_image_arg(target)
        for index, value in enumerate(args, start=2):
            if isinstance(value, np.ndarray):
                bridge.set_array_arg(index, value, INPUT_FLAGS)
            else:
                bridge.set_arg(index, value)
        exec_time = bridge.execute(source.work_group_size)
        bridge.read_image(target)
        return target.to_image(), exec_time


def apply_gaussian_blur(filters, img, filter_size=5, sigma=1.0):
    """ใช้ Gaussian Blur"""
    gaussian_filter = create_gaussian_filter(filter_size, sigma)
    return apply_filter(filters["gaussian_blur"], img, gaussian_filter, np.int32(filter_size))


def apply_box_blur(filters, img, filter_size=5):
    """ใช้ Box Blur (เร็วกว่า Gaussian)"""
    return apply_filter(filters["box_blur"], img, np.int32(filter_size))


def apply_motion_blur(filters, img, blur_length=15, angle=0.0):
    """ใช้ Motion Blur"""
    return apply_filter(filters["motion_blur"], img, np.int32(blur_length), np.float32(angle))


def apply_grayscale(filters, img):
    """แปลงเป็น Grayscale"""
    return apply_filter(filters["grayscale"], img)


def init_logging(level=None):
    """
    Send log records to standard output. The library itself installs no
    handlers; command-line use calls this.
    """

    class RunFormatter(logging.Formatter):
        def format(self, record):
            name = record.name.replace("easycl.", "")
            if record.levelno <= logging.INFO:
                return f"[{name}] {record.getMessage()}"
            return f"[{name}:{record.levelname.lower()}] {record.getMessage()}"

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(RunFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level or APP_CONFIG.log_level)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Apply OpenCL image filters to an image")
    parser.add_argument("image", nargs="?", help="input image (a test image is generated if omitted)")
    parser.add_argument("-o", "--output-dir", default=".", help="directory for output_*.png")
    parser.add_argument("-v", "--verbose", action="store_true", help="log at INFO level")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    init_logging("INFO" if args.verbose else None)

    print("=" * 70)
    print("  OpenCL Image Filters")
    print("=" * 70)

    print("\n--- Initializing OpenCL ---")
    session = DeviceSession.get()
    if not session.available:
        print("No image-capable GPU device found.")
        return 1
    info = session.describe()
    print(f"Using device: {info['name']} ({info['platform']})")

    print("\n--- Compiling Kernels ---")
    try:
        filters = load_filters(session)
    except GPUError as exc:
        print(f"Compilation failed: {exc.stage.value}\n{exc.detail}")
        return 1
    print("Kernels compiled successfully!")

    print("\n--- Loading Image ---")
    if args.image:
        img = load_image(args.image)
        print(f"Loaded image: {args.image}")
    else:
        img = create_test_image()
        print("No input image given, using a generated test image")
    width, height = img.size
    print(f"Image size: {width}x{height}")

    results = [
        ("grayscale",) + apply_grayscale(filters, img),
        ("box_blur",) + apply_box_blur(filters, img, filter_size=5),
        ("gaussian_blur",) + apply_gaussian_blur(filters, img, filter_size=5, sigma=1.0),
        ("gaussian_blur_strong",) + apply_gaussian_blur(filters, img, filter_size=9, sigma=2.0),
        ("motion_blur_horizontal",) + apply_motion_blur(filters, img, blur_length=15, angle=0.0),
        ("motion_blur_diagonal",) + apply_motion_blur(filters, img, blur_length=20, angle=np.pi / 4),
    ]

    print("\n--- Saving Results ---")
    os.makedirs(args.output_dir, exist_ok=True)
    for name, output, exec_time in results:
        filename = os.path.join(args.output_dir, f"output_{name}.png")
        output.save(filename)
        print(f"Saved: {filename} ({exec_time:.3f} ms)")

    print("\n" + "=" * 70)
    print(f"{'Filter':25} {'Time (ms)':>10}    {'Throughput (Mpixels/s)':>22}")
    print("-" * 70)
    for name, _, exec_time in results:
        throughput = (width * height) / (exec_time * 1000) if exec_time > 0 else float("inf")
        print(f"{name:25} {exec_time:10.3f}    {throughput:22.2f}")
    print("=" * 70)

    for bridge in filters.values():
        bridge.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())
