import argparse
import logging
import shutil
import sys
import time
from pathlib import Path

import numpy as np
from PIL import Image

from donut_renderer import BACKGROUND, SCREEN_HEIGHT, SCREEN_WIDTH, FrameRenderer

logger = logging.getLogger(__name__)


A_STEP = 0.007
B_STEP = 0.003

# Roughly 60 frames per second.
FRAME_DELAY = 0.0166

UPPER_HALF_BLOCK = "▀"


def unpack_rgb(buffer):
    """
    Split packed 0xRRGGBB pixels into channels.

    Args:
        buffer (np.ndarray of shape (H, W)):
            Packed pixel buffer.

    Returns:
        np.ndarray of shape (H, W, 3):
            uint8 red, green and blue channels.
    """
    packed = np.asarray(buffer, dtype=np.uint32)
    rgb = np.stack([(packed >> 16) & 0xff, (packed >> 8) & 0xff, packed & 0xff], axis=-1)
    return rgb.astype(np.uint8)


def animate(renderer, frames=None, a=0.0, b=0.0, a_step=A_STEP, b_step=B_STEP):
    """
    Render successive frames of the spinning torus.

    Each frame starts from a buffer cleared to the background colour, so the
    content of frame ``i`` depends only on ``i`` and the starting angles.

    Args:
        renderer (FrameRenderer):
            Renderer drawing each frame.
        frames (int | None):
            Number of frames to produce, None to run forever.
        a, b (float):
            Starting rotation angles.
        a_step, b_step (float):
            Angle increments applied after each frame.

    Yields:
        tuple[int, float, float, np.ndarray]:
            Frame index, the angles it was drawn with, and the pixel buffer.
    """
    index = 0
    while frames is None or index < frames:
        buffer = renderer.new_buffer(BACKGROUND)
        renderer.render_frame(a, b, buffer)
        yield index, a, b, buffer

        a += a_step
        b += b_step
        index += 1


class TerminalDisplay:
    def __init__(self, stream=None):
        """
        Draw pixel buffers on a 24-bit colour terminal.

        Two pixel rows share one character cell: the upper half block takes
        the top pixel as foreground and the bottom pixel as background, which
        also keeps pixels roughly square on a terminal.

        Args:
            stream (file | None):
                Where to write, defaults to stdout.
        """
        self.stream = stream if stream is not None else sys.stdout
        self.frames_shown = 0


    def __enter__(self):
        print("\033[2J", end="", file=self.stream, flush=True)     # Clear terminal
        print("\033[?25l", end="", file=self.stream, flush=True)   # hide cursor
        return self


    def __exit__(self, exc_type, exc_val, exc_tb):
        print("\033[0m\033[?25h", end="", file=self.stream, flush=True)  # show cursor
        logger.info("terminal display closed after %d frames", self.frames_shown)


    def check_size(self, width, height):
        """Warn when the terminal is too small to hold the whole frame."""
        columns, lines = shutil.get_terminal_size()
        needed = (height + 1) // 2
        if columns < width or lines < needed:
            logger.warning(
                "terminal is %dx%d, frame needs %dx%d characters",
                columns, lines, width, needed)


    def encode(self, buffer):
        """
        Encode a pixel buffer as ANSI escape sequences.

        Args:
            buffer (np.ndarray of shape (H, W)):
                Packed pixel buffer.

        Returns:
            str:
                One line per pair of pixel rows, starting at the cursor home.
        """
        rgb = unpack_rgb(buffer)
        if rgb.shape[0] % 2:
            pad = np.zeros((1,) + rgb.shape[1:], dtype=np.uint8)
            pad[:] = unpack_rgb(np.array([BACKGROUND]))[0]
            rgb = np.concatenate([rgb, pad])

        lines = []
        for top, bottom in zip(rgb[0::2], rgb[1::2]):
            cells = [
                f"\033[38;2;{t[0]};{t[1]};{t[2]}m\033[48;2;{u[0]};{u[1]};{u[2]}m{UPPER_HALF_BLOCK}"
                for t, u in zip(top.tolist(), bottom.tolist())
            ]
            lines.append("".join(cells) + "\033[0m")
        return "\033[H" + "\n".join(lines)


    def show(self, buffer):
        if self.frames_shown == 0:
            self.check_size(buffer.shape[1], buffer.shape[0])
        print(self.encode(buffer), end="", file=self.stream, flush=True)
        self.frames_shown += 1



class ImageSequenceWriter:
    def __init__(self, output_dir, scale=4, prefix="frame"):
        """
        Save pixel buffers as numbered PNG files.

        Args:
            output_dir (str | Path):
                Directory the frames are written to, created if missing.
            scale (int):
                Integer upscaling factor, nearest neighbour.
            prefix (str):
                File name prefix.

        Raises:
            ValueError:
                If ``scale`` is not a positive integer.
        """
        if int(scale) != scale or scale < 1:
            raise ValueError(f"Scale must be a positive integer: {scale}")
        self.output_dir = Path(output_dir)
        self.scale = int(scale)
        self.prefix = prefix
        self.paths = []


    def __enter__(self):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("writing frames to %s", self.output_dir)
        return self


    def __exit__(self, exc_type, exc_val, exc_tb):
        logger.info("wrote %d frames to %s", len(self.paths), self.output_dir)


    def show(self, buffer):
        """
        Write one buffer as the next frame.

        Returns:
            Path:
                Path of the written PNG.
        """
        image = Image.fromarray(unpack_rgb(buffer))
        if self.scale != 1:
            image = image.resize(
                (image.width * self.scale, image.height * self.scale),
                Image.Resampling.NEAREST)

        path = self.output_dir / f"{self.prefix}_{len(self.paths):05d}.png"
        image.save(path)
        self.paths.append(path)
        return path



def run(renderer, sink, frames=None, frame_delay=FRAME_DELAY):
    """
    Animate the torus into a sink until done or interrupted.

    Args:
        renderer (FrameRenderer):
            Renderer drawing each frame.
        sink (TerminalDisplay | ImageSequenceWriter):
            Context manager with a ``show(buffer)`` method.
        frames (int | None):
            Number of frames, None to run until interrupted.
        frame_delay (float):
            Minimum seconds per frame, rendering time included.

    Returns:
        int:
            Number of frames shown.
    """
    shown = 0
    try:
        with sink:
            started = time.monotonic()
            for _, _, _, buffer in animate(renderer, frames):
                sink.show(buffer)
                shown += 1

                # Only wait out what is left of the frame budget.
                elapsed = time.monotonic() - started
                if frame_delay > elapsed:
                    time.sleep(frame_delay - elapsed)
                started = time.monotonic()
    except KeyboardInterrupt:
        logger.info("interrupted after %d frames", shown)
    return shown


def build_parser():
    parser = argparse.ArgumentParser(description="Render a spinning shaded torus.")
    parser.add_argument("--width", type=int, default=SCREEN_WIDTH, help="raster width in pixels")
    parser.add_argument("--height", type=int, default=SCREEN_HEIGHT, help="raster height in pixels")
    parser.add_argument("--frames", type=int, default=None,
                        help="number of frames, unlimited on the terminal by default")
    parser.add_argument("--output-dir", default=None,
                        help="write PNG frames here instead of drawing on the terminal")
    parser.add_argument("--scale", type=int, default=4, help="PNG upscaling factor")
    parser.add_argument("--delay", type=float, default=None,
                        help=f"seconds between frames (terminal default {FRAME_DELAY})")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every frame")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.frames is not None and args.frames < 1:
        parser.error("--frames must be at least 1")

    try:
        renderer = FrameRenderer(screen_width=args.width, screen_height=args.height)
        if args.output_dir is not None:
            if args.frames is None:
                parser.error("--frames is required with --output-dir")
            sink = ImageSequenceWriter(args.output_dir, scale=args.scale)
            delay = args.delay if args.delay is not None else 0.0
        else:
            sink = TerminalDisplay()
            delay = args.delay if args.delay is not None else FRAME_DELAY
    except ValueError as err:
        logger.error("%s", err)
        return 2

    run(renderer, sink, args.frames, delay)
    return 0


if __name__ == "__main__":
    sys.exit(main())
