import logging
import numpy as np

logger = logging.getLogger(__name__)


# Dark violet, blues, lightest blue, yellows, then down to brown.
GRADIENT = (
    0x19071a,
    0x09012f,
    0x040449,
    0x000764,
    0x397dd1,
    0x86b5e5,
    0xd3ecf8,
    0xf1e9bf,
    0xf8c95f,
    0xffaa00,
    0xcc8000,
    0x6a3403,
)

BACKGROUND = 0x000000

SCREEN_WIDTH = 100
SCREEN_HEIGHT = 100

THETA_SPACING = 0.007
PHI_SPACING = 0.002

# Tube radius
R1 = 1.0
# Distance from the axis of revolution to the centre of the tube
R2 = 2.0
# Distance of the donut from the viewer
K2 = 5.0

# l ranges over [-sqrt(2), sqrt(2)], 8 * sqrt(2) = 11.3
LUMINANCE_SCALE = 8


def projection_scale(screen_width, d_object=K2, minor_radius=R1, major_radius=R2):
    """
    Compute the projection constant K1.

    The widest point of the torus sits at x = R1 + R2, z = 0. That point is
    placed 3/8 of the screen width from the centre:

        screen_width * 3/8 = K1 * (R1 + R2) / K2

    Args:
        screen_width (int):
            Width of the raster in pixels.
        d_object (float):
            Distance from the viewer to the torus centre.
        minor_radius (float):
            Tube radius.
        major_radius (float):
            Distance from the axis of revolution to the tube centre.

    Returns:
        float:
            Projection scale K1.
    """
    return screen_width * d_object * 3 / (8 * (minor_radius + major_radius))


class FrameRenderer:
    # Rows of theta evaluated per numpy batch.
    chunk_rows = 32

    def __init__(
        self,
        screen_width=SCREEN_WIDTH,
        screen_height=SCREEN_HEIGHT,
        minor_radius=R1,
        major_radius=R2,
        d_object=K2,
        theta_spacing=THETA_SPACING,
        phi_spacing=PHI_SPACING,
        gradient=GRADIENT):
        """
        Initialise the torus frame renderer.

        Args:
            screen_width (int):
                Raster width in pixels.
            screen_height (int):
                Raster height in pixels.
            minor_radius (float):
                Tube radius (R1).
            major_radius (float):
                Distance from the axis of revolution to the tube centre (R2).
            d_object (float):
                Distance from the viewer to the torus centre (K2).
            theta_spacing (float):
                Step around the tube cross-section.
            phi_spacing (float):
                Step around the axis of revolution.
            gradient (sequence[int]):
                Packed 0xRRGGBB colours ordered by increasing luminance.

        Raises:
            ValueError:
                If the configuration cannot produce a frame.
        """
        if int(screen_width) <= 0 or int(screen_height) <= 0:
            raise ValueError(f"Screen size must be positive: {screen_width}x{screen_height}")
        if minor_radius <= 0 or major_radius <= 0:
            raise ValueError(f"Torus radii must be positive: R1={minor_radius}, R2={major_radius}")
        if d_object <= 0:
            raise ValueError(f"Viewer distance must be positive: K2={d_object}")
        if theta_spacing <= 0 or phi_spacing <= 0:
            raise ValueError(f"Sampling steps must be positive: theta={theta_spacing}, phi={phi_spacing}")
        if len(gradient) == 0:
            raise ValueError("Gradient needs at least one colour")

        self.screen_width = int(screen_width)
        self.screen_height = int(screen_height)
        self.minor_radius = minor_radius
        self.major_radius = major_radius
        self.d_object = d_object
        self.theta_spacing = theta_spacing
        self.phi_spacing = phi_spacing

        self.gradient = np.array(gradient, dtype=np.uint32)
        self.gradient.setflags(write=False)

        self.k1 = projection_scale(self.screen_width, d_object, minor_radius, major_radius)

        # Largest 1/z written so far for each pixel, 0 means nothing drawn.
        self.z_buffer = np.zeros((self.screen_height, self.screen_width))

        logger.debug(
            "renderer %dx%d, R1=%s R2=%s K2=%s K1=%.3f, %d samples per frame",
            self.screen_width, self.screen_height,
            minor_radius, major_radius, d_object, self.k1,
            len(self.thetas()) * len(self.phis()))


    def thetas(self):
        """Angles around the cross-sectional circle of the torus."""
        return np.arange(0.0, 2*np.pi, self.theta_spacing)


    def phis(self):
        """Angles around the axis of revolution."""
        return np.arange(0.0, 2*np.pi, self.phi_spacing)


    def new_buffer(self, fill=BACKGROUND):
        """
        Allocate an output buffer matching this renderer's raster.

        Args:
            fill (int):
                Packed colour every pixel starts with.

        Returns:
            np.ndarray of shape (H, W):
                uint32 pixel buffer.
        """
        return np.full((self.screen_height, self.screen_width), fill_value=fill, dtype=np.uint32)


    def outer_radius(self):
        """
        Projected radius, in pixels, of the widest point of the torus at depth K2.
        """
        return self.k1 * (self.minor_radius + self.major_radius) / self.d_object


    def bounding_radius(self):
        """
        Projected radius, in pixels, of the sphere that encloses the torus.

        Points of the torus closer to the viewer than K2 project further from
        the centre than ``outer_radius``; no sample lands outside this radius.

        Returns:
            float:
                Radius in pixels, ``inf`` if the viewer is inside the sphere.
        """
        r = self.minor_radius + self.major_radius
        if self.d_object <= r:
            return np.inf
        return self.k1 * r / np.sqrt(self.d_object**2 - r**2)


    def sample_torus(self, a, b, thetas, phis):
        """
        Rotate torus samples into camera space and compute their luminance.

        Args:
            a (float):
                Rotation angle tilting the torus about the x-axis.
            b (float):
                Rotation angle spinning the torus about the z-axis.
            thetas (np.ndarray of shape (T,)):
                Angles around the tube cross-section.
            phis (np.ndarray of shape (P,)):
                Angles around the axis of revolution.

        Returns:
            tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
                x, y, z and luminance, each of shape (T, P), theta-major.
        """
        cos_a, sin_a = np.cos(a), np.sin(a)
        cos_b, sin_b = np.cos(b), np.sin(b)

        costheta = np.cos(thetas)[:, np.newaxis]
        sintheta = np.sin(thetas)[:, np.newaxis]
        cosphi = np.cos(phis)[np.newaxis, :]
        sinphi = np.sin(phis)[np.newaxis, :]

        # The circle of the tube, before revolving it around the y-axis.
        circlex = self.major_radius + self.minor_radius*costheta
        circley = self.minor_radius*sintheta

        x = circlex*(cos_b*cosphi + sin_a*sin_b*sinphi) - circley*cos_a*sin_b
        y = circlex*(sin_b*cosphi - sin_a*cos_b*sinphi) + circley*cos_a*cos_b
        z = self.d_object + cos_a*circlex*sinphi + circley*sin_a

        # Surface normal dotted with the light direction (0, 1, -1).
        luminance = (cosphi*costheta*sin_b - cos_a*costheta*sinphi - sin_a*sintheta
                     + cos_b*(cos_a*sintheta - costheta*sin_a*sinphi))

        return x, y, z, luminance


    def project(self, x, y, z):
        """
        Perspective projection of camera-space points onto the raster.

        Args:
            x, y, z (np.ndarray):
                Camera-space coordinates.

        Returns:
            tuple[np.ndarray, np.ndarray, np.ndarray]:
                Pixel columns, pixel rows and inverse depth 1/z. Points at or
                behind the camera plane get an inverse depth of 0.
        """
        z = np.asarray(z, dtype=float)
        ooz = np.divide(1.0, z, out=np.zeros_like(z), where=z > 0)

        # y is negated, it goes up in 3D space but down on the raster.
        xp = self.screen_width/2 + self.k1*ooz*x
        yp = self.screen_height/2 - self.k1*ooz*y

        cols = np.floor(xp).astype(np.int64)
        rows = np.floor(yp).astype(np.int64)
        return cols, rows, ooz


    def luminance_index(self, luminance):
        """
        Quantize luminance into a gradient index.

        Args:
            luminance (np.ndarray | float):
                Luminance values, positive for lit samples.

        Returns:
            np.ndarray:
                ``floor(l * 8)`` clipped to the gradient's index range.
        """
        idx = np.floor(np.asarray(luminance) * LUMINANCE_SCALE).astype(np.int64)
        return np.clip(idx, 0, len(self.gradient) - 1)


    def iter_samples(self, a, b):
        """
        Yield projected samples in batches of theta rows.

        Batches follow the theta-major, phi-minor visiting order, flattened.

        Yields:
            tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
                Columns, rows, inverse depth and luminance.
        """
        thetas = self.thetas()
        phis = self.phis()
        for start in range(0, len(thetas), self.chunk_rows):
            x, y, z, luminance = self.sample_torus(a, b, thetas[start:start + self.chunk_rows], phis)
            cols, rows, ooz = self.project(x, y, z)
            yield cols.ravel(), rows.ravel(), ooz.ravel(), luminance.ravel()


    def render_frame(self, a, b, output):
        """
        Draw the torus rotated by angles ``a`` and ``b`` into ``output``.

        Only pixels covered by a lit sample are written; clearing the rest
        between frames is up to the owner of the buffer.

        Args:
            a (float):
                Rotation about the x-axis, radians.
            b (float):
                Rotation about the z-axis, radians.
            output (np.ndarray):
                Row-major pixel buffer with ``width * height`` elements, flat
                or shaped (H, W).

        Returns:
            int:
                Number of pixel writes made this frame.

        Raises:
            ValueError:
                If ``output`` does not match the raster size.
        """
        pixels = self._flat_view(output)
        depth = self.z_buffer.reshape(-1)
        depth[:] = 0.0

        written = 0
        for cols, rows, ooz, luminance in self.iter_samples(a, b):
            # Back-facing, behind the camera or off the raster.
            visible = ((luminance > 0) & (ooz > 0)
                       & (cols >= 0) & (cols < self.screen_width)
                       & (rows >= 0) & (rows < self.screen_height))
            order = np.flatnonzero(visible)
            if order.size == 0:
                continue

            pixel = rows[order]*self.screen_width + cols[order]
            ooz = ooz[order]
            luminance = luminance[order]

            # Nearest sample per pixel, earliest visited on ties.
            nearest = np.lexsort((order, -ooz, pixel))
            pixel = pixel[nearest]
            first = np.ones(pixel.size, dtype=bool)
            first[1:] = pixel[1:] != pixel[:-1]
            nearest = nearest[first]
            pixel = pixel[first]

            # Test against the z-buffer, larger 1/z is closer to the viewer.
            closer = ooz[nearest] > depth[pixel]
            pixel = pixel[closer]
            nearest = nearest[closer]

            depth[pixel] = ooz[nearest]
            pixels[pixel] = self.gradient[self.luminance_index(luminance[nearest])]
            written += pixel.size

        logger.debug("frame a=%.4f b=%.4f, %d pixel writes", a, b, written)
        return written


    def _flat_view(self, output):
        size = self.screen_width * self.screen_height
        if not isinstance(output, np.ndarray):
            raise ValueError(f"Output buffer must be a numpy array, got {type(output).__name__}")
        if output.size != size:
            raise ValueError(f"Output buffer has {output.size} pixels, expected {size}")
        flat = output.reshape(-1)
        if not np.shares_memory(flat, output):
            raise ValueError("Output buffer must be contiguous and row-major")
        return flat
