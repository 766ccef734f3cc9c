"""
Image export and format handling for fractal rendering.

Frame buffers are encoded with Pillow as PNG, TIFF, JPEG or WebP. PNG keeps
the render metadata in text chunks; the other formats get a companion JSON
file next to the image.
"""

import json
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from PIL import Image, PngImagePlugin

from .frame_buffer import FrameBuffer

logger = logging.getLogger(__name__)

SOFTWARE_VERSION = "1.0.0"


@dataclass
class RenderMetadata:
    """Metadata for fractal renders."""

    # Fractal parameters
    fractal_type: str
    center: Tuple[str, str]  # decimal strings, keep every digit of deep zooms
    scale: float
    magnification: float
    resolution: Tuple[int, int]  # width, height
    max_iterations: int
    escape_radius: float

    # Rendering parameters
    coloring_algorithm: str
    color_palette: str
    precision: str
    brightness_exponent: float = 1.0
    seed: Optional[int] = None

    render_time_seconds: float = 0.0
    timestamp: str = ""
    software_version: str = SOFTWARE_VERSION

    fractal_parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Set default timestamp if not provided."""
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()
        self.center = tuple(self.center)
        self.resolution = tuple(self.resolution)

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RenderMetadata':
        """Create metadata from dictionary."""
        return cls(**data)

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'RenderMetadata':
        """Create metadata from JSON string."""
        return cls.from_dict(json.loads(json_str))


class ImageExporter:
    """Image export with metadata support."""

    def __init__(self):
        """Initialize image exporter."""
        self.supported_formats = {
            '.png': self._save_png,
            '.tiff': self._save_tiff,
            '.tif': self._save_tiff,
            '.jpg': self._save_jpeg,
            '.jpeg': self._save_jpeg,
            '.webp': self._save_webp,
        }

    def save_image(self, frame: FrameBuffer, filepath: Path,
                   metadata: Optional[RenderMetadata] = None,
                   quality: int = 95, compression: Optional[str] = None) -> Path:
        """
        Save a frame buffer to file with metadata.

        Args:
            frame: Complete frame buffer
            filepath: Output file path; the suffix picks the format
            metadata: Render metadata to embed
            quality: JPEG/WebP quality (1-100)
            compression: Compression method for PNG ('none', 'fast', 'max')
                or TIFF ('none', 'lzw', 'deflate')

        Returns:
            The path written
        """
        filepath = Path(filepath)
        suffix = filepath.suffix.lower()

        if suffix not in self.supported_formats:
            supported = ', '.join(self.supported_formats.keys())
            raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")
        if not frame.is_complete:
            raise ValueError("Refusing to export an incomplete frame buffer")

        pil_image = Image.fromarray(frame.pixels.copy())
        self.supported_formats[suffix](pil_image, filepath, metadata, quality, compression)

        logger.info(f"Saved image: {filepath} ({pil_image.size[0]}x{pil_image.size[1]})")
        return filepath

    def _save_png(self, pil_image: Image.Image, filepath: Path,
                  metadata: Optional[RenderMetadata], quality: int, compression: Optional[str]) -> None:
        """Save as PNG with metadata."""
        pnginfo = PngImagePlugin.PngInfo()

        if metadata:
            pnginfo.add_text("Title", f"Fractal: {metadata.fractal_type}")
            pnginfo.add_text("Software", f"fractal-renderer v{metadata.software_version}")
            pnginfo.add_text("Creation Time", metadata.timestamp)
            pnginfo.add_text("FractalMetadata", metadata.to_json())

        # 0 (no compression) to 9 (max compression)
        levels = {'none': 0, 'fast': 1, 'max': 9}
        compress_level = levels.get((compression or '').lower(), 6)

        pil_image.save(filepath, "PNG", pnginfo=pnginfo, compress_level=compress_level)

    def _save_tiff(self, pil_image: Image.Image, filepath: Path,
                   metadata: Optional[RenderMetadata], quality: int, compression: Optional[str]) -> None:
        """Save as TIFF; the description tag carries the metadata JSON."""
        compression_map = {
            'none': None,
            'lzw': 'tiff_lzw',
            'deflate': 'tiff_adobe_deflate',
        }
        key = (compression or 'lzw').lower()
        if key not in compression_map:
            raise ValueError(f"Unknown TIFF compression '{compression}'")

        save_kwargs = {'format': 'TIFF'}
        if compression_map[key]:
            save_kwargs['compression'] = compression_map[key]
        if metadata:
            save_kwargs['description'] = metadata.to_json()
            save_kwargs['software'] = f"fractal-renderer v{metadata.software_version}"

        pil_image.save(filepath, **save_kwargs)

    def _save_jpeg(self, pil_image: Image.Image, filepath: Path,
                   metadata: Optional[RenderMetadata], quality: int, compression: Optional[str]) -> None:
        """Save as JPEG with a companion metadata file."""
        if pil_image.mode == 'RGBA':
            logger.warning("JPEG has no alpha channel, dropping it")
            pil_image = pil_image.convert('RGB')
        pil_image.save(filepath, "JPEG", quality=quality, optimize=True)
        self._write_companion(filepath, metadata)

    def _save_webp(self, pil_image: Image.Image, filepath: Path,
                   metadata: Optional[RenderMetadata], quality: int, compression: Optional[str]) -> None:
        pil_image.save(filepath, "WEBP", quality=quality)
        self._write_companion(filepath, metadata)

    def _write_companion(self, filepath: Path, metadata: Optional[RenderMetadata]) -> None:
        if metadata is None:
            return
        json_path = filepath.with_suffix('.json')
        with open(json_path, 'w') as f:
            f.write(metadata.to_json())
        logger.info(f"Saved metadata: {json_path}")

    def extract_metadata_from_image(self, filepath: Path) -> Optional[RenderMetadata]:
        """
        Extract fractal metadata from saved image.

        Args:
            filepath: Path to image file

        Returns:
            Extracted metadata or None
        """
        filepath = Path(filepath)

        with Image.open(filepath) as img:
            text = getattr(img, 'text', None) or {}
            if 'FractalMetadata' in text:
                return RenderMetadata.from_json(text['FractalMetadata'])

            # ImageDescription
            if hasattr(img, 'tag_v2') and 270 in img.tag_v2:
                try:
                    return RenderMetadata.from_json(img.tag_v2[270])
                except (ValueError, TypeError) as e:
                    logger.warning(f"Could not parse TIFF description of {filepath}: {e}")

        json_path = filepath.with_suffix('.json')
        if json_path.exists():
            with open(json_path, 'r') as f:
                return RenderMetadata.from_json(f.read())

        return None
