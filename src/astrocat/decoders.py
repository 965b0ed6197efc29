# astrocat/decoders.py
"""
Format decoders. Each decoder opens one file and exposes its header tags
and a stretched, displayable image. The image hash is known once
``extract_thumbnail`` has run.
"""
import io
import logging
import warnings
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Type

import numpy as np
from astropy.io import fits
from astropy.io.fits.card import Undefined
from astropy.utils.exceptions import AstropyWarning
from PIL import ExifTags, Image, ImageOps, UnidentifiedImageError
from xisf import XISF

from .errors import DecodeFailed, FileUnreadable, FormatUnsupported, HeaderMissingRequired
from .hashing import image_hash
from .models import FileType, file_type_for, strip_tag_text
from .stretch import auto_stretch

logger = logging.getLogger(__name__)

# --- Filter specific warnings ---
# Pillow raises a DecompressionBombWarning for large mosaics; we trust the files we catalog.
warnings.filterwarnings("ignore", category=Image.DecompressionBombWarning)
# Non-standard FITS cards from capture software are common and harmless.
warnings.filterwarnings("ignore", category=AstropyWarning)
warnings.filterwarnings("ignore", category=UserWarning, module="PIL.TiffImagePlugin")

# Header cards that are free text rather than keyword/value pairs.
_COMMENTARY_KEYWORDS = {"", "COMMENT", "HISTORY"}


def fit_within(image: Image.Image, size: int) -> Image.Image:
    """Scales an image up or down to fit a size x size box, keeping its aspect ratio."""
    return ImageOps.contain(image, (size, size), Image.Resampling.LANCZOS)


def encode_png(image: Optional[Image.Image]) -> Optional[bytes]:
    if image is None:
        return None
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def decode_png(data: Optional[bytes]) -> Optional[Image.Image]:
    if not data:
        return None
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        return img.copy()


def planes_to_image(planes: np.ndarray) -> Image.Image:
    """Builds a PIL image from stretched (channels, height, width) uint8 planes."""
    if planes.shape[0] == 1:
        return Image.fromarray(np.ascontiguousarray(planes[0]))
    if planes.shape[0] == 3:
        return Image.fromarray(np.ascontiguousarray(np.moveaxis(planes, 0, -1)))
    raise FormatUnsupported(f"Cannot display an image with {planes.shape[0]} channels")


def debayer_superpixel(mosaic: np.ndarray) -> np.ndarray:
    """
    Half-resolution debayer by 2x2 superpixels: R is the top-left sample,
    G the mean of top-right and bottom-left, B the bottom-right.
    Returns planar (3, H // 2, W // 2) data in the mosaic's dtype.
    """
    height, width = mosaic.shape
    cropped = mosaic[: height - height % 2, : width - width % 2]
    red = cropped[0::2, 0::2]
    green_1 = cropped[0::2, 1::2]
    green_2 = cropped[1::2, 0::2]
    blue = cropped[1::2, 1::2]

    if np.issubdtype(mosaic.dtype, np.integer):
        green = ((green_1.astype(np.int64) + green_2.astype(np.int64)) // 2).astype(mosaic.dtype)
    else:
        green = ((green_1 + green_2) / 2).astype(mosaic.dtype)
    return np.stack([red, green, blue])


def header_value_to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "T" if value else "F"
    if value is None or isinstance(value, Undefined):
        return ""
    return strip_tag_text(value)


class Decoder(ABC):
    """Common contract for every supported file format."""

    file_type: FileType

    def __init__(self, path: str):
        self.path = str(path)
        self.image_hash = ""

    @classmethod
    def open(cls, path: str) -> "Decoder":
        decoder = cls(path)
        decoder.load()
        return decoder

    @abstractmethod
    def load(self) -> None:
        """Opens the file. Raises FileUnreadable if it cannot be read."""

    @abstractmethod
    def extract_tags(self) -> Dict[str, str]:
        ...

    @abstractmethod
    def extract_thumbnail(self) -> Image.Image:
        """Returns the full-resolution display image and sets ``image_hash``."""

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FitsDecoder(Decoder):
    file_type = FileType.FITS

    def __init__(self, path: str):
        super().__init__(path)
        self.hdul: Optional[fits.HDUList] = None

    def load(self) -> None:
        try:
            self.hdul = fits.open(self.path, memmap=False, lazy_load_hdus=True)
            # Touch the primary header so a corrupt file fails here.
            self.hdul[0].header
        except (OSError, ValueError, IndexError) as e:
            self.close()
            raise FileUnreadable(f"Cannot open FITS file {self.path}: {e}") from e

    def close(self) -> None:
        if self.hdul is not None:
            self.hdul.close()
            self.hdul = None

    @property
    def header(self) -> fits.Header:
        return self.hdul[0].header

    def extract_tags(self) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        for card in self.header.cards:
            key = strip_tag_text(card.keyword)
            if key in _COMMENTARY_KEYWORDS:
                continue
            tags[key] = header_value_to_text(card.value)
        return tags

    def _image_hdu(self):
        """The primary HDU if it holds an image, else the first image extension."""
        for hdu in self.hdul:
            if hdu.header.get("NAXIS", 0) >= 2:
                return hdu
        return self.hdul[0]

    def read_pixels(self) -> np.ndarray:
        """
        Returns the pixel data as planar native-endian samples, shape
        (channels, height, width), debayered when BAYERPAT is present.
        """
        hdu = self._image_hdu()
        header = hdu.header
        for keyword in ("BITPIX", "NAXIS"):
            if keyword not in header:
                raise HeaderMissingRequired(f"{self.path}: missing {keyword}")
        naxis = header["NAXIS"]
        if naxis < 2:
            raise HeaderMissingRequired(f"{self.path}: NAXIS = {naxis}, need at least 2")
        for keyword in ("NAXIS1", "NAXIS2"):
            if keyword not in header:
                raise HeaderMissingRequired(f"{self.path}: missing {keyword}")

        try:
            data = hdu.data
        except (OSError, ValueError, TypeError) as e:
            raise DecodeFailed(f"{self.path}: cannot read pixel data: {e}") from e
        if data is None:
            raise DecodeFailed(f"{self.path}: HDU has no pixel data")
        if data.dtype.kind not in "iuf":
            raise FormatUnsupported(f"{self.path}: unsupported pixel type {data.dtype}")

        data = np.asarray(data, dtype=data.dtype.newbyteorder("="))
        has_bayer = "BAYERPAT" in header or "BAYERPAT" in self.header

        if data.ndim == 2:
            if has_bayer:
                return debayer_superpixel(data)
            return data[np.newaxis, ...]

        # NAXIS >= 3: astropy orders axes as (..., NAXIS2, NAXIS1).
        planes = data.reshape((-1,) + data.shape[-2:])
        if header.get("NAXIS3") == 3:
            return np.ascontiguousarray(planes[:3])
        if has_bayer:
            return debayer_superpixel(planes[0])
        return np.ascontiguousarray(planes[:1])

    def extract_thumbnail(self) -> Image.Image:
        planes = self.read_pixels()
        self.image_hash = image_hash(planes)
        return planes_to_image(auto_stretch(planes.copy()))


class XisfDecoder(Decoder):
    file_type = FileType.XISF

    def __init__(self, path: str):
        super().__init__(path)
        self.xisf: Optional[XISF] = None
        self.metadata: Dict[str, Any] = {}

    def load(self) -> None:
        try:
            self.xisf = XISF(self.path)
            images = self.xisf.get_images_metadata()
        except (OSError, ValueError, KeyError, SyntaxError) as e:
            raise FileUnreadable(f"Cannot open XISF file {self.path}: {e}") from e
        if not images:
            raise DecodeFailed(f"{self.path}: no image element")
        self.metadata = images[0]

    def extract_tags(self) -> Dict[str, str]:
        tags: Dict[str, str] = {}
        # FITSKeywords: { KEY: [ {value, comment}, ... ] }
        for key, entries in self.metadata.get("FITSKeywords", {}).items():
            key = strip_tag_text(key)
            if key in _COMMENTARY_KEYWORDS or not entries:
                continue
            tags[key] = header_value_to_text(entries[0].get("value"))
        return tags

    def read_pixels(self) -> np.ndarray:
        """Pixel data as planar float32, shape (channels, height, width)."""
        try:
            data = self.xisf.read_image(0)  # channels_last
        except (OSError, ValueError, KeyError) as e:
            raise DecodeFailed(f"{self.path}: cannot read pixel data: {e}") from e
        if data is None:
            raise DecodeFailed(f"{self.path}: no image data")
        if data.dtype.kind not in "iuf":
            raise FormatUnsupported(f"{self.path}: unsupported pixel type {data.dtype}")

        data = np.asarray(data, dtype=np.float32)
        if data.ndim == 2:
            data = data[..., np.newaxis]
        channels = data.shape[-1]
        if channels not in (1, 3):
            data = data[..., :1]
        return np.ascontiguousarray(np.moveaxis(data, -1, 0))

    def extract_thumbnail(self) -> Image.Image:
        planes = self.read_pixels()
        self.image_hash = image_hash(planes)
        return planes_to_image(auto_stretch(planes.copy()))


class RasterDecoder(Decoder):
    """Ordinary images (PNG, JPEG, TIFF, ...): EXIF tags, no stretch."""

    file_type = FileType.IMAGE

    def __init__(self, path: str):
        super().__init__(path)
        self.image: Optional[Image.Image] = None
        self._exif: Dict[int, Any] = {}

    def load(self) -> None:
        try:
            with Image.open(self.path) as img:
                img.load()
                self.image = img.copy()
                self._exif = img.getexif()
        except (OSError, UnidentifiedImageError) as e:
            raise FileUnreadable(f"Cannot open image {self.path}: {e}") from e

    def extract_tags(self) -> Dict[str, str]:
        """Decodes EXIF tags by name; undecodable byte values are skipped."""
        tags: Dict[str, str] = {}
        for tag_id, value in self._exif.items():
            tag_name = str(ExifTags.TAGS.get(tag_id, tag_id))
            if isinstance(value, bytes):
                value = value.decode("utf-8", errors="ignore")
            text = strip_tag_text(value)
            if text:
                tags[tag_name] = text
        return tags

    def extract_thumbnail(self) -> Image.Image:
        image = self.image
        if image.mode not in ("L", "RGB"):
            image = image.convert("RGB")
        self.image_hash = image_hash(np.asarray(image))
        return image


_DECODERS: Dict[FileType, Type[Decoder]] = {
    FileType.FITS: FitsDecoder,
    FileType.XISF: XisfDecoder,
    FileType.IMAGE: RasterDecoder,
}


def decoder_class_for(path: str) -> Type[Decoder]:
    file_type = file_type_for(path)
    if file_type is None:
        raise FormatUnsupported(f"No decoder for {Path(path).name}")
    return _DECODERS[file_type]


def open_decoder(path: str) -> Decoder:
    """Picks the decoder by file extension and opens the file."""
    return decoder_class_for(path).open(path)
