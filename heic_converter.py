#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.13"
# dependencies = [
#     "pillow",
#     "pillow-heif",
#     "rich",
#     "typer",
# ]
# ///

"""
HEIC Converter - Convert every HEIC photo in ./Photos to a JPEG in ./output.

Prompts for a JPEG quality (or takes --quality), converts each file on its own
and reports how many conversions succeeded. A file that fails to decode or
write is logged and skipped; it never aborts the run.
"""
import logging
import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import pillow_heif
import typer
from PIL import Image
from rich.console import Console
from rich.markup import escape

# Register HEIF opener with Pillow
pillow_heif.register_heif_opener()

app = typer.Typer(add_completion=False, help="Convert HEIC photos to JPEG.")
console = Console()

INPUT_DIR = Path("Photos")
OUTPUT_DIR = Path("output")
HEIC_SUFFIX = ".heic"
PARTIAL_SUFFIX = ".part"
QUALITY_PROMPT = "Enter JPEG quality (1-100, recommended 75-95)"
MIN_QUALITY = 1
MAX_QUALITY = 100

logger = logging.getLogger("heic_converter")


def setup_logging(log_level: str = "INFO") -> None:
    """Send diagnostics to stderr, keeping stdout for the prompt and summary."""
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)


class ConverterError(Exception):
    """Base class for everything this script raises on purpose."""


class InputValidationError(ConverterError):
    pass


class DirectoryError(ConverterError):
    pass


class DecodeFailure(Enum):
    CONTAINER_UNREADABLE = "could not read HEIC file"
    NO_PRIMARY_IMAGE = "could not get primary image"
    DECODE_FAILED = "could not decode image"


class OutputFailure(Enum):
    CANNOT_CREATE_OUTPUT = "could not create output file"
    WRITE_FAILED = "could not write JPEG"


class ConversionError(ConverterError):
    """A single file failed; the batch carries on without it."""

    def __init__(self, path: Path, reason: Enum, detail: str = ""):
        self.path = Path(path)
        self.reason = reason
        self.detail = detail
        message = f"{reason.value}: {path}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class DecodeError(ConversionError):
    pass


class OutputError(ConversionError):
    pass


@dataclass(frozen=True)
class ConversionRequest:
    input_path: Path
    output_dir: Path
    quality: int


@dataclass
class DecodedImage:
    """Interleaved 8-bit RGB pixels, rows `stride` bytes apart."""

    width: int
    height: int
    pixels: bytes
    stride: int

    def __post_init__(self):
        row_size = self.width * 3
        if self.stride < row_size:
            raise ValueError(f"stride {self.stride} is smaller than a {self.width} pixel row")
        if self.height and len(self.pixels) < (self.height - 1) * self.stride + row_size:
            raise ValueError(f"pixel buffer too short for {self.height} rows")

    def rows(self) -> Iterator[bytes]:
        """Yield each row top to bottom, without the padding after it."""
        row_size = self.width * 3
        view = memoryview(self.pixels)
        for row in range(self.height):
            start = row * self.stride
            yield bytes(view[start:start + row_size])


@dataclass(frozen=True)
class ConversionOutcome:
    input_path: Path
    succeeded: bool
    output_path: Optional[Path] = None
    error: Optional[ConversionError] = None


@dataclass
class BatchSummary:
    found: int = 0
    succeeded: int = 0
    failed: int = 0
    outputs: list[Path] = field(default_factory=list)

    def record(self, outcome: ConversionOutcome) -> None:
        self.found += 1
        if outcome.succeeded:
            self.succeeded += 1
            self.outputs.append(outcome.output_path)
        else:
            self.failed += 1


def is_heic_name(name: str) -> bool:
    # Dot-files such as ".HEIC" have no suffix and are never candidates
    return Path(name).suffix.lower() == HEIC_SUFFIX


def open_input_dir(input_dir: Path):
    """Open `input_dir` for scanning; the caller closes the returned iterator."""
    try:
        return os.scandir(input_dir)
    except OSError as e:
        raise DirectoryError(
            f"Could not open {input_dir} directory: {e.strerror or e}"
        ) from e


def scan_heic_files(entries) -> Iterator[Path]:
    """Yield HEIC files from an open directory listing, in directory order."""
    for entry in entries:
        if not is_heic_name(entry.name):
            continue
        if not entry.is_file():
            logger.debug(f"Skipping {entry.path}: not a regular file")
            continue
        yield Path(entry.path)


def ensure_output_dir(output_dir: Path) -> None:
    try:
        output_dir.mkdir(exist_ok=True)
    except OSError as e:
        raise DirectoryError(
            f"Failed to create output directory {output_dir}: {e.strerror or e}"
        ) from e
    logger.debug(f"Output directory ready: {output_dir}")


def parse_quality(raw: str) -> int:
    """Parse a JPEG quality, rejecting anything outside 1-100."""
    try:
        quality = int(raw.strip())
    except ValueError:
        quality = None
    if quality is None or not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise InputValidationError(
            f"Invalid quality value {raw.strip()!r}. "
            f"Please enter a number between {MIN_QUALITY} and {MAX_QUALITY}."
        )
    return quality


def output_path_for(input_path: Path, output_dir: Path) -> Path:
    # A name without an extension keeps its full name as the stem
    return output_dir / f"{input_path.stem}.jpg"


def decode_heic(input_path: Path) -> DecodedImage:
    """Decode the primary image of a HEIC container to 8-bit RGB."""
    try:
        heif_file = pillow_heif.open_heif(input_path, convert_hdr_to_8bit=True)
    except (OSError, ValueError, RuntimeError) as e:
        raise DecodeError(input_path, DecodeFailure.CONTAINER_UNREADABLE, str(e)) from e

    try:
        primary = heif_file[heif_file.primary_index]
    except (IndexError, AttributeError) as e:
        raise DecodeError(input_path, DecodeFailure.NO_PRIMARY_IMAGE) from e

    width, height = primary.size
    try:
        if primary.mode == "RGB":
            return DecodedImage(width, height, bytes(primary.data), primary.stride)
        # Alpha or high bit depth: flatten to plain RGB through Pillow
        logger.debug(f"Converting {input_path} from {primary.mode} to RGB")
        with primary.to_pillow() as img, img.convert("RGB") as rgb:
            return DecodedImage(width, height, rgb.tobytes(), width * 3)
    except (OSError, ValueError, RuntimeError) as e:
        raise DecodeError(input_path, DecodeFailure.DECODE_FAILED, str(e)) from e


def encode_jpeg(image: DecodedImage, fp, quality: int) -> None:
    """Write `image` to the binary file object `fp` as a baseline JPEG."""
    packed = b"".join(image.rows())
    with Image.frombytes("RGB", (image.width, image.height), packed) as img:
        img.save(fp, "JPEG", quality=quality)


def transcode(request: ConversionRequest) -> Path:
    """Convert one file, raising ConversionError on any failure."""
    image = decode_heic(request.input_path)
    output_path = output_path_for(request.input_path, request.output_dir)
    partial_path = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

    try:
        fh = open(partial_path, "wb")
    except OSError as e:
        raise OutputError(output_path, OutputFailure.CANNOT_CREATE_OUTPUT, str(e)) from e

    try:
        with fh:
            try:
                encode_jpeg(image, fh, request.quality)
            except (OSError, ValueError) as e:
                raise OutputError(output_path, OutputFailure.WRITE_FAILED, str(e)) from e
        try:
            os.replace(partial_path, output_path)
        except OSError as e:
            raise OutputError(output_path, OutputFailure.WRITE_FAILED, str(e)) from e
    except Exception:
        partial_path.unlink(missing_ok=True)
        raise
    return output_path


def convert(input_path: Path, output_dir: Path, quality: int) -> ConversionOutcome:
    """Convert a single HEIC file to JPG."""
    request = ConversionRequest(Path(input_path), Path(output_dir), quality)
    try:
        output_path = transcode(request)
    except ConversionError as e:
        return ConversionOutcome(request.input_path, succeeded=False, error=e)
    return ConversionOutcome(request.input_path, succeeded=True, output_path=output_path)


def run_batch(
    quality: int,
    input_dir: Path = INPUT_DIR,
    output_dir: Path = OUTPUT_DIR,
    on_file: Optional[Callable[[Path], None]] = None,
) -> BatchSummary:
    """
    Convert every HEIC file directly inside `input_dir` into `output_dir`.

    Raises DirectoryError when either directory is unusable. Per-file
    failures are logged and counted, never raised.
    """
    ensure_output_dir(output_dir)
    summary = BatchSummary()

    with open_input_dir(input_dir) as entries:
        for input_path in scan_heic_files(entries):
            if on_file is not None:
                on_file(input_path)
            outcome = convert(input_path, output_dir, quality)
            summary.record(outcome)
            if outcome.succeeded:
                logger.info(f"Converted: {input_path} -> {outcome.output_path}")
            else:
                logger.error(f"Error converting {input_path}: {outcome.error}")

    logger.debug(
        f"Batch complete: {summary.found} found, {summary.succeeded} converted, "
        f"{summary.failed} failed"
    )
    return summary


def report(summary: BatchSummary, input_dir: Path = INPUT_DIR) -> None:
    if summary.found == 0:
        console.print(f"No HEIC files found in the {input_dir} directory.")
    elif summary.succeeded == 0:
        console.print(
            f"[red]No photos converted: all {summary.found} HEIC files failed.[/red]"
        )
    else:
        console.print(
            f"[green]Successfully converted {summary.succeeded} photos to JPEG format.[/green]"
        )
        if summary.failed:
            console.print(f"[yellow]{summary.failed} files failed to convert.[/yellow]")


@app.command()
def main(
    quality: Optional[str] = typer.Option(
        None, "--quality", "-q", help="JPEG quality (1-100). Prompted for when omitted."
    ),
    log_level: str = typer.Option(
        "INFO", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
) -> None:
    """Convert HEIC images in ./Photos to JPG images in ./output."""
    setup_logging(log_level)

    raw_quality = quality if quality is not None else typer.prompt(QUALITY_PROMPT)
    try:
        jpeg_quality = parse_quality(raw_quality)
    except InputValidationError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    console.print(f"Using JPEG quality: {jpeg_quality}")

    try:
        with console.status("[bold green]Converting files...") as status:
            summary = run_batch(
                jpeg_quality,
                on_file=lambda path: status.update(
                    f"[bold green]Converting {escape(path.name)}..."
                ),
            )
    except DirectoryError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    report(summary)


if __name__ == "__main__":
    app()
