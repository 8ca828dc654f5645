import base64
import binascii
import json
import logging
import re
import zlib
from io import BytesIO
from typing import Callable, Dict, Any, List, NamedTuple, Optional, Tuple

import png

from openbadge_core.constants import PNG_KEYWORD, OPENBADGES_NS
from openbadge_core.build_openbadge_metadata import credential_to_json
from openbadge_core.image_utils import decode_data_url

logger = logging.getLogger(__name__)

PNG_SIGNATURE = png.signature

# Comments and CDATA sections are matched first so that an "<svg" inside them is skipped.
_SVG_ROOT = re.compile(
    r"(?P<skip><!--.*?-->|<!\[CDATA\[.*?\]\]>)"
    r"|<svg(?=[\s/>])(?P<attributes>(?:[^>\"']|\"[^\"]*\"|'[^']*')*?)(?P<close>\s*/?)>",
    re.DOTALL,
)
_OPENBADGES_ATTRIBUTES = re.compile(r"\s+(?:xmlns:openbadges|openbadges:verify)\s*=\s*(\"[^\"]*\"|'[^']*')")
_VERIFY_ATTRIBUTE = re.compile(r"\sopenbadges:verify\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")


class PNGChunk(NamedTuple):
    """One PNG chunk: 4 byte type tag and its payload. Length and CRC are derived."""
    type: bytes
    data: bytes


def parse_png_chunks(png_bytes: bytes) -> List[PNGChunk]:
    """
    Split a PNG byte stream into its ordered chunks.

    Args:
        png_bytes (bytes): Complete PNG file contents

    Returns:
        List[PNGChunk]: Every chunk up to and including IEND, in file order

    Raises:
        ValueError: If the signature is wrong, a chunk is truncated, a CRC does not match,
            or the stream has no IEND chunk.
    """
    reader = png.Reader(bytes=png_bytes)
    try:
        return [PNGChunk(chunk_type, data) for chunk_type, data in reader.chunks()]
    except png.FormatError as e:
        raise ValueError(f"Malformed PNG: {e}") from e


def serialize_png_chunks(chunks: List[PNGChunk]) -> bytes:
    """Encode chunks back into a PNG byte stream (signature, then length/type/data/CRC per chunk)."""
    output = BytesIO()
    png.write_chunks(output, chunks)
    return output.getvalue()


def insert_chunk_before(
    chunks: List[PNGChunk],
    predicate: Callable[[PNGChunk], bool],
    new_chunk: PNGChunk
) -> List[PNGChunk]:
    """
    Return a new chunk list with ``new_chunk`` inserted before the first chunk matching
    ``predicate``, or before the final (terminator) chunk if none matches.
    """
    if not chunks:
        raise ValueError("Cannot insert into an empty chunk list")
    index = next((i for i, chunk in enumerate(chunks) if predicate(chunk)), len(chunks) - 1)
    return chunks[:index] + [new_chunk] + chunks[index:]


def build_itxt_chunk(keyword: str, text: str) -> PNGChunk:
    """
    Build an uncompressed iTXt chunk.

    Layout: keyword, NUL, compression flag 0, compression method 0, empty language tag, NUL,
    empty translated keyword, NUL, UTF-8 text.
    """
    data = (
        keyword.encode("latin-1")
        + b"\x00"
        + b"\x00"  # compression flag
        + b"\x00"  # compression method
        + b"\x00"  # language tag
        + b"\x00"  # translated keyword
        + text.encode("utf-8")
    )
    return PNGChunk(b"iTXt", data)


def read_itxt_chunk(chunk: PNGChunk) -> Tuple[str, str]:
    """Decode an iTXt chunk into (keyword, text). Compressed text is inflated."""
    try:
        keyword, rest = chunk.data.split(b"\x00", 1)
        compression_flag, compression_method = rest[0], rest[1]
        _language, _translated, text = rest[2:].split(b"\x00", 2)
    except (ValueError, IndexError) as e:
        raise ValueError("Malformed iTXt chunk") from e
    if compression_flag:
        if compression_method != 0:
            raise ValueError(f"Unsupported iTXt compression method {compression_method}")
        try:
            text = zlib.decompress(text)
        except zlib.error as e:
            raise ValueError("Corrupt compressed iTXt text") from e
    return keyword.decode("latin-1"), text.decode("utf-8")


def _is_openbadges_chunk(chunk: PNGChunk) -> bool:
    if chunk.type != b"iTXt":
        return False
    return chunk.data.split(b"\x00", 1)[0] == PNG_KEYWORD.encode("latin-1")


def bake_png(image_data_url: str, credential) -> bytes:
    """
    Embed a signed credential into a PNG image ("baking").

    The PNG is edited at chunk level: every existing chunk keeps its bytes and relative order,
    and a single ``openbadges`` iTXt chunk carrying the credential JSON is inserted before the
    first IDAT chunk (before IEND if there is no IDAT). A credential baked earlier is replaced.

    Args:
        image_data_url (str): PNG image as a data URL (a bare base64 string is accepted too)
        credential (Union[OpenBadgeCredential, Mapping]): The signed credential

    Returns:
        bytes: The baked PNG file

    Raises:
        ValueError: If the data URL cannot be decoded or the image is not a well formed PNG.
    """
    png_bytes = decode_data_url(image_data_url)
    chunks = parse_png_chunks(png_bytes)

    existing = [chunk for chunk in chunks if _is_openbadges_chunk(chunk)]
    if existing:
        logger.info(f"Replacing {len(existing)} previously baked credential chunk(s)")
        chunks = [chunk for chunk in chunks if not _is_openbadges_chunk(chunk)]

    itxt_chunk = build_itxt_chunk(PNG_KEYWORD, credential_to_json(credential))
    chunks = insert_chunk_before(chunks, lambda chunk: chunk.type == b"IDAT", itxt_chunk)

    baked = serialize_png_chunks(chunks)
    logger.debug(f"Baked credential into PNG ({len(png_bytes)} -> {len(baked)} bytes)")
    return baked


def extract_png_credential_json(png_bytes: bytes) -> Optional[str]:
    """
    Returns the credential JSON text of the first ``openbadges`` iTXt chunk, or None if the
    PNG carries no baked credential.

    Raises:
        ValueError: If the PNG is malformed.
    """
    for chunk in parse_png_chunks(png_bytes):
        if _is_openbadges_chunk(chunk):
            return read_itxt_chunk(chunk)[1]
    return None


def extract_png_credential(png_bytes: bytes) -> Optional[Dict[str, Any]]:
    """Returns the credential baked into a PNG as a dict, or None if there is none."""
    credential_json = extract_png_credential_json(png_bytes)
    if credential_json is None:
        return None
    return json.loads(credential_json)


def _find_svg_root(svg_markup: str):
    """Returns the match of the first <svg> opening tag outside comments and CDATA, or None."""
    for match in _SVG_ROOT.finditer(svg_markup):
        if match.group("skip") is None:
            return match
    return None


def bake_svg(svg_markup: str, credential) -> str:
    """
    Embed a signed credential into SVG markup.

    The credential JSON is base64 encoded into an ``openbadges:verify`` attribute, declared
    with ``xmlns:openbadges``, on the first ``<svg>`` opening tag. Only that tag is rewritten;
    attributes already on it, self-closing syntax and all other markup are kept as they are.
    Attributes from an earlier bake are replaced.

    Args:
        svg_markup (str): SVG document text
        credential (Union[OpenBadgeCredential, Mapping]): The signed credential

    Returns:
        str: The baked SVG document

    Raises:
        ValueError: If the markup has no ``<svg>`` opening tag.
    """
    match = _find_svg_root(svg_markup)
    if match is None:
        raise ValueError("No <svg> element found; credential was not embedded")

    credential_base64 = base64.b64encode(credential_to_json(credential).encode("utf-8")).decode("ascii")
    attributes = _OPENBADGES_ATTRIBUTES.sub("", match.group("attributes"))
    opening_tag = (
        f'<svg{attributes} xmlns:openbadges="{OPENBADGES_NS}" '
        f'openbadges:verify="{credential_base64}"{match.group("close")}>'
    )
    logger.debug("Baked credential into SVG root element")
    return svg_markup[:match.start()] + opening_tag + svg_markup[match.end():]


def extract_svg_credential(svg_markup: str) -> Optional[Dict[str, Any]]:
    """
    Returns the credential baked into an SVG root element, or None if there is none.

    Raises:
        ValueError: If the markup has no ``<svg>`` element or the attribute is not valid
            base64 encoded JSON.
    """
    match = _find_svg_root(svg_markup)
    if match is None:
        raise ValueError("No <svg> element found")
    verify = _VERIFY_ATTRIBUTE.search(match.group("attributes"))
    if verify is None:
        return None
    encoded = verify.group(1) if verify.group(1) is not None else verify.group(2)
    try:
        return json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError("openbadges:verify attribute is not valid base64 JSON") from e
