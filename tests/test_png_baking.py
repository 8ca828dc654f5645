#!/usr/bin/env python3
"""
Test script to verify baking signed credentials into PNG images and reading them back
"""
import struct
import sys
import zlib
from io import BytesIO
from pathlib import Path

import png
import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

sys.path.insert(0, str(Path(__file__).parent.parent))

from openbadge_core.add_openbadge_metadata import (
    PNG_SIGNATURE,
    PNGChunk,
    bake_png,
    build_itxt_chunk,
    extract_png_credential,
    extract_png_credential_json,
    insert_chunk_before,
    parse_png_chunks,
    read_itxt_chunk,
    serialize_png_chunks,
)
from openbadge_core.build_openbadge_metadata import build_credential, credential_to_json
from openbadge_core.crypto_utils import sign_credential, verify_credential, generate_key_id
from openbadge_core.image_utils import encode_data_url


@pytest.fixture
def signed(badge, user, organization, keypair):
    credential = build_credential("urn:uuid:png-1", badge, user, organization, "2024-01-01T00:00:00Z")
    return sign_credential(credential, keypair.private_key, generate_key_id(credential.issuer.id))


def _without_openbadges(chunks):
    return [chunk for chunk in chunks if not (chunk.type == b"iTXt" and chunk.data.startswith(b"openbadges\x00"))]


def test_parse_and_serialize_are_inverse(png_bytes):
    chunks = parse_png_chunks(png_bytes)
    assert chunks[0].type == b"IHDR"
    assert chunks[-1].type == b"IEND"
    assert serialize_png_chunks(chunks) == png_bytes


def test_bake_round_trip(png_data_url, signed):
    baked = bake_png(png_data_url, signed)

    assert extract_png_credential_json(baked) == credential_to_json(signed)
    assert extract_png_credential(baked) == signed.to_dict()


def test_original_chunks_survive_in_order(png_bytes, png_data_url, signed):
    original = parse_png_chunks(png_bytes)
    baked_chunks = parse_png_chunks(bake_png(png_data_url, signed))

    assert len(baked_chunks) == len(original) + 1
    assert _without_openbadges(baked_chunks) == original


def test_itxt_is_inserted_before_first_idat(png_data_url, signed):
    types = [chunk.type for chunk in parse_png_chunks(bake_png(png_data_url, signed))]
    itxt_index = types.index(b"iTXt")
    assert types[itxt_index + 1] == b"IDAT"
    assert b"IDAT" not in types[:itxt_index]


def test_itxt_layout(signed):
    chunk = build_itxt_chunk("openbadges", credential_to_json(signed))
    assert chunk.type == b"iTXt"
    assert chunk.data.startswith(b"openbadges\x00\x00\x00\x00\x00")
    assert read_itxt_chunk(chunk) == ("openbadges", credential_to_json(signed))


def test_pillow_reads_baked_png(png_data_url, signed):
    with Image.open(BytesIO(bake_png(png_data_url, signed))) as img:
        img.load()
        assert img.size == (4, 4)
        assert img.getpixel((0, 0)) == (255, 0, 0, 255)
        assert img.text["openbadges"] == credential_to_json(signed)
        assert img.text["Software"] == "badge-tests"


def test_baked_png_verifies(png_data_url, signed, keypair):
    extracted = extract_png_credential(bake_png(png_data_url, signed))
    assert verify_credential(extracted, keypair.public_key) is True


def test_rebaking_replaces_credential(png_data_url, signed, keypair):
    first = bake_png(png_data_url, signed)
    resigned = sign_credential(signed, keypair.private_key, "https://acme.example/keys/2")
    second = bake_png(encode_data_url(first), resigned)

    openbadges_chunks = [c for c in parse_png_chunks(second) if c.type == b"iTXt"]
    assert len(openbadges_chunks) == 1
    assert extract_png_credential(second)["proof"]["verificationMethod"] == "https://acme.example/keys/2"


def test_bare_base64_is_accepted(png_data_url, signed):
    bare = png_data_url.split(",", 1)[1]
    assert bake_png(bare, signed) == bake_png(png_data_url, signed)


def test_no_idat_inserts_before_iend(signed):
    ihdr = PNGChunk(b"IHDR", struct.pack(">IIBBBBB", 1, 1, 8, 6, 0, 0, 0))
    iend = PNGChunk(b"IEND", b"")
    minimal = serialize_png_chunks([ihdr, iend])

    types = [chunk.type for chunk in parse_png_chunks(bake_png(encode_data_url(minimal), signed))]
    assert types == [b"IHDR", b"iTXt", b"IEND"]


def test_insert_chunk_before():
    a, b, c = PNGChunk(b"IHDR", b"1"), PNGChunk(b"IDAT", b"2"), PNGChunk(b"IEND", b"")
    new = PNGChunk(b"tEXt", b"x")

    assert insert_chunk_before([a, b, b, c], lambda ch: ch.type == b"IDAT", new) == [a, new, b, b, c]
    assert insert_chunk_before([a, c], lambda ch: ch.type == b"IDAT", new) == [a, new, c]
    chunks = [a, c]
    insert_chunk_before(chunks, lambda ch: False, new)
    assert chunks == [a, c]


def test_compressed_itxt_is_read(signed):
    img = Image.new("RGB", (2, 2), (0, 128, 0))
    info = PngInfo()
    info.add_itxt("openbadges", credential_to_json(signed), zip=True)
    output = BytesIO()
    img.save(output, "PNG", pnginfo=info)

    assert extract_png_credential_json(output.getvalue()) == credential_to_json(signed)


def test_png_without_credential(png_bytes):
    assert extract_png_credential_json(png_bytes) is None
    assert extract_png_credential(png_bytes) is None


def test_not_a_png(signed):
    with pytest.raises(ValueError):
        bake_png(encode_data_url(b"GIF89a not a png"), signed)


def test_crc_mismatch(png_bytes, signed):
    corrupt = bytearray(png_bytes)
    # last byte of the IHDR CRC
    corrupt[len(PNG_SIGNATURE) + 8 + 13 + 3] ^= 0xFF
    with pytest.raises(ValueError, match="Malformed PNG"):
        bake_png(encode_data_url(bytes(corrupt)), signed)


def test_truncated_png(png_bytes, signed):
    with pytest.raises(ValueError):
        bake_png(encode_data_url(png_bytes[:-6]), signed)


def test_missing_iend(signed):
    ihdr = PNGChunk(b"IHDR", struct.pack(">IIBBBBB", 1, 1, 8, 6, 0, 0, 0))
    with pytest.raises(ValueError, match="Malformed PNG"):
        parse_png_chunks(serialize_png_chunks([ihdr]))


def test_invalid_data_url(signed):
    with pytest.raises(ValueError):
        bake_png("data:image/png;base64,***", signed)


def test_corrupt_compressed_itxt():
    chunk = PNGChunk(b"iTXt", b"openbadges\x00\x01\x00\x00\x00" + zlib.compress(b"{}")[:-3])
    with pytest.raises(ValueError):
        read_itxt_chunk(chunk)


def test_baked_png_is_read_by_pypng(png_data_url, signed):
    baked = bake_png(png_data_url, signed)

    chunks = list(png.Reader(bytes=baked).chunks())
    openbadges = [data for chunk_type, data in chunks if chunk_type == b"iTXt"]
    assert openbadges == [build_itxt_chunk("openbadges", credential_to_json(signed)).data]

    width, height, rows, info = png.Reader(bytes=baked).read()
    assert (width, height) == (4, 4)
    assert len(list(rows)) == 4


def test_bytes_after_iend_are_dropped(png_bytes, png_data_url, signed):
    trailing = encode_data_url(png_bytes + b"trailing garbage")
    assert bake_png(trailing, signed) == bake_png(png_data_url, signed)
