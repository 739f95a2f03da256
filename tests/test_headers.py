"""
Tests for tar header synthesis.
"""
import tarfile
import pytest
from tarstitch.errors import ConfigurationError
from tarstitch.headers import entry_header, synthesize
from tarstitch.types import Entry


def test_short_name_is_one_block():
    hdr = synthesize("logs/app.log", 1234, mtime=1700000000)
    assert len(hdr) == 512
    info = tarfile.TarInfo.frombuf(hdr, "utf-8", "surrogateescape")
    assert info.name == "logs/app.log"
    assert info.size == 1234
    assert info.mtime == 1700000000
    assert info.isfile()


def test_long_name_adds_blocks():
    """GNU long names are carried in extra blocks; length stays block aligned."""
    name = "deep/" * 30 + "file.bin"
    hdr = synthesize(name, 10, mtime=0)
    assert len(hdr) > 512
    assert len(hdr) % 512 == 0


def test_pax_format():
    hdr = synthesize("x" * 120, 1, mtime=0, tar_format="pax")
    assert len(hdr) % 512 == 0


def test_invalid_format_and_size():
    with pytest.raises(ConfigurationError):
        synthesize("a", 1, tar_format="v7")
    with pytest.raises(ConfigurationError):
        synthesize("a", -1)


def test_entry_header_uses_entry_fields():
    e = Entry(name="a/b.txt", size=42, checksum="abc", bucket="b", key="a/b.txt", last_modified=1234.0)
    info = tarfile.TarInfo.frombuf(entry_header(e), "utf-8", "surrogateescape")
    assert (info.name, info.size, info.mtime) == ("a/b.txt", 42, 1234)
