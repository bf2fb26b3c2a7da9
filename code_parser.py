import os
import re

ALLOWED_EXTENSIONS = {'.csv', '.txt'}
HEADER_NAME = 'material code'


class UploadError(ValueError):
    """Raised when an uploaded stock list cannot be used."""


def is_allowed_file(filename):
    if not filename:
        return False
    return os.path.splitext(filename)[1].lower() in ALLOWED_EXTENSIONS


def read_upload(raw_bytes):
    """Decode an uploaded file as UTF-8, tolerating a byte-order mark."""
    try:
        return raw_bytes.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise UploadError("File is not valid UTF-8 text") from e


def parse_codes(text):
    """
    Simple CSV parse: split by new line, then comma, and keep the first
    non-empty value of each row. A 'Material Code' header row is dropped.
    """
    codes = []
    for row in re.split(r'\r?\n', text):
        code = row.split(',')[0].strip()
        if code and code.lower() != HEADER_NAME:
            codes.append(code)
    return codes
