"""
VGAP Turn Toolkit - Registration Keys
Registration key encoding for turn trailers, plus the registration file
parser (YAML or text format).
"""

import yaml
from pathlib import Path

from engine.structures import DEFAULT_CHARSET


KEY_WORDS = 51
LINE_LENGTH = 25
KEY_SUM_BASE = 668

UNREGISTERED_LINE1 = "VGA Planets shareware"
UNREGISTERED_LINE2 = "Version 3.00"


class RandomNumberGenerator:
    """Linear congruential generator used to scramble registration data."""

    def __init__(self, seed):
        self.seed = seed & 0xFFFFFFFF

    def __call__(self, limit=None):
        self.seed = (self.seed * 0x8088405 + 1) & 0xFFFFFFFF
        value = self.seed >> 16
        if limit is None:
            return value
        return (value * limit) >> 16


class RegistrationKey:
    """
    A player's registration key.

    Lines 1 and 2 are the serial and registration strings that go into the
    DOS trailer in encoded form. Lines 3 and 4 are the player name and
    address shown in the Windows trailer.
    """

    def __init__(self, line1=UNREGISTERED_LINE1, line2=UNREGISTERED_LINE2,
                 line3='', line4='', charset=DEFAULT_CHARSET):
        self.lines = [line1, line2, line3, line4]
        self.charset = charset

    def get_line(self, number):
        """Get line 1..4."""
        return self.lines[number - 1]

    def is_registered(self):
        return self.lines[0] != UNREGISTERED_LINE1

    def get_key(self):
        """Encode lines 1 and 2 into the 51-word DOS key block."""
        words = []
        for line in self.lines[:2]:
            data = line.encode(self.charset, errors='replace')[:LINE_LENGTH]
            data = data + bytes(LINE_LENGTH - len(data))
            words.extend(ch * (13 + 13*i) for i, ch in enumerate(data))
        words.append((KEY_SUM_BASE + sum(words)) & 0xFFFFFFFF)
        return words

    @classmethod
    def from_key(cls, words, charset=DEFAULT_CHARSET):
        """Decode a 51-word key block. Undecodable characters become '?'."""
        lines = [decode_key_line(words[0:LINE_LENGTH], charset)[0],
                 decode_key_line(words[LINE_LENGTH:2*LINE_LENGTH], charset)[0]]
        return cls(lines[0], lines[1], charset=charset)


def decode_key_line(words, charset=DEFAULT_CHARSET):
    """
    Decode one 25-word encoded line.
    Returns (text, had_error).
    """
    had_error = False
    data = bytearray()
    for i, word in enumerate(words):
        divisor = 13 + 13*i
        if word % divisor:
            had_error = True
            data.append(ord('?'))
        else:
            data.append((word // divisor) & 0xFF)
    text = bytes(data).split(b'\x00', 1)[0].rstrip(b' ')
    return text.decode(charset, errors='replace'), had_error


def key_checksum(words):
    """Expected value of the last key word."""
    return (KEY_SUM_BASE + sum(words[:KEY_WORDS - 1])) & 0xFFFFFFFF


# ======================================================================
# Registration files
# ======================================================================

def parse_yaml_registration(yaml_content):
    """
    Parse a registration key from YAML content.

    Expected format:
    reg1: 12345678
    reg2: Registered to Alice
    name: Alice Smith
    address: alice@example.com
    """
    try:
        data = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        return {'error': f"YAML parse error: {e}"}

    if not isinstance(data, dict):
        return {'error': "Registration must be a YAML mapping"}

    return {
        'reg1': str(data.get('reg1') or '').strip(),
        'reg2': str(data.get('reg2') or '').strip(),
        'name': str(data.get('name') or '').strip(),
        'address': str(data.get('address') or '').strip(),
        'errors': [],
    }


def parse_text_registration(text_content):
    """
    Parse a registration key from plain text format.

    Expected format:
    REG1 12345678
    REG2 Registered to Alice
    NAME Alice Smith
    ADDRESS alice@example.com
    """
    result = {
        'reg1': '',
        'reg2': '',
        'name': '',
        'address': '',
        'errors': [],
    }

    field_map = {
        'REG1': 'reg1',
        'REG2': 'reg2',
        'NAME': 'name',
        'ADDRESS': 'address',
    }

    lines = [l.strip() for l in text_content.strip().splitlines()
             if l.strip() and not l.strip().startswith('#')]

    for line in lines:
        parts = line.split(None, 1)
        key = parts[0].upper()
        value = parts[1].strip() if len(parts) > 1 else ''

        if key in field_map:
            result[field_map[key]] = value
        else:
            result['errors'].append(f"Unknown field: {key}")

    return result


def parse_registration_file(filepath):
    """Parse a registration file, auto-detecting format."""
    path = Path(filepath)
    content = path.read_text(encoding='utf-8')

    if path.suffix in ('.yaml', '.yml'):
        return parse_yaml_registration(content)
    else:
        return parse_text_registration(content)


def validate_registration(data):
    """
    Validate registration fields.
    Returns list of error strings (empty = valid).
    """
    if data.get('error'):
        return [data['error']]
    errors = list(data.get('errors', []))

    if not data.get('reg1'):
        errors.append("Missing required field: reg1")
    if not data.get('reg2'):
        errors.append("Missing required field: reg2")
    for field in ('reg1', 'reg2'):
        if len(data.get(field, '')) > LINE_LENGTH:
            errors.append(f"Field {field} is longer than {LINE_LENGTH} characters")
    for field in ('name', 'address'):
        if len(data.get(field, '')) > 50:
            errors.append(f"Field {field} is longer than 50 characters")

    return errors


def load_registration_key(filepath, charset=DEFAULT_CHARSET):
    """
    Load a registration key from a file.
    Returns (key, errors); key is None when the file is invalid.
    """
    data = parse_registration_file(filepath)
    errors = validate_registration(data)
    if errors:
        return None, errors
    return RegistrationKey(data['reg1'], data['reg2'], data['name'], data['address'],
                           charset=charset), []
